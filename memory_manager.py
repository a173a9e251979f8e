"""
Manages the user's long-term memory using ChromaDB.

This module implements the 4-layer memory store (personal, project, codebase,
aesthetic):
- `ChromaDBStore` is the data access layer over one ChromaDB collection per user.
- `MemoryManager` is the high-level interface the agent core uses to retrieve
  ranked memory context for a prompt, list every memory for context, create
  memories on an agent's behalf and extract memories from a finished exchange.

Retrieval is a pure read dependency of the router: store failures are logged
and degrade to an empty context rather than failing the turn.
"""

import logging
import threading
import uuid
from collections import OrderedDict
from typing import Any, List, Optional

import chromadb
import chromadb.utils.embedding_functions as embedding_functions
from pydantic import ValidationError

from config import (
    CHROMA_DB_PATH,
    MEMORY_CONTEXT_MAX_ITEMS,
    MEMORY_EXTRACTION_MODEL_NAME,
    MEMORY_LAYERS,
    MEMORY_QUERY_RESULTS,
    MEMORY_STORE_CACHE_SIZE,
)
from data_models import Memory, MemoryDraft
from tracer import trace

# --- Global Setup ---
# Initialize the embedding function once to be reused across all ChromaDBStore instances.
try:
    embedding_function = embedding_functions.DefaultEmbeddingFunction()
    logging.info("Successfully initialized the default sentence-transformer embedding model.")
except Exception as e:
    logging.critical(f"FATAL: Failed to initialize the embedding model: {e}")
    embedding_function = None

EMPTY_MEMORY_CONTEXT = "No memories stored yet."

MEMORY_EXTRACTION_INSTRUCTION = """You maintain a user's long-term memory for an AI building assistant.
You will be given one exchange between the user and the AI. Extract only durable facts worth remembering
in future conversations, each assigned to exactly one layer:
- personal: who the user is, their preferences, skills and habits.
- project: goals, features and decisions about the current project.
- codebase: technical facts about the code (file layout, modules, APIs, conventions).
- aesthetic: visual and stylistic preferences (colors, tone, UI style).
Rate importance from 0 to 1. Ignore small talk. Return an empty list when nothing is worth keeping.
You MUST respond in the JSON format defined in the schema."""

MEMORY_EXTRACTION_SCHEMA = {
    "type": "object",
    "properties": {
        "memories": {
            "type": "array",
            "description": "Durable memories extracted from the exchange. Empty if nothing is worth keeping.",
            "items": {
                "type": "object",
                "properties": {
                    "layer": {"type": "string", "description": "One of: personal, project, codebase, aesthetic."},
                    "content": {"type": "string"},
                    "importance": {"type": "number"},
                },
                "required": ["layer", "content", "importance"],
            },
        }
    },
    "required": ["memories"],
}


class ChromaDBStore:
    """
    Handles all direct read/write interactions with a specific ChromaDB collection.
    Each record's document is the memory content; every other Memory field is
    kept in the metadata.
    """

    def __init__(self, collection_name: str):
        self.name = collection_name
        self.collection = None

        if embedding_function is None:
            logging.error(f"Cannot initialize ChromaDBStore for '{self.name}': embedding function not available.")
            return

        try:
            chroma_client = chromadb.PersistentClient(path=CHROMA_DB_PATH)
            # Sanitize the collection name to meet ChromaDB's requirements.
            sanitized_name = "".join(c for c in self.name if c.isalnum() or c in ["_", "-"]).strip("_-")
            if len(sanitized_name) < 3:
                sanitized_name = f"collection-{sanitized_name}-{uuid.uuid4().hex[:8]}"
            self.name = sanitized_name[:63]

            self.collection = chroma_client.get_or_create_collection(name=self.name, embedding_function=embedding_function)
            logging.info(f"ChromaDBStore connected to collection '{self.name}'.")
        except Exception as e:
            logging.error(f"FATAL: Failed to initialize ChromaDBStore for collection '{self.name}': {e}")

    def _to_memory(self, record_id: str, document: str, metadata: dict) -> Optional[Memory]:
        try:
            return Memory.model_validate({"id": record_id, "content": document, **(metadata or {})})
        except ValidationError as validation_error:
            # One corrupted record must not hide the rest of the user's memories.
            logging.warning(f"Skipping record '{record_id}' in '{self.name}' due to validation error: {validation_error}")
            return None

    def add_record(self, memory: Memory) -> None:
        """Adds a single Memory to the collection."""
        if not self.collection:
            return
        try:
            meta_dict = memory.model_dump(exclude={"id", "content"}, exclude_none=True)
            self.collection.add(documents=[memory.content], metadatas=[meta_dict], ids=[memory.id])
        except Exception as e:
            logging.error(f"Could not add record to collection '{self.name}': {e}")

    def get_all_records(self) -> List[Memory]:
        """Retrieves and validates all records, oldest first."""
        if not self.collection or self.collection.count() == 0:
            return []
        try:
            stored = self.collection.get(include=["metadatas", "documents"])
            if not stored or not stored.get("ids"):
                return []
            records = [
                self._to_memory(record_id, stored["documents"][i], stored["metadatas"][i])
                for i, record_id in enumerate(stored["ids"])
            ]
            records = [r for r in records if r is not None]
            records.sort(key=lambda r: r.created_at)
            return records
        except Exception as e:
            logging.error(f"Could not retrieve records from collection '{self.name}': {e}")
            return []

    def query(self, query_text: str, n_results: int = MEMORY_QUERY_RESULTS) -> list[tuple[Memory, float]]:
        """Returns (memory, distance) pairs for the documents most similar to `query_text`."""
        if not self.collection or self.collection.count() == 0:
            return []
        try:
            results = self.collection.query(
                query_texts=[query_text],
                n_results=min(n_results, self.collection.count()),  # Cannot request more results than exist.
                include=["documents", "metadatas", "distances"],
            )
            if not results or not results.get("ids", [[]])[0]:
                return []
            distances = (results.get("distances") or [[]])[0]
            matches = []
            for i, record_id in enumerate(results["ids"][0]):
                memory = self._to_memory(record_id, results["documents"][0][i], results["metadatas"][0][i])
                if memory is not None:
                    distance = distances[i] if i < len(distances) else 1.0
                    matches.append((memory, float(distance)))
            return matches
        except Exception as e:
            logging.error(f"Could not query collection '{self.name}': {e}")
            return []

    def update_records_metadata(self, ids: List[str], metadatas: List[dict]):
        """Updates metadata for existing records in the collection."""
        if not self.collection:
            return
        try:
            self.collection.update(ids=ids, metadatas=metadatas)
        except Exception as e:
            logging.error(f"Could not update metadata in collection '{self.name}': {e}")


def _is_visible(memory: Memory, project_id: Optional[str]) -> bool:
    """Global memories are always visible; project-scoped ones only inside their project."""
    return memory.project_id is None or memory.project_id == project_id


def format_memory_context(memories: List[Memory]) -> str:
    """Renders memories grouped by layer, in the fixed layer order."""
    if not memories:
        return EMPTY_MEMORY_CONTEXT
    sections = []
    for layer in MEMORY_LAYERS:
        layer_items = [m for m in memories if m.layer == layer]
        if layer_items:
            lines = "\n".join(f"- {m.content} (importance {m.importance:.2f})" for m in layer_items)
            sections.append(f"[{layer.upper()}]\n{lines}")
    return "--- 4-LAYER MEMORY CONTEXT ---\n" + "\n\n".join(sections)


class MemoryManager:
    """
    The memory retriever and writer used by the router, the agents and the
    calling layer. Stores are opened lazily, one per user.
    """

    def __init__(self, store_factory=ChromaDBStore, max_open_stores: int = MEMORY_STORE_CACHE_SIZE):
        self._store_factory = store_factory
        self._max_open_stores = max_open_stores
        self._stores: "OrderedDict[str, Any]" = OrderedDict()
        # Background extraction threads open stores too.
        self._stores_lock = threading.Lock()

    def _store_for(self, user_id: str):
        with self._stores_lock:
            store = self._stores.get(user_id)
            if store is None:
                store = self._store_factory(collection_name=f"memories-{user_id}")
                self._stores[user_id] = store
                if len(self._stores) > self._max_open_stores:
                    self._stores.popitem(last=False)
            else:
                self._stores.move_to_end(user_id)
            return store

    @trace
    def create_memory(self, user_id: str, draft: MemoryDraft, project_id: Optional[str] = None) -> Memory:
        """Persists one memory. Personal and aesthetic memories are never scoped to a project."""
        scoped_project = project_id if draft.layer in ("project", "codebase") else None
        memory = Memory(
            user_id=user_id,
            layer=draft.layer,
            content=draft.content.strip(),
            importance=draft.importance,
            project_id=scoped_project,
        )
        self._store_for(user_id).add_record(memory)
        logging.info(f"Saved {memory.layer} memory {memory.id} for user '{user_id}'.")
        return memory

    @trace
    def get_user_memories(self, user_id: str, project_id: Optional[str] = None) -> List[Memory]:
        return [m for m in self._store_for(user_id).get_all_records() if _is_visible(m, project_id)]

    def _record_usage(self, user_id: str, memories: List[Memory]) -> None:
        if not memories:
            return
        ids = [m.id for m in memories]
        metadatas = [
            m.model_copy(update={"usage_count": m.usage_count + 1}).model_dump(exclude={"id", "content"}, exclude_none=True)
            for m in memories
        ]
        self._store_for(user_id).update_records_metadata(ids=ids, metadatas=metadatas)

    @trace
    def get_relevant_memories(self, user_id: str, prompt: str, project_id: Optional[str] = None) -> str:
        """
        Returns a ranked context block of the memories most relevant to `prompt`.

        Candidates come from a vector search; each is scored by similarity
        weighted by its importance, and only memories visible from
        `project_id` are kept.

        Args:
            user_id: Owner of the memories.
            prompt: The current user text.
            project_id: The active project, if any.

        Returns:
            A formatted context string; EMPTY_MEMORY_CONTEXT when nothing matches.
        """
        store = self._store_for(user_id)
        # Over-fetch, since project filtering happens after the vector search.
        matches = store.query(prompt, n_results=MEMORY_QUERY_RESULTS * 2)
        scored = [
            (memory, (1.0 / (1.0 + distance)) * (0.5 + memory.importance))
            for memory, distance in matches
            if _is_visible(memory, project_id)
        ]
        scored.sort(key=lambda pair: pair[1], reverse=True)
        selected = [memory for memory, _ in scored[:MEMORY_QUERY_RESULTS]]
        if selected:
            logging.info(f"Retrieved {len(selected)} relevant memories for user '{user_id}'.")
            self._record_usage(user_id, selected)
        return format_memory_context(selected)

    @trace
    def get_memories_for_context(self, user_id: str, project_id: Optional[str] = None) -> str:
        """Returns every visible memory, most important and most used first."""
        memories = self.get_user_memories(user_id, project_id)
        memories.sort(key=lambda m: (m.importance, m.usage_count), reverse=True)
        return format_memory_context(memories[:MEMORY_CONTEXT_MAX_ITEMS])

    @trace
    def extract_and_save_memory(self, user_id: str, user_text: str, ai_text: str, project_id: Optional[str], provider) -> List[Memory]:
        """
        Asks the model which durable memories an exchange contains and saves them.

        Runs as a background task after every turn; callers do not wait for it.
        """
        exchange = f"USER: {user_text}\n\nAI: {ai_text}"
        response = provider.generate_json(
            MEMORY_EXTRACTION_INSTRUCTION,
            exchange,
            MEMORY_EXTRACTION_SCHEMA,
            model=MEMORY_EXTRACTION_MODEL_NAME,
            temperature=0.2,
        )
        saved = []
        for item in response.get("memories") or []:
            try:
                draft = MemoryDraft.model_validate(item)
            except ValidationError as e:
                logging.warning(f"Discarding malformed extracted memory {item!r}: {e}")
                continue
            if draft.content.strip():
                saved.append(self.create_memory(user_id, draft, project_id))
        logging.info(f"Memory extraction saved {len(saved)} memories for user '{user_id}'.")
        return saved
