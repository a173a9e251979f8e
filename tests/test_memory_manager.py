import threading

import pytest

from data_models import Memory, MemoryDraft
from memory_manager import EMPTY_MEMORY_CONTEXT, ChromaDBStore, MemoryManager, format_memory_context


def test_chromadb_store_add_record(mocker):
    """
    Tests that ChromaDBStore.add_record calls the underlying chromadb client
    with the memory content as the document and no 'None' metadata values.
    """
    # 1. ARRANGE:
    # Mock the entire chromadb library to prevent file system access
    mock_chroma_client = mocker.patch("memory_manager.chromadb.PersistentClient")

    # Create a mock collection object that our mock client will return
    mock_collection = mocker.MagicMock()
    mock_chroma_client.return_value.get_or_create_collection.return_value = mock_collection

    test_memory = Memory(user_id="user-1", layer="personal", content="Likes neon colors.", importance=0.7)  # project_id is None

    # 2. ACT: Instantiate our class and call the method
    db_store = ChromaDBStore(collection_name="memories-user-1")
    db_store.add_record(test_memory)

    # 3. ASSERT: Verify that the mock collection's `add` method was called exactly once
    mock_collection.add.assert_called_once()
    call_args, call_kwargs = mock_collection.add.call_args

    assert call_kwargs["documents"] == ["Likes neon colors."]
    assert call_kwargs["ids"] == [test_memory.id]
    metadata_passed_to_db = call_kwargs["metadatas"][0]
    assert "project_id" not in metadata_passed_to_db  # because it was None
    assert metadata_passed_to_db["layer"] == "personal"
    assert metadata_passed_to_db["importance"] == 0.7


def test_chromadb_store_skips_corrupted_records(mocker):
    # 1. ARRANGE
    mock_chroma_client = mocker.patch("memory_manager.chromadb.PersistentClient")
    mock_collection = mocker.MagicMock()
    mock_collection.count.return_value = 2
    mock_collection.get.return_value = {
        "ids": ["good", "bad"],
        "documents": ["Uses Rojo.", "???"],
        "metadatas": [
            {"user_id": "user-1", "layer": "codebase", "importance": 0.5, "created_at": 1.0},
            {"user_id": "user-1", "layer": "not-a-layer"},
        ],
    }
    mock_chroma_client.return_value.get_or_create_collection.return_value = mock_collection

    # 2. ACT
    records = ChromaDBStore(collection_name="memories-user-1").get_all_records()

    # 3. ASSERT
    assert [r.id for r in records] == ["good"]


@pytest.fixture
def store(mocker):
    return mocker.MagicMock(name="store")


@pytest.fixture
def manager(store):
    return MemoryManager(store_factory=lambda collection_name: store)


def test_create_memory_scopes_only_project_layers(manager, store):
    # 2. ACT
    personal = manager.create_memory("user-1", MemoryDraft(layer="personal", content="Name is Sam"), project_id="p1")
    codebase = manager.create_memory("user-1", MemoryDraft(layer="codebase", content="Uses Rojo"), project_id="p1")

    # 3. ASSERT
    assert personal.project_id is None
    assert codebase.project_id == "p1"
    assert store.add_record.call_count == 2


def test_relevant_memories_are_ranked_and_filtered_by_project(manager, store):
    # 1. ARRANGE
    other_project = Memory(user_id="user-1", layer="project", content="Other project secret", importance=1.0, project_id="p2")
    weak = Memory(user_id="user-1", layer="personal", content="Likes cats", importance=0.1)
    strong = Memory(user_id="user-1", layer="project", content="Obby has 10 levels", importance=0.9, project_id="p1")
    store.query.return_value = [(other_project, 0.1), (weak, 0.5), (strong, 0.5)]

    # 2. ACT
    context = manager.get_relevant_memories("user-1", "levels?", project_id="p1")

    # 3. ASSERT
    assert "Other project secret" not in context
    assert context.startswith("--- 4-LAYER MEMORY CONTEXT ---")
    assert "Obby has 10 levels" in context and "Likes cats" in context
    updated_ids = store.update_records_metadata.call_args.kwargs["ids"]
    assert updated_ids == [strong.id, weak.id]
    updated_counts = [m["usage_count"] for m in store.update_records_metadata.call_args.kwargs["metadatas"]]
    assert updated_counts == [1, 1]


def test_no_matches_gives_empty_context(manager, store):
    store.query.return_value = []

    assert manager.get_relevant_memories("user-1", "anything") == EMPTY_MEMORY_CONTEXT
    store.update_records_metadata.assert_not_called()


def test_context_groups_layers_in_fixed_order():
    memories = [
        Memory(user_id="u", layer="aesthetic", content="Neon"),
        Memory(user_id="u", layer="personal", content="Sam"),
    ]

    context = format_memory_context(memories)

    assert context.index("[PERSONAL]") < context.index("[AESTHETIC]")


def test_extract_and_save_memory_keeps_valid_entries(mocker, manager, store):
    # 1. ARRANGE
    provider = mocker.MagicMock()
    provider.generate_json.return_value = {
        "memories": [
            {"layer": "personal", "content": "Name is Sam", "importance": 0.9},
            {"layer": "feelings", "content": "bad layer", "importance": 0.5},
            {"layer": "project", "content": "   ", "importance": 0.5},
        ]
    }

    # 2. ACT
    saved = manager.extract_and_save_memory("user-1", "I'm Sam", "Hi Sam!", "p1", provider)

    # 3. ASSERT
    assert [m.content for m in saved] == ["Name is Sam"]
    assert store.add_record.call_count == 1
    exchange = provider.generate_json.call_args.args[1]
    assert "USER: I'm Sam" in exchange and "AI: Hi Sam!" in exchange


def test_store_cache_opens_each_user_once_and_evicts_oldest(mocker):
    # 1. ARRANGE
    factory = mocker.MagicMock(side_effect=lambda collection_name: mocker.MagicMock(name=collection_name))
    manager = MemoryManager(store_factory=factory, max_open_stores=2)

    # 2. ACT
    threads = [threading.Thread(target=manager.get_user_memories, args=("user-a",)) for _ in range(10)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    manager.get_user_memories("user-b")
    manager.get_user_memories("user-a")
    manager.get_user_memories("user-c")
    manager.get_user_memories("user-b")

    # 3. ASSERT
    opened = [c.kwargs["collection_name"] for c in factory.call_args_list]
    assert opened == ["memories-user-a", "memories-user-b", "memories-user-c", "memories-user-b"]
