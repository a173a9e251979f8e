"""
The persistence gateway the agent core reads from and writes to.

`PersistenceGateway` is the data access contract: messages (with the plans and
clarifications embedded in them), projects, chats, caller profiles, the global
cost-settings record and the atomic credit counter. Semantics are
last-writer-wins; the core never holds a lock across calls.

`InMemoryGateway` implements the contract in process. It backs the development
server and the test suite.
"""
import abc
import logging
import threading
import time
import uuid
from typing import Optional

from data_models import AppSettings, Chat, Clarification, Message, Plan, Profile, Project, ProjectUpdate
from errors import AgentError, RecordNotFoundError
from tracer import trace


class PersistenceGateway(abc.ABC):
    """Key-addressable store for the records the agent core touches."""

    @abc.abstractmethod
    def add_message(self, message: Message) -> Message:
        """Persists an outgoing message and returns it with `id` and `created_at` set."""

    @abc.abstractmethod
    def get_message(self, message_id: str) -> Message: ...

    @abc.abstractmethod
    def get_messages(self, chat_id: str) -> list[Message]:
        """Returns the chat's messages, oldest first."""

    @abc.abstractmethod
    def update_message_plan(self, message_id: str, plan: Plan) -> Message:
        """Replaces the plan embedded in the given message."""

    @abc.abstractmethod
    def update_message_clarification(
        self, message_id: str, clarification: Clarification, text: Optional[str] = None
    ) -> Message: ...

    @abc.abstractmethod
    def get_project(self, project_id: str) -> Project: ...

    @abc.abstractmethod
    def update_project(self, project_id: str, update: ProjectUpdate) -> Project:
        """Merges the non-empty fields of `update` over the stored project."""

    @abc.abstractmethod
    def get_chat(self, chat_id: str) -> Chat: ...

    @abc.abstractmethod
    def update_chat(self, chat_id: str, **changes) -> Chat: ...

    @abc.abstractmethod
    def get_profile(self, user_id: str) -> Profile: ...

    @abc.abstractmethod
    def get_app_settings(self) -> AppSettings: ...

    @abc.abstractmethod
    def deduct_credits(self, user_id: str, amount: int) -> int:
        """
        Atomically decrements the user's credits and returns the new balance.

        Implementations must perform the check and the decrement as one
        operation so near-simultaneous requests cannot double-spend.
        """


class InMemoryGateway(PersistenceGateway):
    """A process-local gateway. Records are copied in and out so callers never alias stored state."""

    def __init__(self, app_settings: Optional[AppSettings] = None):
        self._lock = threading.Lock()
        self._messages: dict[str, Message] = {}
        self._projects: dict[str, Project] = {}
        self._chats: dict[str, Chat] = {}
        self._profiles: dict[str, Profile] = {}
        self._settings = app_settings or AppSettings()

    # --- Seeding helpers (not part of the gateway contract) ---

    def save_project(self, project: Project) -> Project:
        with self._lock:
            if not project.id:
                project = project.model_copy(update={"id": str(uuid.uuid4())})
            self._projects[project.id] = project.model_copy(deep=True)
            return project.model_copy(deep=True)

    def save_chat(self, chat: Chat) -> Chat:
        with self._lock:
            self._chats[chat.id] = chat.model_copy(deep=True)
            return chat.model_copy(deep=True)

    def save_profile(self, profile: Profile) -> Profile:
        with self._lock:
            self._profiles[profile.id] = profile.model_copy(deep=True)
            return profile.model_copy(deep=True)

    def save_app_settings(self, settings: AppSettings) -> None:
        with self._lock:
            self._settings = settings.model_copy(deep=True)

    # --- Messages ---

    @trace
    def add_message(self, message: Message) -> Message:
        with self._lock:
            stored = message.model_copy(deep=True, update={"id": str(uuid.uuid4()), "created_at": time.time()})
            self._messages[stored.id] = stored
            return stored.model_copy(deep=True)

    def _require_message(self, message_id: str) -> Message:
        message = self._messages.get(message_id)
        if message is None:
            raise RecordNotFoundError(f"Message '{message_id}' not found.")
        return message

    @trace
    def get_message(self, message_id: str) -> Message:
        with self._lock:
            return self._require_message(message_id).model_copy(deep=True)

    @trace
    def get_messages(self, chat_id: str) -> list[Message]:
        # Dict order is insertion order, which is creation order.
        with self._lock:
            return [m.model_copy(deep=True) for m in self._messages.values() if m.chat_id == chat_id]

    @trace
    def update_message_plan(self, message_id: str, plan: Plan) -> Message:
        with self._lock:
            updated = self._require_message(message_id).model_copy(update={"plan": plan.model_copy(deep=True)})
            self._messages[message_id] = updated
            return updated.model_copy(deep=True)

    @trace
    def update_message_clarification(
        self, message_id: str, clarification: Clarification, text: Optional[str] = None
    ) -> Message:
        with self._lock:
            changes = {"clarification": clarification.model_copy(deep=True)}
            if text is not None:
                changes["text"] = text
            updated = self._require_message(message_id).model_copy(update=changes)
            self._messages[message_id] = updated
            return updated.model_copy(deep=True)

    # --- Projects and chats ---

    @trace
    def get_project(self, project_id: str) -> Project:
        with self._lock:
            project = self._projects.get(project_id)
            if project is None:
                raise RecordNotFoundError(f"Project '{project_id}' not found.")
            return project.model_copy(deep=True)

    @trace
    def update_project(self, project_id: str, update: ProjectUpdate) -> Project:
        with self._lock:
            project = self._projects.get(project_id)
            if project is None:
                raise RecordNotFoundError(f"Project '{project_id}' not found.")
            changes = {field: getattr(update, field) for field in update.model_fields_set if getattr(update, field) is not None}
            updated = project.model_copy(deep=True, update=changes)
            self._projects[project_id] = updated
            logging.info(f"Updated project '{project_id}' fields: {sorted(changes)}")
            return updated.model_copy(deep=True)

    @trace
    def get_chat(self, chat_id: str) -> Chat:
        with self._lock:
            chat = self._chats.get(chat_id)
            if chat is None:
                raise RecordNotFoundError(f"Chat '{chat_id}' not found.")
            return chat.model_copy(deep=True)

    @trace
    def update_chat(self, chat_id: str, **changes) -> Chat:
        with self._lock:
            chat = self._chats.get(chat_id)
            if chat is None:
                raise RecordNotFoundError(f"Chat '{chat_id}' not found.")
            updated = chat.model_copy(update=changes)
            self._chats[chat_id] = updated
            return updated.model_copy(deep=True)

    # --- Profiles, settings and credits ---

    @trace
    def get_profile(self, user_id: str) -> Profile:
        with self._lock:
            profile = self._profiles.get(user_id)
            if profile is None:
                raise RecordNotFoundError(f"Could not find profile for user '{user_id}'.")
            return profile.model_copy(deep=True)

    @trace
    def get_app_settings(self) -> AppSettings:
        with self._lock:
            return self._settings.model_copy(deep=True)

    @trace
    def deduct_credits(self, user_id: str, amount: int) -> int:
        with self._lock:
            profile = self._profiles.get(user_id)
            if profile is None:
                raise RecordNotFoundError(f"Could not find profile for user '{user_id}'.")
            if profile.credits < amount:
                raise AgentError(f"Insufficient credits: {profile.credits} available, {amount} required.")
            self._profiles[user_id] = profile.model_copy(update={"credits": profile.credits - amount})
            return profile.credits - amount
