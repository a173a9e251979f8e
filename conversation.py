"""
The calling layer around the router.

`ConversationService` turns a user action into one or more agent turns and
writes the results back:
- `send_message` persists the user's message, dispatches the turn, persists
  the agent's messages and applies any project or plan mutation;
- `submit_clarification` attaches the user's answers to a clarification
  (exactly once) and re-dispatches the original request with them;
- `execute_plan` runs a stored plan through the plan executor.

After every turn it spawns the fire-and-forget follow-ups: memory extraction
from the exchange and, for a chat's first exchange, title generation.

Sends are serialized per chat so two turns of one chat never interleave.
"""
import logging
import threading
from contextlib import contextmanager
from typing import Callable, Optional

from agents.types import AgentInput, AgentServices
from config import NEW_CHAT_NAME
from data_models import AgentExecutionResult, Chat, Message, Plan, Profile, Project, WorkspaceMode
from errors import AgentError, RecordNotFoundError
from gemini_client import GeminiProvider
from orchestrator import dispatch
from plan_executor import PlanListener, execute_plan
from tracer import trace
from utils import StreamSink, spawn_background

CLARIFICATION_ANSWERED_TEXT = "Thanks for the answers! Putting the plan together now."


class ConversationService:
    """
    Coordinates the persistence gateway, the memory manager and the router.

    Args:
        gateway: The persistence gateway.
        memory: The memory manager.
        provider_factory: Builds a completion provider from the caller's API
            key. Defaults to GeminiProvider.
    """

    def __init__(self, gateway, memory, provider_factory: Callable[[str], object] = GeminiProvider):
        self.gateway = gateway
        self.memory = memory
        self.provider_factory = provider_factory
        # chat_id -> [lock, number of callers holding or waiting on it]
        self._chat_locks: dict[str, list] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def _chat_lock(self, chat_id: str):
        """Serializes work on one chat; the entry is dropped when its last user leaves."""
        with self._locks_guard:
            entry = self._chat_locks.setdefault(chat_id, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._locks_guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._chat_locks[chat_id]

    def _services(self, api_key: str) -> AgentServices:
        return AgentServices(provider=self.provider_factory(api_key), gateway=self.gateway, memory=self.memory)

    def _load_profile(self, user_id: str) -> Optional[Profile]:
        try:
            return self.gateway.get_profile(user_id)
        except RecordNotFoundError:
            logging.warning(f"No profile found for user '{user_id}'.")
            return None

    def _load_project(self, chat: Chat, user_id: str) -> Project:
        if chat.project_id:
            return self.gateway.get_project(chat.project_id)
        # Chats outside a project still need a container for the agents to read.
        return Project(user_id=user_id, name="Autonomous Chat", project_type="conversation")

    def _build_input(
        self,
        chat: Chat,
        user_id: str,
        prompt: str,
        api_key: str,
        history: list[Message],
        workspace_mode: WorkspaceMode,
        on_stream_chunk: Optional[StreamSink],
        answers: Optional[list[str]] = None,
    ) -> AgentInput:
        project = self._load_project(chat, user_id)
        return AgentInput(
            prompt=prompt,
            api_key=api_key,
            model=project.default_model,
            project=project,
            chat=chat,
            user_id=user_id,
            profile=self._load_profile(user_id),
            history=history,
            workspace_mode=workspace_mode,
            answers=answers,
            on_stream_chunk=on_stream_chunk,
        )

    @trace
    def _apply_result(self, chat: Chat, user_id: str, result: AgentExecutionResult) -> AgentExecutionResult:
        """Persists the agent's messages and mutations; returns the result with persisted messages."""
        saved = [
            self.gateway.add_message(
                message.model_copy(update={"chat_id": chat.id, "project_id": chat.project_id, "user_id": user_id})
            )
            for message in result.messages
        ]
        if result.updated_plan is not None:
            self.gateway.update_message_plan(result.updated_plan.message_id, result.updated_plan.plan)
        if result.project_update is not None:
            if chat.project_id:
                self.gateway.update_project(chat.project_id, result.project_update)
            else:
                logging.warning(f"Dropping project update for chat '{chat.id}', which has no project.")
        return result.model_copy(update={"messages": saved})

    def _after_turn(
        self,
        chat: Chat,
        user_id: str,
        user_text: str,
        result: AgentExecutionResult,
        services: AgentServices,
        is_first_turn: bool,
    ) -> None:
        ai_text = "\n\n".join(m.text for m in result.messages if m.text)
        if not ai_text:
            return
        spawn_background(
            self.memory.extract_and_save_memory,
            user_id,
            user_text,
            ai_text,
            chat.project_id,
            services.provider,
            name="memory-extraction",
        )
        if is_first_turn and chat.name == NEW_CHAT_NAME:
            spawn_background(self._generate_title, chat.id, user_text, ai_text, services.provider, name="chat-title")

    def _generate_title(self, chat_id: str, user_text: str, ai_text: str, provider) -> None:
        title = provider.generate_chat_title(user_text, ai_text)
        if title:
            self.gateway.update_chat(chat_id, name=title)
            logging.info(f"Renamed chat '{chat_id}' to '{title}'.")

    @trace
    def send_message(
        self,
        chat_id: str,
        user_id: str,
        text: str,
        api_key: str,
        workspace_mode: WorkspaceMode = "cocreator",
        on_stream_chunk: Optional[StreamSink] = None,
    ) -> AgentExecutionResult:
        """
        Handles one user message end to end.

        Args:
            chat_id: The chat the message belongs to.
            user_id: The sender.
            text: The message text.
            api_key: The caller's Gemini API key.
            workspace_mode: "autonomous" or "cocreator".
            on_stream_chunk: Optional sink for streamed output.

        Returns:
            The agent result, with its messages as persisted.

        Raises:
            ValueError: If `text` is blank.
            RecordNotFoundError: If the chat does not exist.
        """
        if not text or not text.strip():
            raise ValueError("Cannot send an empty message.")

        services = self._services(api_key)
        with self._chat_lock(chat_id):
            chat = self.gateway.get_chat(chat_id)
            history = self.gateway.get_messages(chat_id)
            user_message = self.gateway.add_message(
                Message(sender="user", text=text, chat_id=chat_id, project_id=chat.project_id, user_id=user_id)
            )
            agent_input = self._build_input(
                chat, user_id, text, api_key, [*history, user_message], workspace_mode, on_stream_chunk
            )
            result = self._apply_result(chat, user_id, dispatch(agent_input, services))

        self._after_turn(chat, user_id, text, result, services, is_first_turn=not history)
        return result

    @trace
    def submit_clarification(
        self,
        message_id: str,
        answers: list[str],
        user_id: str,
        api_key: str,
        workspace_mode: WorkspaceMode = "cocreator",
        on_stream_chunk: Optional[StreamSink] = None,
    ) -> AgentExecutionResult:
        """
        Resumes a clarification with the user's answers.

        The answers are attached to the clarification message once and the
        original request is dispatched again with them, using the history up
        to and including that message.

        Raises:
            AgentError: If the message has no clarification, or it was
                already answered.
        """
        message = self.gateway.get_message(message_id)
        with self._chat_lock(message.chat_id):
            # Re-read under the lock so two submissions cannot both attach answers.
            clarification = self.gateway.get_message(message_id).clarification
            if clarification is None:
                raise AgentError(f"Message '{message_id}' has no clarification to answer.")
            if clarification.answers is not None:
                raise AgentError(f"The clarification on message '{message_id}' has already been answered.")

            answered = clarification.model_copy(update={"answers": list(answers)})
            updated = self.gateway.update_message_clarification(message_id, answered, text=CLARIFICATION_ANSWERED_TEXT)

            chat = self.gateway.get_chat(message.chat_id)
            history = self.gateway.get_messages(chat.id)
            cutoff = next((i for i, m in enumerate(history) if m.id == message_id), len(history) - 1)
            history = [*history[:cutoff], updated]

            services = self._services(api_key)
            agent_input = self._build_input(
                chat,
                user_id,
                clarification.prompt,
                api_key,
                history,
                workspace_mode,
                on_stream_chunk,
                answers=list(answers),
            )
            result = self._apply_result(chat, user_id, dispatch(agent_input, services))

        self._after_turn(chat, user_id, clarification.prompt, result, services, is_first_turn=False)
        return result

    @trace
    def execute_plan(
        self,
        message_id: str,
        user_id: str,
        api_key: str,
        on_update: Optional[PlanListener] = None,
    ) -> Plan:
        """Runs every remaining task of the plan on `message_id`."""
        message = self.gateway.get_message(message_id)
        if message.plan is None:
            raise AgentError(f"Message '{message_id}' does not carry a plan.")

        with self._chat_lock(message.chat_id):
            chat = self.gateway.get_chat(message.chat_id)
            history = self.gateway.get_messages(chat.id)
            services = self._services(api_key)
            agent_input = self._build_input(
                chat, user_id, f"Execute the plan: {message.plan.title}", api_key, history, "cocreator", None
            )
            # Plan execution needs memory context too; it does not pass through the router.
            agent_input = agent_input.model_copy(
                update={"memory_context": self.memory.get_memories_for_context(user_id, chat.project_id)}
            )
            return execute_plan(message_id, agent_input, services, on_update)
