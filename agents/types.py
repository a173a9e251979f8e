"""
The input contract shared by every agent and the bundle of services they call.

`AgentInput` is the single value every strategy consumes. `AgentServices` is
the context object passed alongside it, in the manner of a session object:
the completion provider for this turn, the persistence gateway and the
memory manager.
"""
from typing import Any, Callable, Optional

from pydantic import BaseModel, ConfigDict, Field

from config import DEFAULT_MODEL_NAME
from data_models import AgentExecutionResult, Chat, Message, Profile, Project, WorkspaceMode
from utils import StreamSink


class AgentInput(BaseModel):
    """Everything an agent needs to handle one inbound message."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    prompt: str
    api_key: str
    model: str = DEFAULT_MODEL_NAME
    project: Project
    chat: Chat
    user_id: str
    # The caller's profile as of the start of the turn; may be stale.
    profile: Optional[Profile] = None
    # Full ordered history; the router replaces it with the summarized form.
    history: list[Message] = Field(default_factory=list)
    workspace_mode: WorkspaceMode = "cocreator"
    # Present only when resuming a clarification for the same request.
    answers: Optional[list[str]] = None
    on_stream_chunk: Optional[StreamSink] = None
    memory_context: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.profile is not None and self.profile.is_admin

    @property
    def project_id(self) -> Optional[str]:
        return self.project.id or self.chat.project_id

    def ai_message(self, text: str, **fields: Any) -> Message:
        """Builds an outgoing AI message tagged with this turn's chat and project."""
        return Message(sender="ai", chat_id=self.chat.id, project_id=self.project_id, text=text, **fields)

    def single_message(self, text: str, **fields: Any) -> AgentExecutionResult:
        return AgentExecutionResult(messages=[self.ai_message(text, **fields)])


class AgentServices(BaseModel):
    """The collaborators available to an agent during one turn."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    # Typed loosely so tests can pass mocks in place of the real clients.
    provider: Any  # gemini_client.GeminiProvider
    gateway: Any  # persistence.PersistenceGateway
    memory: Any  # memory_manager.MemoryManager


AgentHandler = Callable[[AgentInput, AgentServices], AgentExecutionResult]
