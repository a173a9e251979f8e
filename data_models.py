"""
Defines the core data structures for the agent core using Pydantic.

These models are shared by the router, the agents, the plan executor, the
memory manager and the persistence gateway, so that every component agrees on
the shape of a message, a plan or a memory. Plans and tasks keep the camelCase
field names they are stored and rendered with (`mermaidGraph`, `isComplete`)
as aliases.
"""

import time
import uuid
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from config import DEFAULT_MODEL_NAME

Sender = Literal["user", "ai"]
TaskStatus = Literal["pending", "in-progress", "complete"]
WorkspaceMode = Literal["autonomous", "cocreator"]
MemoryLayer = Literal["personal", "project", "codebase", "aesthetic"]
ProjectPlatform = Literal["Web App", "Roblox Studio"]


class ChatMode(str, Enum):
    """The per-chat agent selector used in the co-creator workspace."""

    CHAT = "chat"
    PLAN = "plan"
    BUILD = "build"
    THINKER = "thinker"
    SUPER_AGENT = "super_agent"
    PRO_MAX = "pro_max"


class ConversationTurn(BaseModel):
    """A single provider-ready turn. History is an ordered list of these, oldest first."""

    model_config = ConfigDict(frozen=True)

    prompt: str
    sender_role: Sender


class Task(BaseModel):
    """One step of a plan. Status only ever moves forward."""

    text: str
    status: TaskStatus = "pending"
    code: Optional[str] = None
    explanation: Optional[str] = None


class Plan(BaseModel):
    """A titled, ordered task list attached to one specific AI message."""

    model_config = ConfigDict(populate_by_name=True)

    title: str
    features: list[str] = Field(default_factory=list)
    mermaid_graph: str = Field(default="", alias="mermaidGraph")
    tasks: list[Task] = Field(default_factory=list)
    is_complete: bool = Field(default=False, alias="isComplete")

    def first_pending_index(self) -> Optional[int]:
        """Returns the index of the first task still pending, if any."""
        for index, task in enumerate(self.tasks):
            if task.status == "pending":
                return index
        return None


class Clarification(BaseModel):
    """A question set awaiting the user's answers before a plan is generated."""

    prompt: str
    questions: list[str]
    # Attached exactly once, by the resumption call.
    answers: Optional[list[str]] = None


class ThinkerResponse(BaseModel):
    thought: str
    response: str


class Message(BaseModel):
    """
    A chat message, either persisted (with `id`) or outgoing (without).

    Agents only ever produce outgoing messages; the calling layer persists them
    and the gateway assigns `id` and `created_at`.
    """

    id: Optional[str] = None
    project_id: Optional[str] = None
    chat_id: Optional[str] = None
    user_id: Optional[str] = None
    sender: Sender
    text: str = ""
    code: Optional[str] = None
    language: Optional[str] = None
    plan: Optional[Plan] = None
    clarification: Optional[Clarification] = None
    # For Thinker mode, the two intermediate debate positions.
    standing_response: Optional[ThinkerResponse] = None
    opposing_response: Optional[ThinkerResponse] = None
    image_base64: Optional[str] = None
    image_status: Optional[Literal["generating", "complete"]] = None
    # Only attached for admin callers, for debugging prompts.
    raw_ai_response: Optional[str] = None
    created_at: Optional[float] = None


class FileEntry(BaseModel):
    content: str
    language: Optional[str] = None


class Project(BaseModel):
    """A coarse container owning chats, generated files and an accumulated memory blob."""

    id: Optional[str] = None
    user_id: str
    name: str = "Untitled Project"
    description: str = ""
    status: Literal["In Progress", "Archived"] = "In Progress"
    platform: ProjectPlatform = "Web App"
    project_type: str = "code"
    default_model: str = DEFAULT_MODEL_NAME
    project_memory: Optional[str] = None
    # Flat map keyed by full file path; replaced on every write, never edited in place.
    files: dict[str, FileEntry] = Field(default_factory=dict)


class ProjectUpdate(BaseModel):
    """A partial project, as returned by agents that mutate project state."""

    files: Optional[dict[str, FileEntry]] = None
    project_memory: Optional[str] = None
    default_model: Optional[str] = None


class Chat(BaseModel):
    id: str
    project_id: Optional[str] = None
    user_id: str
    name: str = "New Chat"
    # Kept as a plain string so unknown modes reach the router's default arm.
    mode: str = ChatMode.BUILD.value


class Profile(BaseModel):
    id: str
    display_name: Optional[str] = None
    role: Literal["admin", "user"] = "user"
    credits: int = 0
    preferred_image_model: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


class AppSettings(BaseModel):
    """The single global cost-settings record."""

    image_costs: dict[str, int] = Field(default_factory=dict)


class MemoryDraft(BaseModel):
    """A memory an agent wants written; the store assigns identity and ownership."""

    layer: MemoryLayer
    content: str
    importance: float = Field(default=0.5, ge=0.0, le=1.0)


class Memory(BaseModel):
    """A long-term memory owned by (user, layer, optional project)."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    layer: MemoryLayer
    content: str
    importance: float = Field(default=0.5, ge=0.0, le=1.0)
    usage_count: int = 0
    project_id: Optional[str] = None
    created_at: float = Field(default_factory=time.time)


class UpdatedPlan(BaseModel):
    """A plan mutation, addressed to the message that carries the plan."""

    message_id: str
    plan: Plan


class AgentExecutionResult(BaseModel):
    """
    The uniform output of every agent.

    `messages` is never empty on success; on total failure it holds exactly
    one synthetic error message.
    """

    messages: list[Message]
    project_update: Optional[ProjectUpdate] = None
    updated_plan: Optional[UpdatedPlan] = None

    def summary(self) -> dict[str, Any]:
        """A compact description used by the audit trail."""
        return {
            "messages": len(self.messages),
            "project_update": self.project_update is not None,
            "updated_plan": self.updated_plan.message_id if self.updated_plan else None,
        }
