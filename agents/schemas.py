"""
Response schemas for the structured provider calls, and the pydantic models
that validate what comes back.

Each `*_SCHEMA` dictionary is passed to the provider as `response_schema`.
The provider constrains the shape, but fields the model may legitimately
omit (one-of outputs) are not marked required, so every parsed response is
re-validated here with `parse_response` before an agent trusts it.
"""
import logging
from typing import Any, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from data_models import MemoryDraft
from errors import AgentResponseError

_MEMORY_ITEM = {
    "type": "object",
    "properties": {
        "layer": {"type": "string", "description": "One of: personal, project, codebase, aesthetic."},
        "content": {"type": "string"},
        "importance": {"type": "number", "description": "From 0 (trivial) to 1 (essential)."},
    },
    "required": ["layer", "content", "importance"],
}

MEMORY_WRITER_SCHEMA = {
    "type": "object",
    "properties": {
        "memoriesToCreate": {"type": "array", "items": _MEMORY_ITEM},
        "responseText": {"type": "string"},
    },
}

BUILD_SCHEMA = {
    "type": "object",
    "properties": {
        "responseText": {"type": "string", "description": "Clarifying questions, only when no code can be written."},
        "explanation": {"type": "string", "description": "A brief summary of the code that was written."},
        "files": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "filePath": {"type": "string", "description": "The full path of the file, e.g. 'src/index.html'."},
                    "code": {"type": "string", "description": "The complete file contents."},
                    "language": {"type": "string"},
                },
                "required": ["filePath", "code", "language"],
            },
        },
    },
}

THINKER_SCHEMA = {
    "type": "object",
    "properties": {
        "thought": {"type": "string"},
        "response": {"type": "string"},
    },
    "required": ["thought", "response"],
}

CLARIFICATION_SCHEMA = {
    "type": "object",
    "properties": {
        "questions": {
            "type": "array",
            "items": {"type": "string"},
            "description": "Clarifying questions for the user. Empty if none are needed.",
        }
    },
    "required": ["questions"],
}

PLAN_SCHEMA = {
    "type": "object",
    "properties": {
        "title": {"type": "string", "description": "A short, descriptive title for the plan."},
        "introduction": {"type": "string", "description": "A friendly sentence introducing the plan."},
        "features": {"type": "array", "items": {"type": "string"}},
        "mermaidGraph": {"type": "string", "description": "A Mermaid.js graph definition."},
        "tasks": {"type": "array", "items": {"type": "string"}},
    },
    "required": ["title", "introduction", "features", "mermaidGraph", "tasks"],
}

AUTONOMOUS_SCHEMA = {
    "type": "object",
    "properties": {
        "userResponse": {"type": "string"},
        "imagePrompt": {"type": "string"},
        "code": {"type": "string"},
        "language": {"type": "string"},
        "memoryToCreate": {"type": "array", "items": _MEMORY_ITEM},
    },
    "required": ["userResponse"],
}


def _entries(value: Any) -> list:
    if isinstance(value, dict):
        return [value]
    if isinstance(value, list):
        return value
    if value is not None:
        logging.warning(f"Ignoring memory entries that are not a list: {value!r}")
    return []


def memory_drafts(entries: list) -> list[MemoryDraft]:
    """
    Validates raw memory entries one at a time.

    Entries with an unknown layer, an out-of-range importance or blank
    content are dropped with a warning; the rest are returned in order.
    """
    drafts = []
    for item in entries:
        try:
            draft = MemoryDraft.model_validate(item)
        except ValidationError as e:
            logging.warning(f"Discarding malformed memory entry {item!r}: {e}")
            continue
        if draft.content.strip():
            drafts.append(draft)
    return drafts


class MemoryWriterResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # Raw entries; see `memory_drafts`.
    memories_to_create: list[Any] = Field(default_factory=list, alias="memoriesToCreate")
    response_text: Optional[str] = Field(default=None, alias="responseText")

    @field_validator("memories_to_create", mode="before")
    @classmethod
    def entries_as_list(cls, value: Any) -> list:
        return _entries(value)


class GeneratedFile(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    file_path: str = Field(alias="filePath")
    code: str
    language: str = "plaintext"

    @field_validator("file_path")
    @classmethod
    def path_must_not_be_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("every generated file needs a non-empty filePath")
        return value


class BuildResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    response_text: Optional[str] = Field(default=None, alias="responseText")
    explanation: Optional[str] = None
    files: list[GeneratedFile] = Field(default_factory=list)


class ClarificationResponse(BaseModel):
    questions: list[str] = Field(default_factory=list)


class PlanResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str
    introduction: str
    features: list[str]
    mermaid_graph: str = Field(alias="mermaidGraph")
    tasks: list[str]


class AutonomousResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_response: str = Field(default="", alias="userResponse")
    image_prompt: Optional[str] = Field(default=None, alias="imagePrompt")
    code: Optional[str] = None
    language: Optional[str] = None
    memory_to_create: list[Any] = Field(default_factory=list, alias="memoryToCreate")

    @field_validator("memory_to_create", mode="before")
    @classmethod
    def entries_as_list(cls, value: Any) -> list:
        return _entries(value)


ResponseModel = TypeVar("ResponseModel", bound=BaseModel)


def parse_response(model_cls: Type[ResponseModel], data: dict) -> ResponseModel:
    """Validates a parsed provider response, raising AgentResponseError on mismatch."""
    try:
        return model_cls.model_validate(data)
    except ValidationError as e:
        raise AgentResponseError(f"The AI response did not match the expected {model_cls.__name__} format: {e}") from e
