"""
The Plan agent, which acts as the memory writer.

A single structured call decides between two outcomes, never both: write
zero or more memories, or reply conversationally. Where the memories go
depends on the chat:
- a chat linked to a project folds them into `project.project_memory`,
  returned as a `project_update` for the calling layer to apply;
- a chat with no project writes them as itemized records through the
  memory store.
"""
import logging

from agents.instructions import MEMORY_WRITER_INSTRUCTION, with_context
from agents.schemas import MEMORY_WRITER_SCHEMA, MemoryWriterResponse, memory_drafts, parse_response
from agents.types import AgentInput, AgentServices
from data_models import AgentExecutionResult, MemoryDraft, ProjectUpdate
from errors import AgentResponseError, get_user_friendly_error
from tracer import trace
from utils import to_provider_history, with_user_prompt

PROJECT_MEMORY_TARGET = "project"
RECORD_MEMORY_TARGET = "records"


def memory_target(agent_input: AgentInput) -> str:
    return PROJECT_MEMORY_TARGET if agent_input.chat.project_id else RECORD_MEMORY_TARGET


def fold_into_project_memory(existing: str, drafts: list[MemoryDraft]) -> str:
    """Appends drafts to the project memory blob as `- [layer] content` lines."""
    lines = "\n".join(f"- [{draft.layer}] {draft.content.strip()}" for draft in drafts)
    existing = (existing or "").rstrip()
    return f"{existing}\n{lines}" if existing else lines


def _confirmation(drafts: list[MemoryDraft], target: str) -> str:
    noun = "memory" if len(drafts) == 1 else "memories"
    where = "the project memory" if target == PROJECT_MEMORY_TARGET else "your long-term memory"
    items = "\n".join(f"- {draft.content.strip()}" for draft in drafts)
    return f"Got it! I've saved {len(drafts)} {noun} to {where}:\n{items}"


@trace
def run_plan_agent(agent_input: AgentInput, services: AgentServices) -> AgentExecutionResult:
    instruction = with_context(
        MEMORY_WRITER_INSTRUCTION,
        memory_context=agent_input.memory_context,
        project_memory=agent_input.project.project_memory,
    )
    contents = with_user_prompt(to_provider_history(agent_input.history), agent_input.prompt)

    try:
        data = services.provider.generate_json(instruction, contents, MEMORY_WRITER_SCHEMA, model=agent_input.model)
        response = parse_response(MemoryWriterResponse, data)
        drafts = memory_drafts(response.memories_to_create)
        if not drafts and not (response.response_text and response.response_text.strip()) and "memoriesToCreate" not in data:
            raise AgentResponseError("The memory writer returned neither memories nor a reply.")
    except Exception as e:
        logging.error(f"Memory writer failed for chat '{agent_input.chat.id}': {e}")
        return agent_input.single_message(f"Sorry, I couldn't update the memory. {get_user_friendly_error(e)}")

    if not drafts:
        if response.response_text and response.response_text.strip():
            return agent_input.single_message(response.response_text.strip())
        return agent_input.single_message("There was nothing new worth saving to memory this time.")

    target = memory_target(agent_input)
    if target == PROJECT_MEMORY_TARGET:
        merged = fold_into_project_memory(agent_input.project.project_memory, drafts)
        logging.info(f"Folding {len(drafts)} memories into project '{agent_input.chat.project_id}'.")
        return AgentExecutionResult(
            messages=[agent_input.ai_message(_confirmation(drafts, target))],
            project_update=ProjectUpdate(project_memory=merged),
        )

    saved, last_error = [], None
    for draft in drafts:
        try:
            services.memory.create_memory(agent_input.user_id, draft)
            saved.append(draft)
        except Exception as e:
            last_error = e
            logging.warning(f"Could not save memory record for user '{agent_input.user_id}': {e}")
    logging.info(f"Wrote {len(saved)} of {len(drafts)} memory records for user '{agent_input.user_id}'.")

    if not saved:
        return agent_input.single_message(f"Sorry, I couldn't save those memories. {get_user_friendly_error(last_error)}")
    text = _confirmation(saved, target)
    if len(saved) < len(drafts):
        text += f"\n\n{len(drafts) - len(saved)} more couldn't be saved. {get_user_friendly_error(last_error)}"
    return agent_input.single_message(text)
