"""
The Build agent: writes code into the project's file map.

It has two faces:
1. Task runner. If the latest plan-carrying AI message in the history still
   has a pending task, the agent ignores the literal prompt and executes
   ONLY that task, then marks it complete on a copy of the plan and returns
   the copy as `updated_plan`.
2. Free-form build. Otherwise the user's prompt is the build request.

Either way the model answers with generated files (merged copy-on-write into
`project.files`) or, when the request cannot be acted on, a clarifying reply.
`generate_code_for_task` is the code-generation path shared with the plan
executor.
"""
import json
import logging
from typing import Optional

from agents.instructions import BUILD_INSTRUCTION, with_context
from agents.schemas import BUILD_SCHEMA, BuildResponse, GeneratedFile, parse_response
from agents.types import AgentInput, AgentServices
from data_models import AgentExecutionResult, FileEntry, Message, ProjectUpdate, UpdatedPlan
from errors import AgentResponseError, get_user_friendly_error
from tracer import trace
from utils import emit_chunk, to_provider_history, with_user_prompt


def find_task_to_run(history: list[Message]) -> Optional[tuple[Message, int]]:
    """
    Locates the task the runner should execute.

    Only the most recent AI message carrying a plan is considered; older
    plans are superseded even if they still have pending tasks.

    Returns:
        (plan message, task index), or None if there is no pending task.
    """
    for message in reversed(history):
        if message.sender == "ai" and message.plan is not None:
            index = message.plan.first_pending_index()
            if index is None or not message.id:
                return None
            return message, index
    return None


def build_task_prompt(task_text: str) -> str:
    return (
        f'Based on the plan, execute ONLY the following task: "{task_text}". '
        "Write the complete code for every file this task creates or changes."
    )


def merge_files(existing: dict[str, FileEntry], files: list[GeneratedFile]) -> dict[str, FileEntry]:
    """Returns a new file map with `files` written over `existing`; neither input is modified."""
    merged = {path: entry.model_copy() for path, entry in existing.items()}
    for generated in files:
        merged[generated.file_path] = FileEntry(content=generated.code, language=generated.language)
    return merged


def format_task_code(files: list[GeneratedFile]) -> str:
    """Renders generated files as one block for a task's `code` field."""
    return "\n\n".join(f"-- {generated.file_path}\n{generated.code}" for generated in files)


def _file_list(files: list[GeneratedFile]) -> str:
    return ", ".join(f"`{generated.file_path}`" for generated in files)


def _build_instruction(agent_input: AgentInput) -> str:
    instruction = with_context(
        BUILD_INSTRUCTION,
        memory_context=agent_input.memory_context,
        project_memory=agent_input.project.project_memory,
        platform=agent_input.project.platform,
    )
    if agent_input.project.files:
        paths = "\n".join(f"- {path}" for path in sorted(agent_input.project.files))
        instruction += f"\n\n--- EXISTING PROJECT FILES ---\n{paths}"
    return instruction


def _request_build(agent_input: AgentInput, services: AgentServices, prompt: str) -> tuple[BuildResponse, dict]:
    contents = with_user_prompt(to_provider_history(agent_input.history, render_plans=True), prompt)
    data = services.provider.generate_json(_build_instruction(agent_input), contents, BUILD_SCHEMA, model=agent_input.model)
    return parse_response(BuildResponse, data), data


@trace
def generate_code_for_task(task_text: str, agent_input: AgentInput, services: AgentServices) -> BuildResponse:
    """
    Runs the code-generation path for a single plan task.

    Raises:
        AgentResponseError: If the model asked a question instead of
            returning files.
    """
    response, _ = _request_build(agent_input, services, build_task_prompt(task_text))
    if not response.files:
        detail = (response.response_text or "").strip() or "no files were returned"
        raise AgentResponseError(f"The Build AI did not produce code for this task: {detail}")
    return response


@trace
def run_build_agent(agent_input: AgentInput, services: AgentServices) -> AgentExecutionResult:
    sink = agent_input.on_stream_chunk
    target = find_task_to_run(agent_input.history)
    plan_message, task_index, plan = None, None, None

    if target is not None:
        plan_message, task_index = target
        plan = plan_message.plan.model_copy(deep=True)
        task_text = plan.tasks[task_index].text
        prompt = build_task_prompt(task_text)
        emit_chunk(sink, f"Starting task: {task_text}\n\n")
        logging.info(f"Build agent running task {task_index + 1}/{len(plan.tasks)} of plan '{plan.title}'.")
    else:
        prompt = agent_input.prompt
        emit_chunk(sink, "Alright, let's get building... 🛠️\n\n")

    try:
        response, raw = _request_build(agent_input, services, prompt)
        if not response.files and not (response.response_text or "").strip():
            raise AgentResponseError("The Build AI returned neither files nor a reply.")
    except Exception as e:
        logging.error(f"Build agent failed for chat '{agent_input.chat.id}': {e}")
        friendly = get_user_friendly_error(e)
        result = agent_input.single_message(f"I'm sorry, I ran into an error while building that. {friendly}")
        if plan is not None:
            task = plan.tasks[task_index]
            task.status = "complete"
            task.code = None
            task.explanation = f"Error: {friendly}"
            plan.is_complete = all(t.status == "complete" for t in plan.tasks)
            result.updated_plan = UpdatedPlan(message_id=plan_message.id, plan=plan)
        return result

    extra = {"raw_ai_response": json.dumps(raw, indent=2)} if agent_input.is_admin else {}

    if not response.files:
        # A question does not complete the task; it stays pending for the next turn.
        return agent_input.single_message(response.response_text.strip(), **extra)

    files = merge_files(agent_input.project.files, response.files)
    explanation = (response.explanation or "").strip() or "Here's the code."
    text = f"{explanation}\n\nI've created/updated the following files: {_file_list(response.files)}."
    result = AgentExecutionResult(
        messages=[agent_input.ai_message(text, **extra)],
        project_update=ProjectUpdate(files=files),
    )

    if plan is not None:
        task = plan.tasks[task_index]
        task.status = "complete"
        task.code = format_task_code(response.files)
        task.explanation = explanation
        plan.is_complete = all(t.status == "complete" for t in plan.tasks)
        result.updated_plan = UpdatedPlan(message_id=plan_message.id, plan=plan)
        if plan.is_complete:
            emit_chunk(sink, "All tasks in the plan are complete! 🎉\n\n")
    return result
