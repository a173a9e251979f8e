"""
Runs every task of a stored plan through the Build agent's code-generation
path, one task at a time.

The executor always finishes: a task whose generation fails is still marked
complete, with no code and an error explanation, and the next task runs.
State is persisted after every transition so a reader of the plan message
always sees progress. Files written by a task are merged into the project
(and persisted) before the next task runs, so later tasks build on them.

Resuming a plan that was interrupted is safe: tasks already complete are
left untouched, and a task left in progress is run again.
"""
import logging
from typing import Callable, Optional

from agents.build_agent import format_task_code, generate_code_for_task, merge_files
from agents.types import AgentInput, AgentServices
from audit_logger import audit_log
from data_models import Plan, Project, ProjectUpdate
from errors import AgentError, get_user_friendly_error
from tracer import log_event, trace

PlanListener = Callable[[Plan], None]


def _persist_plan(services: AgentServices, message_id: str, plan: Plan, on_update: Optional[PlanListener]) -> None:
    try:
        services.gateway.update_message_plan(message_id, plan.model_copy(deep=True))
    except Exception as e:
        # Execution continues; the next successful write carries this state too.
        logging.error(f"Could not persist plan progress for message '{message_id}': {e}")
    if on_update is not None:
        try:
            on_update(plan.model_copy(deep=True))
        except Exception as e:
            logging.warning(f"Plan listener failed for message '{message_id}': {e}")


def _persist_files(services: AgentServices, project: Project) -> None:
    if not project.id:
        return
    try:
        services.gateway.update_project(project.id, ProjectUpdate(files=project.files))
    except Exception as e:
        logging.error(f"Could not persist files for project '{project.id}': {e}")


def _audit_task(agent_input: AgentInput, index: int, outcome: str, details: dict) -> None:
    try:
        audit_log.log_event(
            event="Plan Task",
            user_id=agent_input.user_id,
            chat_id=agent_input.chat.id,
            project_id=agent_input.project_id,
            agent="build",
            outcome=outcome,
            details={"task": index + 1, **details},
        )
    except OSError as e:
        logging.warning(f"Could not write the audit trail: {e}")


@trace
def execute_plan(
    message_id: str,
    agent_input: AgentInput,
    services: AgentServices,
    on_update: Optional[PlanListener] = None,
) -> Plan:
    """
    Executes the plan stored on `message_id` to completion.

    Args:
        message_id: The AI message carrying the plan.
        agent_input: The turn context (project, chat, caller, history) the
            tasks are generated in.
        services: The provider, persistence gateway and memory manager.
        on_update: Optional listener called with a copy of the plan after
            every persisted transition.

    Returns:
        The final plan, with every task complete and `is_complete` set.

    Raises:
        AgentError: If the message carries no plan.
    """
    message = services.gateway.get_message(message_id)
    if message.plan is None:
        raise AgentError(f"Message '{message_id}' does not carry a plan.")

    plan = message.plan.model_copy(deep=True)
    project = agent_input.project
    total = len(plan.tasks)
    logging.info(f"Executing plan '{plan.title}' ({total} tasks) from message '{message_id}'.")

    for index, task in enumerate(plan.tasks):
        if task.status == "complete":
            continue

        # Step 1: Mark the task in progress so readers see where we are.
        task.status = "in-progress"
        _persist_plan(services, message_id, plan, on_update)
        log_event("Task Started", {"task": index + 1, "of": total, "text": task.text})

        # Step 2: Generate the code against the project as it stands now.
        task_input = agent_input.model_copy(update={"project": project})
        try:
            output = generate_code_for_task(task.text, task_input, services)
        except Exception as e:
            friendly = get_user_friendly_error(e)
            logging.error(f"Task {index + 1}/{total} of plan '{plan.title}' failed: {e}")
            task.code = None
            task.explanation = f"Error: {friendly}"
            _audit_task(agent_input, index, "error", {"error": friendly})
        else:
            task.code = format_task_code(output.files)
            task.explanation = (output.explanation or "").strip() or "Task completed."
            project = project.model_copy(update={"files": merge_files(project.files, output.files)})
            _persist_files(services, project)
            _audit_task(agent_input, index, "success", {"files": [f.file_path for f in output.files]})

        # Step 3: Complete it, success or not.
        task.status = "complete"
        _persist_plan(services, message_id, plan, on_update)

    plan.is_complete = True
    _persist_plan(services, message_id, plan, on_update)
    logging.info(f"Plan '{plan.title}' is complete.")
    return plan
