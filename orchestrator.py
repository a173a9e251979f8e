"""
Core routing engine for the agent core.

Every inbound user message passes through `dispatch`, which prepares the
turn's context and hands it to exactly one agent:
1. the history is summarized so its size stays bounded;
2. memory relevant to the prompt is retrieved (unless the caller already
   supplied a memory context);
3. the agent is chosen: the autonomous workspace always gets the Autonomous
   agent, otherwise the chat's mode selects one from `AGENT_REGISTRY`, with
   Build as the explicit default;
4. the agent runs, and any exception it lets escape is turned into a single
   AI message at this boundary.

`dispatch` never raises.
"""
import logging

from agents.autonomous_agent import run_autonomous_agent
from agents.build_agent import run_build_agent
from agents.chat_agent import run_chat_agent
from agents.plan_agent import run_plan_agent
from agents.pro_max_agent import run_pro_max_agent
from agents.super_agent import run_super_agent
from agents.thinker_agent import run_thinker_agent
from agents.types import AgentHandler, AgentInput, AgentServices
from audit_logger import audit_log
from data_models import AgentExecutionResult, ChatMode
from errors import AgentResponseError, get_user_friendly_error, sanitize_error_message
from history_summarizer import summarize_history
from tracer import log_event, trace

AUTONOMOUS_AGENT_NAME = "autonomous"

AGENT_REGISTRY: dict[ChatMode, AgentHandler] = {
    ChatMode.CHAT: run_chat_agent,
    ChatMode.PLAN: run_plan_agent,
    ChatMode.BUILD: run_build_agent,
    ChatMode.THINKER: run_thinker_agent,
    ChatMode.SUPER_AGENT: run_super_agent,
    ChatMode.PRO_MAX: run_pro_max_agent,
}
DEFAULT_CHAT_MODE = ChatMode.BUILD


@trace
def select_agent(agent_input: AgentInput) -> tuple[str, AgentHandler]:
    """
    Chooses the agent for a turn.

    Args:
        agent_input: The turn being dispatched.

    Returns:
        (agent name, handler). Unknown chat modes fall back to the Build agent.
    """
    if agent_input.workspace_mode == "autonomous":
        return AUTONOMOUS_AGENT_NAME, run_autonomous_agent
    try:
        mode = ChatMode(agent_input.chat.mode)
    except ValueError:
        logging.warning(f"Unknown chat mode '{agent_input.chat.mode}' for chat '{agent_input.chat.id}'; using Build.")
        mode = DEFAULT_CHAT_MODE
    return mode.value, AGENT_REGISTRY.get(mode, AGENT_REGISTRY[DEFAULT_CHAT_MODE])


@trace
def _prepare_input(agent_input: AgentInput, services: AgentServices) -> AgentInput:
    """Returns a copy of the input with summarized history and memory context attached."""
    history = summarize_history(agent_input.history, services.provider)
    memory_context = agent_input.memory_context
    if memory_context is None:
        memory_context = services.memory.get_relevant_memories(
            agent_input.user_id, agent_input.prompt, agent_input.project_id
        )
    return agent_input.model_copy(update={"history": history, "memory_context": memory_context})


def _audit(agent_input: AgentInput, agent_name: str, outcome: str, details: dict) -> None:
    try:
        audit_log.log_event(
            event="Agent Dispatch",
            user_id=agent_input.user_id,
            chat_id=agent_input.chat.id,
            project_id=agent_input.project_id,
            agent=agent_name,
            outcome=outcome,
            details=details,
        )
    except OSError as e:
        logging.warning(f"Could not write the audit trail: {e}")


@trace
def dispatch(agent_input: AgentInput, services: AgentServices) -> AgentExecutionResult:
    """
    Routes one inbound message to an agent and returns its result.

    Args:
        agent_input: The prompt, caller context and full history for the turn.
        services: The provider, persistence gateway and memory manager.

    Returns:
        The agent's result, or a result holding one AI error message tagged
        with the turn's chat and project.
    """
    agent_name = "unresolved"
    try:
        # Step 1: Summarize history and attach memory.
        prepared = _prepare_input(agent_input, services)

        # Step 2: Pick the agent.
        agent_name, handler = select_agent(prepared)
        log_event("Agent Selected", {"agent": agent_name, "chat_id": prepared.chat.id})
        logging.info(f"Dispatching chat '{prepared.chat.id}' to the {agent_name} agent.")

        # Step 3: Run it.
        result = handler(prepared, services)
        if not result.messages:
            raise AgentResponseError(f"The {agent_name} agent produced no messages.")
    except Exception as e:
        logging.exception(f"Dispatch failed for chat '{agent_input.chat.id}' (agent: {agent_name}).")
        _audit(agent_input, agent_name, "error", {"error": sanitize_error_message(str(e))})
        return agent_input.single_message(
            f"Sorry, I ran into an issue while processing your request. {get_user_friendly_error(e)}"
        )

    _audit(agent_input, agent_name, "success", result.summary())
    return result
