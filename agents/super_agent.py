"""The Super-Agent: clarification + planning in one pass, failing fast on the first plan error."""
import logging

from agents.instructions import PLAN_CLARIFICATION_INSTRUCTION, PLAN_GENERATION_INSTRUCTION
from agents.planning import PlanningProfile, run_planning_pipeline
from agents.types import AgentInput, AgentServices
from data_models import AgentExecutionResult
from errors import get_user_friendly_error
from tracer import trace

SUPER_AGENT_PLANNING = PlanningProfile(
    name="Super-Agent",
    clarification_instruction=PLAN_CLARIFICATION_INSTRUCTION,
    plan_instruction=PLAN_GENERATION_INSTRUCTION,
    clarification_text="Before I create a plan, I have a few questions to make sure I build exactly what you need:",
    use_history=False,
    max_attempts=1,
)


@trace
def run_super_agent(agent_input: AgentInput, services: AgentServices) -> AgentExecutionResult:
    try:
        return run_planning_pipeline(agent_input, services, SUPER_AGENT_PLANNING)
    except Exception as e:
        logging.error(f"Super-Agent failed for chat '{agent_input.chat.id}': {e}")
        return agent_input.single_message(f"Sorry, I couldn't put a plan together. {get_user_friendly_error(e)}")
