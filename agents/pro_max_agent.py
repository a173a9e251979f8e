"""
The Pro-Max agent: a technical architect persona on the shared planning
pipeline.

Unlike the Super-Agent it sends the chat history with its requests and
retries plan generation with exponential backoff before giving up.
"""
import logging

from agents.instructions import PRO_MAX_CLARIFICATION_INSTRUCTION, PRO_MAX_PLAN_INSTRUCTION
from agents.planning import PlanningProfile, run_planning_pipeline
from agents.types import AgentInput, AgentServices
from config import PLAN_GENERATION_BASE_DELAY, PLAN_GENERATION_MAX_ATTEMPTS
from data_models import AgentExecutionResult
from errors import PlanGenerationError, get_user_friendly_error
from tracer import trace

PRO_MAX_PLANNING = PlanningProfile(
    name="Pro-Max",
    clarification_instruction=PRO_MAX_CLARIFICATION_INSTRUCTION,
    plan_instruction=PRO_MAX_PLAN_INSTRUCTION,
    clarification_text="Before I create a plan, I have a few technical questions to ensure the architecture is sound:",
    use_history=True,
    max_attempts=PLAN_GENERATION_MAX_ATTEMPTS,
    base_delay=PLAN_GENERATION_BASE_DELAY,
)


@trace
def run_pro_max_agent(agent_input: AgentInput, services: AgentServices) -> AgentExecutionResult:
    try:
        return run_planning_pipeline(agent_input, services, PRO_MAX_PLANNING)
    except PlanGenerationError as e:
        logging.error(f"Pro-Max gave up on plan generation for chat '{agent_input.chat.id}': {e}")
        return agent_input.single_message(
            f"I wasn't able to generate the architecture plan. {get_user_friendly_error(e)}"
        )
    except Exception as e:
        logging.error(f"Pro-Max failed for chat '{agent_input.chat.id}': {e}")
        return agent_input.single_message(f"Sorry, something went wrong while planning. {get_user_friendly_error(e)}")
