"""
The Autonomous agent: the single companion persona of the autonomous
workspace, where chat modes are ignored.

One structured call returns `{userResponse, imagePrompt?, code?, language?,
memoryToCreate?}`, resolved in a fixed order:
1. code present -> a message with the code attached;
2. image prompt present -> the credit-gated image branch;
3. otherwise -> a plain text reply.
Any `memoryToCreate` entries are written in the background regardless of
which branch was taken, and a failed write never affects the reply.
"""
import json
import logging
from datetime import datetime, timezone
from typing import Optional

from agents.instructions import AUTONOMOUS_INSTRUCTION, with_context
from agents.schemas import AUTONOMOUS_SCHEMA, AutonomousResponse, memory_drafts, parse_response
from agents.types import AgentInput, AgentServices
from audit_logger import audit_log
from config import AUTONOMOUS_MODEL_NAME, DEFAULT_IMAGE_COST, DEFAULT_IMAGE_MODEL
from data_models import AgentExecutionResult, MemoryDraft, Message
from errors import AgentResponseError, get_user_friendly_error
from tracer import trace
from utils import IMAGE_GENERATION_START, emit_chunk, encode_stream_event, spawn_background, to_provider_history, with_user_prompt


def save_memories(memory, user_id: str, drafts: list[MemoryDraft], project_id: Optional[str]) -> None:
    """Writes each draft, logging failures one by one so a bad entry does not block the rest."""
    saved = 0
    for draft in drafts:
        try:
            memory.create_memory(user_id, draft, project_id)
            saved += 1
        except Exception as e:
            logging.warning(f"Could not save autonomous memory for user '{user_id}': {e}")
    audit_log.log_event(
        event="Memory Write",
        user_id=user_id,
        project_id=project_id,
        agent="autonomous",
        outcome="success" if saved == len(drafts) else "partial",
        details={"requested": len(drafts), "saved": saved},
    )


def image_cost(costs: dict[str, int], model_key: str) -> int:
    cost = costs.get(model_key)
    return DEFAULT_IMAGE_COST if cost is None else cost


def _insufficient_credits_text(cost: int, credits: int) -> str:
    return (
        f"Oops! You need {cost} credits to generate an image with this model, "
        f"but you only have {credits}. You can buy more in the settings."
    )


def _generate_image_message(
    agent_input: AgentInput, services: AgentServices, response: AutonomousResponse, extra: dict
) -> Message:
    """
    The credit-gated image branch.

    Non-admins are checked against a freshly fetched profile, never the one
    passed in, and charged through the gateway's atomic decrement before the
    image provider is called. Admins skip the check entirely.
    """
    profile = agent_input.profile
    model_key = (profile.preferred_image_model if profile else None) or DEFAULT_IMAGE_MODEL

    if not agent_input.is_admin:
        fresh = services.gateway.get_profile(agent_input.user_id)
        settings = services.gateway.get_app_settings()
        model_key = fresh.preferred_image_model or DEFAULT_IMAGE_MODEL
        cost = image_cost(settings.image_costs, model_key)
        if fresh.credits < cost:
            logging.info(f"User '{agent_input.user_id}' has {fresh.credits} credits; image costs {cost}.")
            return agent_input.ai_message(_insufficient_credits_text(cost, fresh.credits))
        remaining = services.gateway.deduct_credits(agent_input.user_id, cost)
        logging.info(f"Charged user '{agent_input.user_id}' {cost} credits for an image; {remaining} left.")

    emit_chunk(agent_input.on_stream_chunk, encode_stream_event(IMAGE_GENERATION_START, response.user_response))
    image_base64 = services.provider.generate_image(response.image_prompt, model_key)
    return agent_input.ai_message(
        response.user_response,
        image_base64=image_base64,
        image_status="complete",
        **extra,
    )


@trace
def run_autonomous_agent(agent_input: AgentInput, services: AgentServices) -> AgentExecutionResult:
    memory_context = agent_input.memory_context
    if memory_context is None:
        memory_context = services.memory.get_memories_for_context(agent_input.user_id, agent_input.project_id)
    timestamp = datetime.now(timezone.utc).isoformat()
    instruction = with_context(f"Current Timestamp: {timestamp}\n\n{AUTONOMOUS_INSTRUCTION}", memory_context=memory_context)
    contents = with_user_prompt(to_provider_history(agent_input.history), agent_input.prompt)

    try:
        data = services.provider.generate_json(
            instruction, contents, AUTONOMOUS_SCHEMA, model=AUTONOMOUS_MODEL_NAME, temperature=0.8, top_p=0.9
        )
        response = parse_response(AutonomousResponse, data)
    except Exception as e:
        logging.error(f"Autonomous agent failed for chat '{agent_input.chat.id}': {e}")
        return agent_input.single_message(
            f"An error occurred while communicating with the AI: {get_user_friendly_error(e)}"
        )

    drafts = memory_drafts(response.memory_to_create)
    if drafts:
        spawn_background(
            save_memories, services.memory, agent_input.user_id, drafts, agent_input.project_id, name="autonomous-memory-write"
        )

    extra = {"raw_ai_response": json.dumps(data, indent=2)} if agent_input.is_admin else {}
    text = response.user_response.strip()

    try:
        if response.code and response.code.strip():
            message = agent_input.ai_message(
                text, code=response.code.strip(), language=response.language or "plaintext", **extra
            )
        elif response.image_prompt and response.image_prompt.strip():
            message = _generate_image_message(agent_input, services, response, extra)
        elif text:
            message = agent_input.ai_message(text, **extra)
        else:
            raise AgentResponseError("The AI returned an empty or invalid response.")
    except Exception as e:
        logging.error(f"Autonomous agent failed for chat '{agent_input.chat.id}': {e}")
        return agent_input.single_message(
            f"An error occurred while communicating with the AI: {get_user_friendly_error(e)}"
        )

    return AgentExecutionResult(messages=[message])
