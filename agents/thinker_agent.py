"""
The Thinker agent: a three-step internal debate.

1. Standing: an optimistic take on the request.
2. Opposing: a critique, given the standing response.
3. Synthesis: a balanced final answer, given both.

Each call depends on the previous one, so they run strictly in sequence. The
outgoing message carries the synthesis as its text and both intermediate
positions for display.
"""
import logging

from agents.instructions import (
    THINKER_OPPOSING_INSTRUCTION,
    THINKER_STANDING_INSTRUCTION,
    THINKER_SYNTHESIS_INSTRUCTION,
    with_context,
)
from agents.schemas import THINKER_SCHEMA, parse_response
from agents.types import AgentInput, AgentServices
from data_models import AgentExecutionResult, ThinkerResponse
from errors import ProviderResponseError, get_user_friendly_error
from tracer import trace
from utils import emit_chunk, to_provider_history, with_user_prompt


@trace
def run_thinker_agent(agent_input: AgentInput, services: AgentServices) -> AgentExecutionResult:
    provider = services.provider
    sink = agent_input.on_stream_chunk
    history = to_provider_history(agent_input.history)
    request = f'User request: "{agent_input.prompt}"'

    try:
        emit_chunk(sink, "Thinking it through... 🤔\n\n")
        standing = parse_response(
            ThinkerResponse,
            provider.generate_json(
                with_context(THINKER_STANDING_INSTRUCTION, memory_context=agent_input.memory_context),
                with_user_prompt(history, request),
                THINKER_SCHEMA,
                model=agent_input.model,
            ),
        )

        emit_chunk(sink, "Looking at it from the other side...\n\n")
        opposing_prompt = f"{request}\n\nStanding plan to critique:\n{standing.response}"
        opposing = parse_response(
            ThinkerResponse,
            provider.generate_json(
                THINKER_OPPOSING_INSTRUCTION,
                with_user_prompt(history, opposing_prompt),
                THINKER_SCHEMA,
                model=agent_input.model,
            ),
        )

        synthesis_prompt = (
            f"{request}\n\n"
            f"Standing plan:\n{standing.response}\n\n"
            f"Critique:\n{opposing.response}\n\n"
            "Write the final, balanced response for the user."
        )
        final_text = provider.generate_text(
            THINKER_SYNTHESIS_INSTRUCTION,
            with_user_prompt(history, synthesis_prompt),
            model=agent_input.model,
        ).strip()
        if not final_text:
            raise ProviderResponseError("The model returned an empty synthesis.")
    except Exception as e:
        logging.error(f"Thinker agent failed for chat '{agent_input.chat.id}': {e}")
        return agent_input.single_message(f"Sorry, I lost my train of thought. {get_user_friendly_error(e)}")

    return agent_input.single_message(final_text, standing_response=standing, opposing_response=opposing)
