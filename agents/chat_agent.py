"""
The Chat agent: plain, streamed conversation.

Before calling the provider, the prompt is checked against an ordered list of
keyword rules. A match short-circuits with a canned message pointing the user
at the mode built for that request; the first matching rule wins.
"""
import logging
from typing import Optional

from agents.instructions import CHAT_INSTRUCTION, with_context
from agents.types import AgentInput, AgentServices
from data_models import AgentExecutionResult
from errors import ProviderResponseError, get_user_friendly_error
from tracer import trace
from utils import emit_chunk, to_provider_history, with_user_prompt

THINKER_TRIGGERS = (
    "debate",
    "pros and cons",
    "think through",
    "reason through",
    "weigh the options",
    "devil's advocate",
)
BUILD_TRIGGERS = (
    "build",
    "create a",
    "make a",
    "write code",
    "generate code",
)

THINKER_REDIRECT = (
    "That sounds like something worth thinking through from both sides! 🤔 "
    "Switch this chat to **Thinker** mode and I'll weigh it up properly, then give you a balanced answer."
)
BUILD_REDIRECT = (
    "Ooh, sounds like you want to build something! 🛠️ "
    "Switch this chat to **Build** mode (or ask for a plan first) and I'll start writing the code."
)

# Ordered: the first rule whose trigger appears in the prompt wins.
REDIRECT_RULES = [
    (THINKER_TRIGGERS, THINKER_REDIRECT),
    (BUILD_TRIGGERS, BUILD_REDIRECT),
]


def find_redirect(prompt: str) -> Optional[str]:
    """Returns the redirection message for the first matching rule, or None."""
    lowered = prompt.lower()
    for triggers, message in REDIRECT_RULES:
        if any(trigger in lowered for trigger in triggers):
            return message
    return None


@trace
def run_chat_agent(agent_input: AgentInput, services: AgentServices) -> AgentExecutionResult:
    redirect = find_redirect(agent_input.prompt)
    if redirect is not None:
        logging.info(f"Chat agent redirecting prompt for chat '{agent_input.chat.id}'.")
        return agent_input.single_message(redirect)

    instruction = with_context(CHAT_INSTRUCTION, memory_context=agent_input.memory_context)
    contents = with_user_prompt(to_provider_history(agent_input.history), agent_input.prompt)

    try:
        parts = []
        for chunk in services.provider.stream_text(instruction, contents, model=agent_input.model, temperature=0.7):
            parts.append(chunk)
            emit_chunk(agent_input.on_stream_chunk, chunk)
        text = "".join(parts).strip()
        if not text:
            raise ProviderResponseError("The model returned an empty reply.")
    except Exception as e:
        logging.error(f"Chat agent failed for chat '{agent_input.chat.id}': {e}")
        return agent_input.single_message(f"Sorry, I couldn't reply just now. {get_user_friendly_error(e)}")

    return agent_input.single_message(text)
