"""
Compresses long conversation histories before they reach any agent.

Short histories pass through untouched. Longer ones keep their most recent
turns verbatim and fold everything older into a single "chapter summary"
turn, so the token cost of a chat stops growing with its length. The most
recent plan-carrying AI message is never folded away, because the Build
agent's task runner looks for it in the history.
"""
import logging
from typing import Optional

from config import HISTORY_RECENT_TURNS, HISTORY_SUMMARY_THRESHOLD, SUMMARIZER_MODEL_NAME
from data_models import Message
from tracer import trace

SUMMARY_PREFIX = "[SUMMARY OF EARLIER CONVERSATION]"

SUMMARY_INSTRUCTION = (
    "The following is the earlier part of a conversation between a user and an AI building assistant. "
    "Provide a single-paragraph 'chapter summary' that captures the user's goals, the decisions made, "
    "the code or files discussed, and any open questions. Be concise and factual."
)


def _latest_plan_message(messages: list[Message]) -> Optional[Message]:
    for message in reversed(messages):
        if message.sender == "ai" and message.plan is not None:
            return message
    return None


def _transcript(messages: list[Message]) -> str:
    lines = []
    for message in messages:
        text = (message.text or "").strip()
        if text:
            speaker = "USER" if message.sender == "user" else "AI"
            lines.append(f"{speaker}: {text}")
    return "\n".join(lines)


@trace
def summarize_history(history: list[Message], provider) -> list[Message]:
    """
    Returns a history no longer than the recent window plus two turns.

    Args:
        history: The full ordered history, oldest first.
        provider: The completion provider used for the summary call.

    Returns:
        The history unchanged if it is short; otherwise
        [summary turn, pinned plan message (if any), *recent turns]. If the
        summary call fails the older turns are dropped instead.
    """
    if len(history) <= HISTORY_SUMMARY_THRESHOLD:
        return list(history)

    older = history[:-HISTORY_RECENT_TURNS]
    recent = history[-HISTORY_RECENT_TURNS:]

    pinned = None
    if _latest_plan_message(recent) is None:
        pinned = _latest_plan_message(older)
    to_fold = [m for m in older if m is not pinned]

    head: list[Message] = []
    transcript = _transcript(to_fold)
    if transcript:
        try:
            summary_text = provider.generate_text(
                SUMMARY_INSTRUCTION, transcript, model=SUMMARIZER_MODEL_NAME, temperature=0.2
            ).strip()
        except Exception as e:
            logging.warning(f"History summarization failed, keeping only recent turns: {e}")
            summary_text = ""
        if summary_text:
            first = history[0]
            head.append(
                Message(
                    sender="ai",
                    chat_id=first.chat_id,
                    project_id=first.project_id,
                    text=f"{SUMMARY_PREFIX}\n{summary_text}",
                )
            )
            logging.info(f"Summarized {len(to_fold)} older turns into one.")

    if pinned is not None:
        head.append(pinned)
    return head + list(recent)
