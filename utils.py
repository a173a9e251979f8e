"""
Provides common, stateless helpers used across the agent core.

History conversion for the completion provider, stream-chunk encoding and the
fire-and-forget background task launcher live here because every agent and
the calling layer share them.
"""
import json
import logging
import threading
from typing import Any, Callable, Iterable, Optional

from data_models import ConversationTurn, Message
from tracer import trace

StreamSink = Callable[[str], None]

IMAGE_GENERATION_START = "image_generation_start"


@trace
def to_provider_history(history: Iterable[Message], render_plans: bool = False) -> list[dict[str, Any]]:
    """
    Converts chat messages into provider `contents`, oldest first.

    Turns whose text is empty after trimming are dropped, since the provider
    rejects blank parts.

    Args:
        history: The ordered chat messages.
        render_plans: When True, a message carrying a plan is sent as
            `[SYSTEM PLAN]: {json}` so the model can see task state.

    Returns:
        A list of `{"role": ..., "parts": [text]}` dictionaries.
    """
    contents = []
    for message in history:
        if render_plans and message.plan is not None:
            text = f"[SYSTEM PLAN]: {message.plan.model_dump_json(by_alias=True)}"
        else:
            text = message.text or ""
        turn = ConversationTurn(prompt=text, sender_role=message.sender)
        if not turn.prompt.strip():
            continue
        contents.append(turn_to_content(turn))
    return contents


def turn_to_content(turn: ConversationTurn) -> dict[str, Any]:
    role = "user" if turn.sender_role == "user" else "model"
    return {"role": role, "parts": [turn.prompt]}


def with_user_prompt(contents: list[dict[str, Any]], prompt: str) -> list[dict[str, Any]]:
    """Returns a new contents list ending with the given user prompt."""
    return [*contents, {"role": "user", "parts": [prompt]}]


def format_answers(answers: list[str]) -> str:
    return "\n".join(f"{i + 1}. {answer}" for i, answer in enumerate(answers))


def emit_chunk(sink: Optional[StreamSink], chunk: str) -> None:
    """Sends a chunk to the streaming sink, if the caller supplied one."""
    if sink is not None and chunk:
        sink(chunk)


def encode_stream_event(event_type: str, text: str) -> str:
    return json.dumps({"type": event_type, "text": text})


def parse_stream_chunk(chunk: str) -> Optional[dict[str, Any]]:
    """
    Distinguishes structured stream events from plain text.

    Every chunk is first tried as JSON; only an object carrying a known
    `type` is treated as an event.

    Returns:
        The decoded event dictionary, or None if the chunk is plain text.
    """
    try:
        event = json.loads(chunk)
    except (json.JSONDecodeError, TypeError):
        return None
    if isinstance(event, dict) and event.get("type") == IMAGE_GENERATION_START:
        return event
    return None


def run_logged(target: Callable[..., Any], *args: Any, name: str = "background-task", **kwargs: Any) -> None:
    """Runs `target`, logging any failure instead of raising it."""
    try:
        target(*args, **kwargs)
    except Exception as e:
        logging.warning(f"Background task '{name}' failed: {e}", exc_info=True)


def spawn_background(target: Callable[..., Any], *args: Any, name: str = "background-task", **kwargs: Any) -> threading.Thread:
    """
    Starts `target` on a daemon thread and returns immediately.

    Failures are logged inside the thread and never reach the caller.
    """
    thread = threading.Thread(target=run_logged, args=(target, *args), kwargs={"name": name, **kwargs}, name=name, daemon=True)
    thread.start()
    return thread
