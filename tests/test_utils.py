import json

from data_models import Message, Plan, Task
from utils import (
    IMAGE_GENERATION_START,
    encode_stream_event,
    format_answers,
    parse_stream_chunk,
    run_logged,
    to_provider_history,
)


def test_provider_history_drops_blank_turns_and_maps_roles():
    history = [
        Message(sender="user", text="hi"),
        Message(sender="ai", text="   "),
        Message(sender="ai", text="hello"),
    ]

    assert to_provider_history(history) == [
        {"role": "user", "parts": ["hi"]},
        {"role": "model", "parts": ["hello"]},
    ]


def test_provider_history_can_render_plans():
    # 1. ARRANGE
    plan_message = Message(sender="ai", text="Here's the plan", plan=Plan(title="Obby", tasks=[Task(text="Spawn")]))

    # 2. ACT
    plain = to_provider_history([plan_message])
    rendered = to_provider_history([plan_message], render_plans=True)

    # 3. ASSERT
    assert plain[0]["parts"] == ["Here's the plan"]
    text = rendered[0]["parts"][0]
    assert text.startswith("[SYSTEM PLAN]: ")
    assert json.loads(text[len("[SYSTEM PLAN]: "):])["isComplete"] is False


def test_stream_events_are_told_apart_from_text():
    event = encode_stream_event(IMAGE_GENERATION_START, "Painting...")

    assert parse_stream_chunk(event) == {"type": IMAGE_GENERATION_START, "text": "Painting..."}
    assert parse_stream_chunk("just words") is None
    assert parse_stream_chunk('{"type": "something_else"}') is None
    assert parse_stream_chunk("42") is None


def test_format_answers_numbers_in_order():
    assert format_answers(["Ten", "Neon"]) == "1. Ten\n2. Neon"


def test_run_logged_swallows_failures(mocker):
    target = mocker.MagicMock(side_effect=RuntimeError("boom"))

    run_logged(target, 1, name="job", flag=True)

    target.assert_called_once_with(1, flag=True)
