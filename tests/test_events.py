import pytest

import events
from data_models import AgentExecutionResult, Message, Plan
from utils import IMAGE_GENERATION_START, encode_stream_event


@pytest.fixture
def socketio(mocker):
    socketio = mocker.MagicMock(name="socketio")
    socketio.start_background_task.side_effect = lambda target, *args: target(*args)
    return socketio


@pytest.fixture(autouse=True)
def inline_thread_pool(mocker):
    """Runs pool work on the calling thread."""
    mocker.patch("events.tpool.execute", side_effect=lambda fn, *args, **kwargs: fn(*args, **kwargs))


@pytest.fixture
def service(mocker):
    service = mocker.MagicMock(name="service")
    mocker.patch.object(events, "_service", service)
    return service


def test_send_message_streams_and_emits_the_result(socketio, service):
    # 1. ARRANGE
    def fake_send(**kwargs):
        kwargs["on_stream_chunk"]("partial ")
        kwargs["on_stream_chunk"](encode_stream_event(IMAGE_GENERATION_START, "Painting..."))
        return AgentExecutionResult(messages=[Message(id="m1", sender="ai", text="done")])

    service.send_message.side_effect = fake_send

    # 2. ACT
    events.run_send_message(socketio, "sid-1", {"chat_id": "chat-1", "user_id": "user-1", "text": "hi", "api_key": "k"})

    # 3. ASSERT
    emitted = [(c.args[0], c.args[1]) for c in socketio.emit.call_args_list]
    assert emitted[0] == ("stream_chunk", {"chat_id": "chat-1", "chunk": "partial "})
    assert emitted[1] == (IMAGE_GENERATION_START, {"chat_id": "chat-1", "text": "Painting..."})
    assert emitted[2][0] == "agent_result"
    assert emitted[2][1]["result"]["messages"][0]["text"] == "done"
    assert all(c.kwargs["to"] == "sid-1" for c in socketio.emit.call_args_list)


def test_failures_become_error_messages(socketio, service):
    service.send_message.side_effect = RuntimeError("Failed to fetch")

    events.run_send_message(socketio, "sid-1", {"chat_id": "chat-1", "text": "hi"})

    event, payload = socketio.emit.call_args.args
    assert event == "error_message"
    assert "connection issue" in payload["error"]


def test_execute_plan_reports_progress_and_completion(socketio, service):
    # 1. ARRANGE
    def fake_execute(**kwargs):
        kwargs["on_update"](Plan(title="Obby"))
        return Plan(title="Obby", is_complete=True)

    service.execute_plan.side_effect = fake_execute

    # 2. ACT
    events.run_execute_plan(socketio, "sid-1", {"message_id": "m1", "user_id": "user-1"})

    # 3. ASSERT
    names = [c.args[0] for c in socketio.emit.call_args_list]
    assert names == ["plan_update", "plan_complete"]
    assert socketio.emit.call_args.args[1]["plan"]["isComplete"] is True
