import pytest

from conversation import CLARIFICATION_ANSWERED_TEXT, ConversationService
from data_models import Chat, Message, Plan, Task
from errors import AgentError

PLAN = {
    "title": "Obby",
    "introduction": "Here's the plan!",
    "features": ["Checkpoints"],
    "mermaidGraph": "graph TD; A-->B",
    "tasks": ["Create the spawn", "Add checkpoints"],
}


@pytest.fixture
def service(gateway, memory, provider):
    provider.generate_chat_title.return_value = "Chat title"
    return ConversationService(gateway, memory, provider_factory=lambda api_key: provider)


@pytest.fixture
def chat_mode_chat(gateway, project, profile):
    return gateway.save_chat(Chat(id="chat-talk", project_id=project.id, user_id="user-1", mode="chat"))


def test_send_message_persists_both_sides_and_runs_follow_ups(service, gateway, memory, provider, chat_mode_chat):
    # 1. ARRANGE
    provider.stream_text.return_value = iter(["Hi ", "there!"])
    provider.generate_chat_title.return_value = "Friendly Greetings"
    chunks = []

    # 2. ACT
    result = service.send_message("chat-talk", "user-1", "hello", "key", on_stream_chunk=chunks.append)

    # 3. ASSERT
    stored = gateway.get_messages("chat-talk")
    assert [(m.sender, m.text) for m in stored] == [("user", "hello"), ("ai", "Hi there!")]
    assert result.messages[0].id == stored[1].id
    assert stored[1].project_id == "project-1"
    assert chunks == ["Hi ", "there!"]
    memory.extract_and_save_memory.assert_called_once_with("user-1", "hello", "Hi there!", "project-1", provider)
    assert gateway.get_chat("chat-talk").name == "Friendly Greetings"


def test_title_is_only_generated_for_the_first_exchange(service, gateway, provider, chat_mode_chat):
    provider.stream_text.side_effect = lambda *args, **kwargs: iter(["ok"])
    provider.generate_chat_title.return_value = "Title"

    service.send_message("chat-talk", "user-1", "first", "key")
    service.send_message("chat-talk", "user-1", "second", "key")

    provider.generate_chat_title.assert_called_once()


def test_blank_message_is_rejected(service, chat_mode_chat):
    with pytest.raises(ValueError):
        service.send_message("chat-talk", "user-1", "   ", "key")


def test_build_turn_applies_project_files(service, gateway, provider, chat, profile):
    # 1. ARRANGE
    provider.generate_json.return_value = {
        "explanation": "Added a spawn point.",
        "files": [{"filePath": "Workspace/Spawn.lua", "code": "-- spawn", "language": "lua"}],
    }

    # 2. ACT
    result = service.send_message(chat.id, "user-1", "add a spawn", "key")

    # 3. ASSERT
    assert "Workspace/Spawn.lua" in result.messages[-1].text
    assert gateway.get_project("project-1").files["Workspace/Spawn.lua"].content == "-- spawn"


def test_clarification_round_trip(service, gateway, provider, project, profile):
    # 1. ARRANGE
    gateway.save_chat(Chat(id="chat-plan", project_id=project.id, user_id="user-1", mode="super_agent"))
    provider.generate_json.side_effect = [{"questions": ["How many levels?"]}, PLAN]
    first = service.send_message("chat-plan", "user-1", "make an obby", "key")
    clarification_id = first.messages[0].id

    # 2. ACT
    second = service.submit_clarification(clarification_id, ["Ten"], "user-1", "key")

    # 3. ASSERT
    answered = gateway.get_message(clarification_id)
    assert answered.clarification.answers == ["Ten"]
    assert answered.text == CLARIFICATION_ANSWERED_TEXT
    assert second.messages[0].plan.title == "Obby"
    plan_prompt = provider.generate_json.call_args.args[1][-1]["parts"][0]
    assert 'User request: "make an obby"' in plan_prompt
    assert "Q: How many levels?" in plan_prompt and "A: Ten" in plan_prompt

    with pytest.raises(AgentError):
        service.submit_clarification(clarification_id, ["Twenty"], "user-1", "key")


def test_submit_clarification_requires_a_clarification(service, gateway, chat):
    plain = gateway.add_message(Message(sender="ai", text="hi", chat_id=chat.id))

    with pytest.raises(AgentError):
        service.submit_clarification(plain.id, ["x"], "user-1", "key")


def test_execute_plan_through_the_service(service, gateway, memory, provider, chat, profile):
    # 1. ARRANGE
    plan_message = gateway.add_message(
        Message(sender="ai", chat_id=chat.id, text="plan", plan=Plan(title="Obby", tasks=[Task(text="Create spawn")]))
    )
    provider.generate_json.return_value = {
        "explanation": "Spawn ready.",
        "files": [{"filePath": "Spawn.lua", "code": "-- spawn", "language": "lua"}],
    }
    updates = []

    # 2. ACT
    plan = service.execute_plan(plan_message.id, "user-1", "key", on_update=updates.append)

    # 3. ASSERT
    assert plan.is_complete is True
    assert updates[-1].is_complete is True
    assert gateway.get_project("project-1").files["Spawn.lua"].content == "-- spawn"
    memory.get_memories_for_context.assert_called_once_with("user-1", "project-1")


def test_chat_locks_are_released_after_each_turn(service, provider, chat_mode_chat):
    provider.stream_text.return_value = iter(["ok"])

    service.send_message("chat-talk", "user-1", "hello", "key")

    assert service._chat_locks == {}
