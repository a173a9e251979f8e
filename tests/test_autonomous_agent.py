import json

from agents.autonomous_agent import run_autonomous_agent
from data_models import AppSettings, MemoryDraft, Profile
from utils import IMAGE_GENERATION_START


def test_code_response_attaches_code(make_input, services, provider):
    # 1. ARRANGE
    provider.generate_json.return_value = {"userResponse": "Sure!", "code": "<button>hi</button>", "language": "html"}

    # 2. ACT
    result = run_autonomous_agent(make_input("make a red button", workspace_mode="autonomous"), services)

    # 3. ASSERT
    message = result.messages[0]
    assert message.text == "Sure!"
    assert message.code == "<button>hi</button>"
    assert message.language == "html"
    assert message.image_base64 is None
    provider.generate_image.assert_not_called()


def test_code_takes_precedence_over_image(make_input, services, provider, gateway):
    # 1. ARRANGE
    provider.generate_json.return_value = {"userResponse": "Both!", "code": "print(1)", "imagePrompt": "a cat"}

    # 2. ACT
    result = run_autonomous_agent(make_input("code and a picture"), services)

    # 3. ASSERT
    assert result.messages[0].language == "plaintext"
    provider.generate_image.assert_not_called()
    assert gateway.get_profile("user-1").credits == 50


def test_insufficient_credits_never_calls_image_provider(make_input, services, provider, gateway):
    """Credits 5, cost 10: a top-up message, no image call and no deduction, even if the passed profile is stale."""
    # 1. ARRANGE
    gateway.save_profile(Profile(id="user-1", credits=5))
    stale_profile = Profile(id="user-1", credits=500)
    provider.generate_json.return_value = {"userResponse": "On it!", "imagePrompt": "a red cat in space"}

    # 2. ACT
    result = run_autonomous_agent(make_input("draw a cat", profile=stale_profile), services)

    # 3. ASSERT
    provider.generate_image.assert_not_called()
    assert gateway.get_profile("user-1").credits == 5
    text = result.messages[0].text
    assert "10 credits" in text
    assert "only have 5" in text
    assert result.messages[0].image_base64 is None


def test_image_generation_charges_then_streams_start_event(mocker, make_input, services, provider, gateway):
    # 1. ARRANGE
    sink = mocker.MagicMock()
    provider.generate_json.return_value = {"userResponse": "Cosmic kitty coming up!", "imagePrompt": "a red cat in space"}
    provider.generate_image.return_value = "aW1hZ2U="

    # 2. ACT
    result = run_autonomous_agent(make_input("draw a cat", on_stream_chunk=sink), services)

    # 3. ASSERT
    assert gateway.get_profile("user-1").credits == 40
    provider.generate_image.assert_called_once_with("a red cat in space", "nano_banana")
    event = json.loads(sink.call_args_list[0].args[0])
    assert event == {"type": IMAGE_GENERATION_START, "text": "Cosmic kitty coming up!"}
    message = result.messages[0]
    assert message.image_base64 == "aW1hZ2U="
    assert message.image_status == "complete"


def test_missing_cost_entry_defaults_to_one_credit(make_input, services, provider, gateway):
    # 1. ARRANGE
    gateway.save_app_settings(AppSettings(image_costs={}))
    gateway.save_profile(Profile(id="user-1", credits=1, preferred_image_model="nano_banana_hd"))
    provider.generate_json.return_value = {"userResponse": "Here you go", "imagePrompt": "a tree"}
    provider.generate_image.return_value = "dHJlZQ=="

    # 2. ACT
    run_autonomous_agent(make_input("draw a tree"), services)

    # 3. ASSERT
    assert gateway.get_profile("user-1").credits == 0
    provider.generate_image.assert_called_once_with("a tree", "nano_banana_hd")


def test_admin_bypasses_credit_check(make_input, services, provider, gateway):
    # 1. ARRANGE
    admin = gateway.save_profile(Profile(id="user-1", role="admin", credits=0))
    provider.generate_json.return_value = {"userResponse": "Done", "imagePrompt": "a castle"}
    provider.generate_image.return_value = "Y2FzdGxl"

    # 2. ACT
    result = run_autonomous_agent(make_input("draw a castle", profile=admin), services)

    # 3. ASSERT
    provider.generate_image.assert_called_once()
    assert gateway.get_profile("user-1").credits == 0
    assert result.messages[0].image_base64 == "Y2FzdGxl"
    assert result.messages[0].raw_ai_response is not None


def test_memories_are_written_regardless_of_branch(make_input, services, provider, memory):
    # 1. ARRANGE
    provider.generate_json.return_value = {
        "userResponse": "Nice to meet you, Sam!",
        "memoryToCreate": [{"layer": "personal", "content": "The user's name is Sam.", "importance": 0.9}],
    }

    # 2. ACT
    result = run_autonomous_agent(make_input("I'm Sam"), services)

    # 3. ASSERT
    assert result.messages[0].text == "Nice to meet you, Sam!"
    memory.create_memory.assert_called_once_with(
        "user-1", MemoryDraft(layer="personal", content="The user's name is Sam.", importance=0.9), "project-1"
    )


def test_memory_write_failure_does_not_affect_reply(make_input, services, provider, memory):
    # 1. ARRANGE
    memory.create_memory.side_effect = RuntimeError("vector store offline")
    provider.generate_json.return_value = {
        "userResponse": "Got it!",
        "code": "print('hi')",
        "language": "python",
        "memoryToCreate": [{"layer": "codebase", "content": "Uses Python.", "importance": 0.5}],
    }

    # 2. ACT
    result = run_autonomous_agent(make_input("write hello world"), services)

    # 3. ASSERT
    assert result.messages[0].code == "print('hi')"
    assert result.messages[0].text == "Got it!"


def test_malformed_memory_entries_are_dropped_without_touching_the_code_reply(make_input, services, provider, memory):
    # 1. ARRANGE
    provider.generate_json.return_value = {
        "userResponse": "Sure!",
        "code": "<button>hi</button>",
        "language": "html",
        "memoryToCreate": [
            {"layer": "preference", "content": "Likes buttons.", "importance": 0.5},
            {"layer": "aesthetic", "content": "Likes round corners.", "importance": 0.4},
        ],
    }

    # 2. ACT
    result = run_autonomous_agent(make_input("make a button"), services)

    # 3. ASSERT
    assert result.messages[0].code == "<button>hi</button>"
    assert result.messages[0].text == "Sure!"
    assert memory.create_memory.call_count == 1
    assert memory.create_memory.call_args.args[1] == MemoryDraft(layer="aesthetic", content="Likes round corners.", importance=0.4)


def test_out_of_range_importance_does_not_replace_plain_reply(make_input, services, provider, memory):
    provider.generate_json.return_value = {
        "userResponse": "Nice to meet you!",
        "memoryToCreate": [{"layer": "personal", "content": "Name is Sam.", "importance": 8}],
    }

    result = run_autonomous_agent(make_input("I'm Sam"), services)

    assert result.messages[0].text == "Nice to meet you!"
    memory.create_memory.assert_not_called()


def test_plain_reply(make_input, services, provider):
    provider.generate_json.return_value = {"userResponse": "Hey there! 🔥"}

    result = run_autonomous_agent(make_input("hello"), services)

    assert result.messages[0].text == "Hey there! 🔥"
    assert result.messages[0].raw_ai_response is None


def test_empty_response_becomes_error_message(make_input, services, provider):
    provider.generate_json.return_value = {"userResponse": "   "}

    result = run_autonomous_agent(make_input("hello"), services)

    assert "An error occurred" in result.messages[0].text


def test_provider_failure_becomes_error_message(make_input, services, provider):
    provider.generate_json.side_effect = RuntimeError("invalid api key")

    result = run_autonomous_agent(make_input("hello"), services)

    assert len(result.messages) == 1
    assert "API key" in result.messages[0].text
