from agents.chat_agent import BUILD_REDIRECT, THINKER_REDIRECT, find_redirect, run_chat_agent
from data_models import Message


def test_thinker_rule_wins_over_build_rule(make_input, services, provider):
    # 1. ARRANGE
    agent_input = make_input("Let's debate whether to build a castle or a tower")

    # 2. ACT
    result = run_chat_agent(agent_input, services)

    # 3. ASSERT
    assert result.messages[0].text == THINKER_REDIRECT
    provider.stream_text.assert_not_called()


def test_build_request_is_redirected(make_input, services, provider):
    result = run_chat_agent(make_input("Can you BUILD me a sword?"), services)

    assert result.messages[0].text == BUILD_REDIRECT
    provider.stream_text.assert_not_called()


def test_plain_question_is_not_redirected():
    assert find_redirect("What is a RemoteEvent?") is None


def test_reply_is_streamed_and_accumulated(mocker, make_input, services, provider):
    # 1. ARRANGE
    sink = mocker.MagicMock()
    provider.stream_text.return_value = iter(["A Remote", "Event lets ", "scripts talk."])

    # 2. ACT
    result = run_chat_agent(make_input("What is a RemoteEvent?", on_stream_chunk=sink), services)

    # 3. ASSERT
    assert [c.args[0] for c in sink.call_args_list] == ["A Remote", "Event lets ", "scripts talk."]
    assert result.messages[0].text == "A RemoteEvent lets scripts talk."
    assert result.messages[0].chat_id == "chat-1"


def test_history_is_sent_without_blank_turns(make_input, services, provider):
    # 1. ARRANGE
    history = [Message(sender="user", text="hi"), Message(sender="ai", text=""), Message(sender="ai", text="hey!")]
    provider.stream_text.return_value = iter(["ok"])

    # 2. ACT
    run_chat_agent(make_input("how are you?", history=history), services)

    # 3. ASSERT
    contents = provider.stream_text.call_args.args[1]
    assert contents == [
        {"role": "user", "parts": ["hi"]},
        {"role": "model", "parts": ["hey!"]},
        {"role": "user", "parts": ["how are you?"]},
    ]


def test_provider_failure_still_yields_a_message(make_input, services, provider):
    provider.stream_text.side_effect = RuntimeError("connection reset")

    result = run_chat_agent(make_input("hello"), services)

    assert len(result.messages) == 1
    assert "connection issue" in result.messages[0].text


def test_empty_stream_is_a_failure(make_input, services, provider):
    provider.stream_text.return_value = iter([])

    result = run_chat_agent(make_input("hello"), services)

    assert "empty reply" in result.messages[0].text
