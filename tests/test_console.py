from __future__ import annotations

from console import ConsoleSession, describe_error, parse_frame


def test_parse_frame():
    assert parse_frame('data: {"content": "Stand firm"}') == "Stand firm"
    assert parse_frame("") is None
    assert parse_frame(": keep-alive") is None
    assert parse_frame("data: not-json") is None
    assert parse_frame('data: {"other": 1}') is None


def test_describe_error_uses_error_code_and_details():
    assert describe_error(429, '{"error": "Limit hit", "code": "MESSAGE_LIMIT_REACHED"}') == (
        "Error 429: Limit hit [MESSAGE_LIMIT_REACHED]"
    )
    assert describe_error(500, '{"error": "Failed to process request", "details": "OpenAI API error: 502"}') == (
        "Error 500: Failed to process request (OpenAI API error: 502)"
    )
    assert describe_error(502, "Bad Gateway") == "Error 502: Bad Gateway"


def test_build_body_and_clear():
    session = ConsoleSession("token", base_url="http://gateway.test")
    session.response_length = "concise"
    session.history.append({"role": "user", "content": "Hi"})
    first_id = session.conversation_id

    body = session.build_body("Next question")
    assert body == {
        "question": "Next question",
        "conversationHistory": [{"role": "user", "content": "Hi"}],
        "preferences": {"responseLength": "concise"},
        "conversationId": first_id,
    }

    session.clear()
    assert session.history == []
    assert session.conversation_id != first_id
