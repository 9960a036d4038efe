from __future__ import annotations

import json

import httpx
import pytest
from fastapi.testclient import TestClient

import ironchat.main as main
from conftest import FakeContextStore, parse_downstream, upstream_event
from config import RATE_LIMIT_MESSAGE
from ironchat.models import MemoryRecord
from ironchat.services.chat_service import ChatService
from ironchat.services.completion_client import CompletionClient


AUTH = {"Authorization": "Bearer good-token"}


class FakeMemory:
    """Stands in for MemoryService; records what would have been mined."""

    def __init__(self) -> None:
        self.exchanges: list[tuple] = []

    async def extract(self, user_id, conversation_id, question, answer):
        self.exchanges.append((user_id, conversation_id, question, answer))
        return []


class ResetAfterChunks(httpx.AsyncByteStream):
    """Upstream body that delivers some events, then loses the connection."""

    def __init__(self, chunks) -> None:
        self.chunks = chunks

    async def __aiter__(self):
        for chunk in self.chunks:
            yield chunk
        raise httpx.ReadError("connection reset by peer")


class Upstream:
    """MockTransport handler that records request bodies and replies with canned SSE."""

    def __init__(self, chunks=None, status_code=200) -> None:
        self.chunks = chunks if chunks is not None else [
            upstream_event("Brother, "),
            upstream_event("stand firm."),
            b"data: [DONE]\n\n",
        ]
        self.status_code = status_code
        self.reset_after_chunks = False
        self.bodies: list[dict] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.bodies.append(json.loads(request.content))
        if self.status_code != 200:
            return httpx.Response(self.status_code, json={"error": {"message": "overloaded"}})
        if self.reset_after_chunks:
            return httpx.Response(
                200,
                stream=ResetAfterChunks(self.chunks),
                headers={"content-type": "text/event-stream"},
            )
        return httpx.Response(
            200,
            content=b"".join(self.chunks),
            headers={"content-type": "text/event-stream"},
        )


@pytest.fixture
def upstream():
    return Upstream()


@pytest.fixture
def memory():
    return FakeMemory()


@pytest.fixture
def wire(monkeypatch, store, tracker, upstream, memory):
    """Install a ChatService built on fakes; returns a factory so tests can tweak its parts."""

    def install(api_key="sk-test", store_override=None, raise_server_exceptions=True):
        http = httpx.AsyncClient(transport=httpx.MockTransport(upstream))
        completions = CompletionClient(http, api_key=api_key, base_url="https://upstream.test/v1", model="test-model")
        service = ChatService(store_override or store, completions, memory, tracker)
        monkeypatch.setattr(main, "chat_service", service)
        return TestClient(main.app, raise_server_exceptions=raise_server_exceptions)

    return install


def _ask(client, body=None, headers=AUTH):
    return client.post("/chat", json=body if body is not None else {"question": "How do I lead my family?"}, headers=headers)


def test_chat_unavailable_before_startup(monkeypatch):
    monkeypatch.setattr(main, "chat_service", None)
    response = TestClient(main.app).post("/chat", json={"question": "Hi"}, headers=AUTH)
    assert response.status_code == 503


def test_missing_authorization_is_rejected_before_quota(wire, store, upstream):
    response = _ask(wire(), headers={})

    assert response.status_code == 401
    assert response.json() == {"error": "Missing authorization header"}
    assert store.quota_checks == []
    assert upstream.bodies == []


def test_unknown_token_is_rejected_before_quota(wire, store):
    response = _ask(wire(), headers={"Authorization": "Bearer stolen"})

    assert response.status_code == 401
    assert response.json() == {"error": "Invalid authentication token"}
    assert store.resolved == ["stolen"]
    assert store.quota_checks == []


def test_quota_exhausted_returns_429_with_code(wire, store, upstream):
    store.allowed = False
    response = _ask(wire())

    assert response.status_code == 429
    assert response.json() == {"error": RATE_LIMIT_MESSAGE, "code": "MESSAGE_LIMIT_REACHED"}
    assert upstream.bodies == []
    assert store.increments == []


def test_quota_lookup_failure_returns_limit_check_error(wire, store):
    store.limit_error = True
    response = _ask(wire())

    assert response.status_code == 500
    assert response.json() == {"error": "Failed to check message limit", "code": "LIMIT_CHECK_ERROR"}


def test_blank_question_is_rejected(wire, upstream):
    client = wire()
    for body in ({"question": "   "}, {"question": None}, {}):
        response = _ask(client, body=body)
        assert response.status_code == 400
        assert response.json() == {"error": "Question is required"}
    assert upstream.bodies == []


def test_unparsable_body_is_rejected(wire):
    client = wire()
    response = client.post("/chat", content=b"{not json", headers={**AUTH, "Content-Type": "application/json"})
    assert response.status_code == 400
    assert response.json() == {"error": "Invalid request body"}

    response = _ask(client, body=["question"])
    assert response.status_code == 400

    response = _ask(client, body={"question": "Hi", "conversationHistory": [{"role": "narrator", "content": "x"}]})
    assert response.status_code == 400
    assert response.json() == {"error": "Invalid request body"}


def test_missing_upstream_key_returns_500(wire, upstream, store):
    response = _ask(wire(api_key=""))

    assert response.status_code == 500
    assert response.json() == {"error": "OpenAI API key not configured"}
    assert upstream.bodies == []
    assert store.increments == []


def test_upstream_error_status_returns_json_500(wire, upstream, store, tracker):
    upstream.status_code = 502
    response = _ask(wire())

    assert response.status_code == 500
    assert response.json() == {"error": "Failed to process request", "details": "OpenAI API error: 502"}
    assert store.increments == []
    assert tracker.spawned == []


def test_unexpected_failure_returns_500_with_details(wire):
    class ExplodingStore(FakeContextStore):
        async def load_memories(self, user_id, limit=20):
            raise RuntimeError("boom")

    response = _ask(wire(store_override=ExplodingStore()))

    assert response.status_code == 500
    assert response.json() == {"error": "Failed to process request", "details": "boom"}


def test_successful_chat_streams_frames_and_commits_usage(wire, store, tracker, memory):
    response = _ask(wire(), body={"question": "How do I lead my family?", "conversationId": "conv-7"})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.headers["cache-control"] == "no-cache"
    assert response.headers["x-accel-buffering"] == "no"
    assert parse_downstream(response.text) == ["Brother, ", "stand firm."]
    assert response.text.startswith('data: {"content": "Brother, "}\n\n')

    assert store.increments == ["user-1"]
    assert [name for name, _ in tracker.spawned] == ["memory-extraction-user-1"]
    tracker.run_all()
    assert memory.exchanges == [("user-1", "conv-7", "How do I lead my family?", "Brother, stand firm.")]


def test_upstream_request_carries_prompt_history_and_question(wire, store, upstream):
    store.memories.append(("user-1", MemoryRecord(memory_type="relationship", content="Wife's name is Sarah")))
    body = {
        "question": "What now?",
        "conversationHistory": [
            {"role": "user", "content": "I lost my temper."},
            {"role": "assistant", "content": "Own it before God."},
        ],
        "userProfile": {"name": "Mark"},
    }
    _ask(wire(), body=body)

    sent = upstream.bodies[0]
    assert sent["model"] == "test-model"
    assert sent["stream"] is True
    assert sent["temperature"] == 0.7
    roles = [m["role"] for m in sent["messages"]]
    assert roles == ["system", "user", "assistant", "user"]
    assert sent["messages"][1]["content"] == "I lost my temper."
    assert sent["messages"][2]["content"] == "Own it before God."
    assert sent["messages"][3]["content"] == "What now?"
    system_prompt = sent["messages"][0]["content"]
    assert "His name is Mark." in system_prompt
    assert "  - Wife's name is Sarah" in system_prompt


def test_max_tokens_follow_response_length(wire, upstream):
    client = wire()
    for length in ("concise", "balanced", "detailed", "unknown"):
        _ask(client, body={"question": "Hi", "preferences": {"responseLength": length}})

    concise, balanced, detailed, unknown = (body["max_tokens"] for body in upstream.bodies)
    assert concise < balanced < detailed
    assert (concise, balanced, detailed) == (600, 800, 1200)
    assert unknown == balanced


def test_stream_without_content_commits_nothing(wire, upstream, store, tracker):
    upstream.chunks = [b"data: [DONE]\n\n"]
    response = _ask(wire())

    assert response.status_code == 200
    assert parse_downstream(response.text) == []
    assert store.increments == []
    assert tracker.spawned == []


def test_failed_increment_still_delivers_answer(wire, store, tracker):
    store.fail_increment = True
    response = _ask(wire())

    assert response.status_code == 200
    assert parse_downstream(response.text) == ["Brother, ", "stand firm."]
    assert store.increments == []
    assert len(tracker.spawned) == 1


def test_root_and_health(monkeypatch):
    monkeypatch.setattr(main, "chat_service", None)
    monkeypatch.setattr(main, "task_tracker", None)
    client = TestClient(main.app)

    assert "/chat" in client.get("/").json()["endpoints"]
    assert client.get("/health").json() == {
        "status": "healthy",
        "chat_service": False,
        "pending_background_tasks": 0,
    }


def test_cors_preflight_is_answered():
    response = TestClient(main.app).options(
        "/chat",
        headers={
            "Origin": "https://app.example.com",
            "Access-Control-Request-Method": "POST",
            "Access-Control-Request-Headers": "authorization,content-type",
        },
    )
    assert response.status_code == 200
    assert "access-control-allow-origin" in response.headers


def test_stream_reset_after_content_still_commits_once(wire, upstream, store, tracker, memory):
    upstream.chunks = [upstream_event("Brother, ")]
    upstream.reset_after_chunks = True
    response = _ask(wire(raise_server_exceptions=False), body={"question": "Help", "conversationId": "conv-3"})

    assert response.status_code == 200
    assert parse_downstream(response.text) == ["Brother, "]
    assert store.increments == ["user-1"]
    assert [name for name, _ in tracker.spawned] == ["memory-extraction-user-1"]
    tracker.run_all()
    assert memory.exchanges == [("user-1", "conv-3", "Help", "Brother, ")]


def test_null_preference_flags_keep_policy_sections(wire, upstream):
    body = {
        "question": "Hi",
        "preferences": {"includeScriptureReferences": None, "askClarifyingQuestions": None},
    }
    response = _ask(wire(), body=body)

    assert response.status_code == 200
    system_prompt = upstream.bodies[0]["messages"][0]["content"]
    assert "SCRIPTURE REFERENCES (CRITICAL - FOLLOW EXACTLY)" in system_prompt
    assert "CLARIFYING QUESTIONS:" in system_prompt


def test_malformed_profiles_drop_only_their_sections(wire, upstream, store):
    body = {
        "question": "Hi",
        "preferences": {"responseLength": "concise"},
        "intakeProfile": {"spiritual_struggles": "anger", "has_children": "maybe"},
        "userProfile": {"name": 42},
    }
    response = _ask(wire(), body=body)

    assert response.status_code == 200
    assert parse_downstream(response.text) == ["Brother, ", "stand firm."]
    sent = upstream.bodies[0]
    assert sent["max_tokens"] == 600
    assert "THIS MAN'S IDENTITY" not in sent["messages"][0]["content"]
    assert "LIFE SITUATION" not in sent["messages"][0]["content"]
    assert store.increments == ["user-1"]
