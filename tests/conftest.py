from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from ironchat.errors import AuthError, LimitCheckError, UpstreamError  # noqa: E402
from ironchat.models import MemoryRecord  # noqa: E402
from ironchat.services.context_store import ContextStore  # noqa: E402


class FakeContextStore(ContextStore):
    """In-memory stand-in for Supabase with call recording."""

    def __init__(self, *, users=None, allowed=True, limit_error=False, memories=None) -> None:
        self.users = users if users is not None else {"good-token": "user-1"}
        self.allowed = allowed
        self.limit_error = limit_error
        self.memories: list[tuple[str, MemoryRecord]] = list(memories or [])
        self.resolved: list[str] = []
        self.quota_checks: list[str] = []
        self.increments: list[str] = []
        self.inserted: list[tuple[str, MemoryRecord]] = []
        self.fail_increment = False

    async def resolve_user(self, token: str) -> str:
        self.resolved.append(token)
        if token not in self.users:
            raise AuthError("Invalid authentication token")
        return self.users[token]

    async def can_send_message(self, user_id: str) -> bool:
        self.quota_checks.append(user_id)
        if self.limit_error:
            raise LimitCheckError("Failed to check message limit")
        return self.allowed

    async def increment_message_count(self, user_id: str) -> None:
        if self.fail_increment:
            raise RuntimeError("rpc unavailable")
        self.increments.append(user_id)

    async def load_memories(self, user_id: str, limit: int = 20) -> list[MemoryRecord]:
        return [record for uid, record in self.memories if uid == user_id and record.is_active][:limit]

    async def has_similar_memory(self, user_id: str, memory_type: str, fragment: str) -> bool:
        needle = fragment.lower()
        return any(
            uid == user_id
            and record.memory_type == memory_type
            and record.is_active
            and needle in record.content.lower()
            for uid, record in self.memories
        )

    async def insert_memory(self, user_id: str, record: MemoryRecord) -> None:
        self.inserted.append((user_id, record))
        self.memories.append((user_id, record))


class RecordingTracker:
    """Collects spawned coroutines instead of running them; run_all() awaits them later."""

    def __init__(self) -> None:
        self.spawned: list[tuple[str, object]] = []

    @property
    def pending(self) -> int:
        return len(self.spawned)

    def spawn(self, coro, *, name: str):  # type: ignore[no-untyped-def]
        self.spawned.append((name, coro))
        return None

    def run_all(self) -> None:
        async def _run() -> None:
            for _, coro in self.spawned:
                await coro

        asyncio.run(_run())
        self.spawned = []

    def close_all(self) -> None:
        for _, coro in self.spawned:
            coro.close()
        self.spawned = []


class FakeUpstream:
    """Upstream response double: yields the given byte chunks, then optionally fails."""

    def __init__(self, chunks: list[bytes], error: Exception | None = None) -> None:
        self.chunks = chunks
        self.error = error
        self.closed = False

    async def aiter_bytes(self):  # type: ignore[no-untyped-def]
        for chunk in self.chunks:
            yield chunk
        if self.error is not None:
            raise self.error

    async def aclose(self) -> None:
        self.closed = True


class FakeCompletions:
    """Non-streaming completion double for the memory pipeline."""

    def __init__(self, reply: str = "[]", error: Exception | None = None) -> None:
        self.reply = reply
        self.error = error
        self.calls: list[dict] = []

    async def complete(self, messages, **kwargs):  # type: ignore[no-untyped-def]
        self.calls.append({"messages": messages, **kwargs})
        if self.error is not None:
            raise self.error
        return self.reply


def upstream_event(delta: str) -> bytes:
    payload = {"choices": [{"index": 0, "delta": {"content": delta}}]}
    return f"data: {json.dumps(payload)}\n\n".encode("utf-8")


def parse_downstream(body: str) -> list[str]:
    deltas = []
    for frame in body.split("\n\n"):
        if frame.startswith("data: "):
            deltas.append(json.loads(frame[len("data: "):])["content"])
    return deltas


@pytest.fixture
def store() -> FakeContextStore:
    return FakeContextStore()


@pytest.fixture
def tracker() -> RecordingTracker:
    tracker = RecordingTracker()
    yield tracker
    tracker.close_all()


__all__ = [
    "FakeCompletions",
    "FakeContextStore",
    "FakeUpstream",
    "RecordingTracker",
    "UpstreamError",
    "parse_downstream",
    "upstream_event",
]
