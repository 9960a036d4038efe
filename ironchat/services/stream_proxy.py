"""
STREAM PROXY MODULE
===================

Re-frames the upstream provider's SSE stream into the gateway's own SSE frames:

  upstream:   data: {"choices":[{"delta":{"content":"Hel"}}]}\\n\\n ... data: [DONE]\\n\\n
  downstream: data: {"content": "Hel"}\\n\\n

StreamSession (one per request) owns the parsing state:
  - a carry-over buffer, because provider events do not line up with network reads;
  - an incremental UTF-8 decoder, because a multi-byte character can be split too;
  - the accumulated answer and the has_emitted_content flag.

CompletionStreamProxy drives the session over an upstream response:

  INIT -> STREAMING -> DONE    upstream body exhausted: finalize(session) is awaited
                    -> FAILED  read error: finalize(session) is awaited, then
                               StreamInterruptedError aborts the downstream stream

finalize is the chat service's hook (usage commit + memory extraction); it runs
exactly once and decides from session.has_emitted_content whether there is
anything to bill or remember. If the client disconnects, the generator is
cancelled: the upstream response is closed under a shielded scope and finalize is
handed to the detached task tracker, because the cancelled request cannot await it.
"""

import codecs
import enum
import json
import logging
from typing import AsyncIterator, Awaitable, Callable, List, Optional

import anyio

from ironchat.errors import StreamInterruptedError
from ironchat.utils.background import DetachedTaskTracker


logger = logging.getLogger("IronChat")

EVENT_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"


class StreamState(str, enum.Enum):
    INIT = "init"
    STREAMING = "streaming"
    DONE = "done"
    FAILED = "failed"


def encode_frame(delta: str) -> bytes:
    """One downstream SSE frame carrying a text delta."""
    return f"data: {json.dumps({'content': delta}, ensure_ascii=False)}\n\n".encode("utf-8")


def extract_delta(payload) -> Optional[str]:
    """choices[0].delta.content from a decoded upstream event; None when absent or empty."""
    if not isinstance(payload, dict):
        return None
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return None
    delta = choices[0].get("delta")
    if not isinstance(delta, dict):
        return None
    content = delta.get("content")
    if isinstance(content, str) and content:
        return content
    return None


class StreamSession:
    def __init__(self):
        self.state = StreamState.INIT
        self.has_emitted_content = False
        self.finalized = False
        self._buffer = ""
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._parts: List[str] = []

    @property
    def answer(self) -> str:
        return "".join(self._parts)

    def feed(self, chunk: bytes) -> List[str]:
        """Add raw upstream bytes; return the text deltas of every line they complete."""
        self._buffer += self._decoder.decode(chunk)
        *lines, self._buffer = self._buffer.split("\n")
        deltas = []
        for line in lines:
            delta = self._parse_line(line)
            if delta is not None:
                self._parts.append(delta)
                self.has_emitted_content = True
                deltas.append(delta)
        return deltas

    def close(self) -> None:
        # Whatever is left without a trailing newline is an incomplete event; drop it.
        if self._buffer.strip():
            logger.debug("Discarding %s trailing bytes of upstream stream", len(self._buffer))
        self._buffer = ""

    @staticmethod
    def _parse_line(line: str) -> Optional[str]:
        line = line.strip()
        if not line or not line.startswith(EVENT_PREFIX):
            return None
        data = line[len(EVENT_PREFIX):].strip()
        if data == DONE_SENTINEL:
            return None
        try:
            payload = json.loads(data)
        except ValueError as e:
            logger.warning("Skipping malformed upstream event: %s (%r)", e, data[:200])
            return None
        return extract_delta(payload)


class CompletionStreamProxy:
    def __init__(
        self,
        upstream,
        finalize: Callable[[StreamSession], Awaitable[None]],
        tracker: DetachedTaskTracker,
    ):
        # upstream: anything with `aiter_bytes()` and `aclose()`, normally an httpx.Response.
        self.upstream = upstream
        self.finalize = finalize
        self.tracker = tracker
        self.session = StreamSession()

    async def _finish(self) -> None:
        if self.session.finalized:
            return
        self.session.finalized = True
        await self.finalize(self.session)

    async def _close_upstream(self) -> None:
        with anyio.CancelScope(shield=True):
            await self.upstream.aclose()

    async def frames(self) -> AsyncIterator[bytes]:
        session = self.session
        session.state = StreamState.STREAMING
        try:
            async for chunk in self.upstream.aiter_bytes():
                for delta in session.feed(chunk):
                    yield encode_frame(delta)
        except (anyio.get_cancelled_exc_class(), GeneratorExit):
            # Client went away mid-stream.
            session.state = StreamState.FAILED
            await self._close_upstream()
            if not session.finalized:
                session.finalized = True
                self.tracker.spawn(self.finalize(session), name="finalize-abandoned-stream")
            raise
        except Exception as e:
            session.state = StreamState.FAILED
            logger.error("Upstream stream interrupted after %s chars: %s", len(session.answer), e, exc_info=True)
            await self._close_upstream()
            await self._finish()
            raise StreamInterruptedError("Stream interrupted", details=str(e)) from e

        session.close()
        session.state = StreamState.DONE
        await self._close_upstream()
        logger.info("Stream completed (%s chars)", len(session.answer))
        await self._finish()
