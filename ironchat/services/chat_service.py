"""
CHAT SERVICE MODULE
===================

Orchestrates one POST /chat request. Everything up to the upstream handshake can
still fail with a JSON error; after that the caller only gets an SSE stream.

FLOW (start_chat):
  1. gate.admit(authorization)     - 401 / 429 / 500 LIMIT_CHECK_ERROR
  2. parse the body                - 400 (invalid body, blank question)
  3. upstream key present?         - 500 "OpenAI API key not configured"
  4. load memories                 - degrades to none on store errors
  5. prompts.synthesize(...)       - system prompt
  6. completions.open_stream(...)  - 500 UpstreamError on connect / non-2xx
  7. return the proxy's frame iterator

When the stream ends (or fails after content went out), _finalize commits usage
and schedules memory extraction on the detached task tracker. Nothing is billed
or remembered for a stream that produced no content.
"""

import logging
from functools import partial
from typing import AsyncIterator, Awaitable, Callable, Optional

from pydantic import ValidationError as PydanticValidationError

from config import RESPONSE_LENGTH_MAX_TOKENS
from ironchat.errors import ConfigurationError, ValidationError
from ironchat.models import ChatRequest, Preferences
from ironchat.prompts import synthesize
from ironchat.services.access_gate import AccessGate
from ironchat.services.completion_client import CompletionClient, build_messages
from ironchat.services.context_store import ContextStore
from ironchat.services.memory_service import MemoryService
from ironchat.services.stream_proxy import CompletionStreamProxy, StreamSession
from ironchat.services.usage_service import UsageService
from ironchat.utils.background import DetachedTaskTracker


logger = logging.getLogger("IronChat")


def max_tokens_for(preferences: Optional[Preferences]) -> int:
    return RESPONSE_LENGTH_MAX_TOKENS[(preferences or Preferences()).response_length]


def parse_chat_request(payload) -> ChatRequest:
    if not isinstance(payload, dict):
        raise ValidationError("Invalid request body")
    try:
        chat_request = ChatRequest.model_validate(payload)
    except PydanticValidationError as e:
        logger.warning("Rejected chat body: %s", e.errors(include_url=False))
        raise ValidationError("Invalid request body") from e
    if not isinstance(chat_request.question, str) or not chat_request.question.strip():
        raise ValidationError("Question is required")
    return chat_request


class ChatService:
    def __init__(
        self,
        store: ContextStore,
        completions: CompletionClient,
        memory: MemoryService,
        tracker: DetachedTaskTracker,
    ):
        self.store = store
        self.gate = AccessGate(store)
        self.usage = UsageService(store)
        self.completions = completions
        self.memory = memory
        self.tracker = tracker

    async def start_chat(
        self,
        authorization: Optional[str],
        load_body: Callable[[], Awaitable[object]],
    ) -> AsyncIterator[bytes]:
        """
        Run every precondition and open the upstream stream. Returns the iterator of
        downstream SSE frames; raises GatewayError for anything that fails first.
        """
        user_id = await self.gate.admit(authorization)

        try:
            payload = await load_body()
        except ValueError as e:
            raise ValidationError("Invalid request body") from e
        chat_request = parse_chat_request(payload)

        if not self.completions.is_configured:
            raise ConfigurationError("OpenAI API key not configured")

        memories = await self.store.load_memories(user_id)
        system_prompt = synthesize(
            chat_request.preferences,
            chat_request.user_profile,
            chat_request.intake_profile,
            memories,
        )
        messages = build_messages(system_prompt, chat_request.conversation_history, chat_request.question)

        upstream = await self.completions.open_stream(
            messages,
            max_tokens=max_tokens_for(chat_request.preferences),
        )
        logger.info(
            "Streaming answer for %s (history_turns=%s, memories=%s)",
            user_id,
            len(chat_request.conversation_history),
            len(memories),
        )
        proxy = CompletionStreamProxy(
            upstream,
            finalize=partial(self._finalize, user_id, chat_request),
            tracker=self.tracker,
        )
        return proxy.frames()

    async def _finalize(self, user_id: str, chat_request: ChatRequest, session: StreamSession) -> None:
        if not session.has_emitted_content:
            logger.warning("Upstream produced no content for %s; nothing committed", user_id)
            return
        await self.usage.commit(user_id)
        self.tracker.spawn(
            self.memory.extract(
                user_id,
                chat_request.conversation_id,
                chat_request.question,
                session.answer,
            ),
            name=f"memory-extraction-{user_id}",
        )
