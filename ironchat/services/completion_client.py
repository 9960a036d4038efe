"""
COMPLETION CLIENT MODULE
========================

Talks to the upstream OpenAI-compatible chat-completions API over httpx.

  open_stream(messages, max_tokens)  - POST with stream=true and return the response
                                       once headers are in. A transport failure or a
                                       non-2xx status raises UpstreamError here, before
                                       anything has been sent to our own client.
  complete(messages, ...)            - one non-streaming call; returns the message text.

The caller owns the streamed response and must close it (stream_proxy does).
build_messages() turns the system prompt, prior turns and the new question into
the provider's message list.
"""

import logging
from typing import Iterable, List, Optional

import httpx
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, convert_to_openai_messages

from config import (
    CHAT_TEMPERATURE,
    OPENAI_API_KEY,
    OPENAI_BASE_URL,
    OPENAI_MODEL,
    UPSTREAM_CONNECT_TIMEOUT,
    UPSTREAM_READ_TIMEOUT,
)
from ironchat.errors import UpstreamError
from ironchat.models import ChatMessage


logger = logging.getLogger("IronChat")


def default_timeout() -> httpx.Timeout:
    """Connect/write/pool use the connect timeout; read bounds the gap between chunks."""
    return httpx.Timeout(UPSTREAM_CONNECT_TIMEOUT, read=UPSTREAM_READ_TIMEOUT)


def build_messages(system_prompt: str, history: Iterable[ChatMessage], question: str) -> List[dict]:
    """System prompt first, then the caller's history in order, then the new question."""
    messages: List[BaseMessage] = [SystemMessage(content=system_prompt)]
    for turn in history:
        if turn.role == "assistant":
            messages.append(AIMessage(content=turn.content))
        else:
            messages.append(HumanMessage(content=turn.content))
    messages.append(HumanMessage(content=question))
    return convert_to_openai_messages(messages)


class CompletionClient:
    def __init__(
        self,
        http_client: httpx.AsyncClient,
        api_key: str = OPENAI_API_KEY,
        base_url: str = OPENAI_BASE_URL,
        model: str = OPENAI_MODEL,
    ):
        self.http = http_client
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/chat/completions"

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    async def open_stream(
        self,
        messages: List[dict],
        *,
        max_tokens: int,
        temperature: float = CHAT_TEMPERATURE,
    ) -> httpx.Response:
        body = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "stream": True,
        }
        request = self.http.build_request("POST", self.endpoint, json=body, headers=self._headers())
        try:
            response = await self.http.send(request, stream=True)
        except httpx.HTTPError as e:
            logger.error("Upstream connection failed: %s", e)
            raise UpstreamError(f"Upstream connection failed: {e.__class__.__name__}") from e

        if not response.is_success:
            try:
                error_body = (await response.aread()).decode("utf-8", errors="replace")
            except httpx.HTTPError:
                error_body = ""
            finally:
                await response.aclose()
            logger.error("OpenAI API error: %s %s", response.status_code, error_body[:500])
            raise UpstreamError(f"OpenAI API error: {response.status_code}", status=response.status_code)
        return response

    async def complete(
        self,
        messages: List[dict],
        *,
        max_tokens: int,
        temperature: float,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> str:
        body = {
            "model": model or self.model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        try:
            response = await self.http.post(
                self.endpoint,
                json=body,
                headers=self._headers(),
                timeout=timeout if timeout is not None else httpx.USE_CLIENT_DEFAULT,
            )
        except httpx.HTTPError as e:
            raise UpstreamError(f"Upstream connection failed: {e.__class__.__name__}") from e
        if not response.is_success:
            raise UpstreamError(f"OpenAI API error: {response.status_code}", status=response.status_code)

        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamError("Upstream returned a non-JSON body") from e
        return _first_message_text(data)


def _first_message_text(data) -> str:
    """choices[0].message.content, or "" when the shape is not what we expect."""
    if not isinstance(data, dict):
        return ""
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return ""
    message = choices[0].get("message")
    if not isinstance(message, dict):
        return ""
    content = message.get("content")
    return content.strip() if isinstance(content, str) else ""
