"""
MEMORY SERVICE MODULE
=====================

Second pass over a finished exchange: ask a completion model which durable facts
the user revealed, and store the new ones. Runs detached after the answer stream
has closed, so nothing here may raise into the request path.

FLOW (extract):
  1. build_extraction_prompt(question, answer) -> non-streaming completion.
     Transport or non-2xx failure: log and stop. No retry.
  2. parse_candidates(text): JSON array (a Markdown code fence is tolerated).
     Anything unparsable counts as "no memories".
  3. validate_candidate(): memory_type in MEMORY_TYPES, content a non-empty string
     of at most MEMORY_CONTENT_MAX_LENGTH characters. Others are dropped.
  4. Dedup: skip a candidate when an active memory of the same user and type
     already contains its first MEMORY_DEDUP_PREFIX_LENGTH characters
     (case-insensitive).
  5. Insert survivors with clamped confidence, the source conversation id and
     is_active = True.
"""

import json
import logging
import math
import re
from typing import List, Optional

from config import (
    DEFAULT_MEMORY_CONFIDENCE,
    EXTRACTION_MAX_TOKENS,
    EXTRACTION_TEMPERATURE,
    EXTRACTION_TIMEOUT,
    MEMORY_CONTENT_MAX_LENGTH,
    MEMORY_DEDUP_PREFIX_LENGTH,
    MEMORY_EXTRACTION_MODEL,
)
from ironchat.errors import ExtractionError, UpstreamError
from ironchat.models import MEMORY_TYPES, MemoryRecord
from ironchat.prompts import build_extraction_prompt
from ironchat.services.completion_client import CompletionClient
from ironchat.services.context_store import ContextStore


logger = logging.getLogger("IronChat")

_CODE_FENCE = re.compile(r"^```[a-zA-Z]*\s*(.*?)\s*```$", re.DOTALL)


# ==============================================================================
# PARSING AND VALIDATION
# ==============================================================================

def parse_candidates(text: str) -> list:
    """Decode the model's reply into a list; raise ExtractionError when it is not JSON."""
    text = (text or "").strip()
    if not text:
        return []
    fenced = _CODE_FENCE.match(text)
    if fenced:
        text = fenced.group(1)
    try:
        data = json.loads(text)
    except ValueError as e:
        raise ExtractionError("Failed to parse memory extraction", details=text[:200]) from e
    return data if isinstance(data, list) else []


def clamp_confidence(value) -> float:
    """Numbers are clamped into [0, 1]; anything else gets the default confidence."""
    if isinstance(value, bool) or not isinstance(value, (int, float)) or math.isnan(value):
        return DEFAULT_MEMORY_CONFIDENCE
    return min(1.0, max(0.0, float(value)))


def validate_candidate(candidate, conversation_id: Optional[str] = None) -> Optional[MemoryRecord]:
    if not isinstance(candidate, dict):
        return None
    memory_type = candidate.get("memory_type")
    content = candidate.get("content")
    if memory_type not in MEMORY_TYPES:
        return None
    if not isinstance(content, str) or not content or len(content) > MEMORY_CONTENT_MAX_LENGTH:
        return None
    return MemoryRecord(
        memory_type=memory_type,
        content=content,
        confidence=clamp_confidence(candidate.get("confidence")),
        source_conversation_id=conversation_id,
        is_active=True,
    )


def dedup_fragment(content: str) -> str:
    return content[:MEMORY_DEDUP_PREFIX_LENGTH]


# ==============================================================================
# MEMORY SERVICE CLASS
# ==============================================================================

class MemoryService:
    def __init__(
        self,
        store: ContextStore,
        completions: CompletionClient,
        model: str = MEMORY_EXTRACTION_MODEL,
        timeout: float = EXTRACTION_TIMEOUT,
    ):
        self.store = store
        self.completions = completions
        self.model = model
        self.timeout = timeout

    async def extract(
        self,
        user_id: str,
        conversation_id: Optional[str],
        question: str,
        answer: str,
    ) -> List[MemoryRecord]:
        """Mine one exchange and store new facts. Never raises; returns what was saved."""
        try:
            return await self._extract(user_id, conversation_id, question, answer)
        except UpstreamError as e:
            logger.error("Memory extraction API error: %s", e.details)
        except ExtractionError as e:
            logger.warning("%s: %s", e.message, e.details)
        except Exception as e:
            logger.error("Error in memory extraction: %s", e, exc_info=True)
        return []

    async def _extract(self, user_id, conversation_id, question, answer) -> List[MemoryRecord]:
        messages = [{"role": "system", "content": build_extraction_prompt(question, answer)}]
        reply = await self.completions.complete(
            messages,
            max_tokens=EXTRACTION_MAX_TOKENS,
            temperature=EXTRACTION_TEMPERATURE,
            model=self.model,
            timeout=self.timeout,
        )
        candidates = parse_candidates(reply)
        records = [r for r in (validate_candidate(c, conversation_id) for c in candidates) if r]

        saved = []
        for record in records:
            if await self.store.has_similar_memory(user_id, record.memory_type, dedup_fragment(record.content)):
                logger.info("Skipping known %s memory for %s", record.memory_type, user_id)
                continue
            await self.store.insert_memory(user_id, record)
            saved.append(record)
        if saved:
            logger.info("Saved %s new memor%s for %s", len(saved), "y" if len(saved) == 1 else "ies", user_id)
        return saved
