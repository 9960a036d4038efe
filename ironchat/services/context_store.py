"""
CONTEXT STORE MODULE
====================

The durable side of the gateway: who the caller is, whether they may send another
message today, and what we remember about them.

ContextStore is the interface the services depend on; SupabaseContextStore is the
production implementation on top of supabase-py's async client:

  resolve_user(token)            auth.get_user          -> user id, or AuthError
  can_send_message(user_id)      rpc check_message_limit -> bool, or LimitCheckError
  increment_message_count(uid)   rpc increment_message_count
  load_memories(user_id, limit)  user_memories, active only, confidence desc then updated_at desc
  has_similar_memory(...)        user_memories ilike '%<prefix>%' on same user + type
  insert_memory(user_id, rec)    user_memories insert

The quota check and the increment are two separate RPCs; the store does not offer an
atomic check-and-increment, so two concurrent requests can both pass the check.
"""

import logging
from abc import ABC, abstractmethod
from typing import List

from supabase import AsyncClient, acreate_client

from config import (
    CHECK_LIMIT_RPC,
    INCREMENT_COUNT_RPC,
    MEMORIES_TABLE,
    MEMORY_RECALL_LIMIT,
    SUPABASE_SERVICE_ROLE_KEY,
    SUPABASE_URL,
)
from ironchat.errors import AuthError, LimitCheckError
from ironchat.models import MemoryRecord


logger = logging.getLogger("IronChat")


def escape_like(fragment: str) -> str:
    """
    Escape LIKE wildcards so a memory fragment matches literally.

    PostgREST also reads `*` as `%`; it becomes `_` so it matches exactly one character.
    """
    escaped = fragment.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return escaped.replace("*", "_")


# ==============================================================================
# INTERFACE
# ==============================================================================

class ContextStore(ABC):
    @abstractmethod
    async def resolve_user(self, token: str) -> str:
        """Return the user id for a bearer token; raise AuthError when it does not resolve."""

    @abstractmethod
    async def can_send_message(self, user_id: str) -> bool:
        """Quota predicate; raise LimitCheckError when the check itself fails."""

    @abstractmethod
    async def increment_message_count(self, user_id: str) -> None:
        ...

    @abstractmethod
    async def load_memories(self, user_id: str, limit: int = MEMORY_RECALL_LIMIT) -> List[MemoryRecord]:
        ...

    @abstractmethod
    async def has_similar_memory(self, user_id: str, memory_type: str, fragment: str) -> bool:
        """True when an active memory of this type already contains fragment (case-insensitive)."""

    @abstractmethod
    async def insert_memory(self, user_id: str, record: MemoryRecord) -> None:
        ...


# ==============================================================================
# SUPABASE IMPLEMENTATION
# ==============================================================================

class SupabaseContextStore(ContextStore):
    def __init__(self, client: AsyncClient):
        self.client = client

    @classmethod
    async def connect(cls, url: str = SUPABASE_URL, key: str = SUPABASE_SERVICE_ROLE_KEY) -> "SupabaseContextStore":
        """Create the async client with the service-role key (bypasses row level security)."""
        client = await acreate_client(url, key)
        return cls(client)

    async def resolve_user(self, token: str) -> str:
        try:
            response = await self.client.auth.get_user(token)
        except Exception as e:
            logger.warning("Token did not resolve to a user: %s", e)
            raise AuthError("Invalid authentication token") from e
        user = getattr(response, "user", None)
        if user is None:
            raise AuthError("Invalid authentication token")
        return str(user.id)

    async def can_send_message(self, user_id: str) -> bool:
        try:
            response = await self.client.rpc(CHECK_LIMIT_RPC, {"user_uuid": user_id}).execute()
        except Exception as e:
            logger.error("Error checking message limit for %s: %s", user_id, e)
            raise LimitCheckError("Failed to check message limit") from e
        return bool(response.data)

    async def increment_message_count(self, user_id: str) -> None:
        await self.client.rpc(INCREMENT_COUNT_RPC, {"user_uuid": user_id}).execute()

    async def load_memories(self, user_id: str, limit: int = MEMORY_RECALL_LIMIT) -> List[MemoryRecord]:
        try:
            response = await (
                self.client.table(MEMORIES_TABLE)
                .select("memory_type, content, confidence")
                .eq("user_id", user_id)
                .eq("is_active", True)
                .order("confidence", desc=True)
                .order("updated_at", desc=True)
                .limit(limit)
                .execute()
            )
        except Exception as e:
            # Memories only personalize the answer; the chat goes on without them.
            logger.warning("Error loading memories for %s: %s", user_id, e)
            return []
        # NULL columns fall back to the model defaults (e.g. confidence 0.8).
        return [
            MemoryRecord(**{key: value for key, value in row.items() if value is not None})
            for row in (response.data or [])
        ]

    async def has_similar_memory(self, user_id: str, memory_type: str, fragment: str) -> bool:
        response = await (
            self.client.table(MEMORIES_TABLE)
            .select("id, content")
            .eq("user_id", user_id)
            .eq("memory_type", memory_type)
            .eq("is_active", True)
            .ilike("content", f"%{escape_like(fragment)}%")
            .limit(1)
            .execute()
        )
        return bool(response.data)

    async def insert_memory(self, user_id: str, record: MemoryRecord) -> None:
        await (
            self.client.table(MEMORIES_TABLE)
            .insert({"user_id": user_id, **record.model_dump()})
            .execute()
        )
