"""
USAGE SERVICE
=============

Counts a message against the caller's daily quota once the answer has streamed.
A failed increment is logged and dropped: the user already has the answer, and
the context store's own accounting absorbs the drift.
"""

import logging

from ironchat.services.context_store import ContextStore


logger = logging.getLogger("IronChat")


class UsageService:
    def __init__(self, store: ContextStore):
        self.store = store

    async def commit(self, user_id: str) -> bool:
        """Increment the message counter; return False (and log) if the store refused."""
        try:
            await self.store.increment_message_count(user_id)
        except Exception as e:
            logger.error("Failed to increment message count for %s: %s", user_id, e, exc_info=True)
            return False
        return True
