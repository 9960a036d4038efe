"""
ACCESS GATE
===========

The precondition every chat request must pass before any prompt is built or any
upstream tokens are paid for:

  1. authenticate(header)  - "Bearer <token>" -> user id        (AuthError, 401)
  2. check_quota(user_id)  - daily free limit, premium/trial pass (RateLimitError, 429
                             or LimitCheckError, 500)

Both steps are read-only. The counter is only incremented later, once the answer
has actually streamed (see usage_service).
"""

import logging
from typing import Optional

from config import RATE_LIMIT_MESSAGE
from ironchat.errors import AuthError, RateLimitError
from ironchat.services.context_store import ContextStore


logger = logging.getLogger("IronChat")


def bearer_token(authorization: Optional[str]) -> str:
    """Strip the "Bearer " scheme from an Authorization header value."""
    if not authorization or not authorization.strip():
        raise AuthError("Missing authorization header")
    value = authorization.strip()
    scheme, _, rest = value.partition(" ")
    if scheme.lower() == "bearer":
        value = rest.strip()
    if not value:
        raise AuthError("Missing authorization header")
    return value


class AccessGate:
    def __init__(self, store: ContextStore):
        self.store = store

    async def authenticate(self, authorization: Optional[str]) -> str:
        return await self.store.resolve_user(bearer_token(authorization))

    async def check_quota(self, user_id: str) -> None:
        if not await self.store.can_send_message(user_id):
            logger.warning("Daily message limit reached for %s", user_id)
            raise RateLimitError(RATE_LIMIT_MESSAGE)

    async def admit(self, authorization: Optional[str]) -> str:
        """Run both checks in order; the quota lookup never runs for an unknown caller."""
        user_id = await self.authenticate(authorization)
        await self.check_quota(user_id)
        return user_id
