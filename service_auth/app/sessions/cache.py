"""
Redis-backed access-session cache.
"""

import math
from datetime import datetime
from typing import Optional

import redis.asyncio as redis
from pydantic import ValidationError as PydanticValidationError
from redis.exceptions import RedisError

from shared.logging import get_logger, redact
from .models import SessionData, utcnow


class SessionCache:
    """Stores ``SessionData`` as JSON under ``sess:{id}`` with a TTL.

    Refresh tokens are stripped before every write.
    """

    SESSION_PREFIX = "sess:"

    def __init__(self, redis_client: redis.Redis):
        self.redis = redis_client
        self.logger = get_logger("auth.sessions.cache")

    def _key(self, session_id: str) -> str:
        return f"{self.SESSION_PREFIX}{session_id}"

    @staticmethod
    def ttl_seconds(expires_at: datetime, now: Optional[datetime] = None) -> int:
        """Seconds until ``expires_at``, never below 1."""
        remaining = (expires_at - (now or utcnow())).total_seconds()
        return max(1, math.ceil(remaining))

    async def get(self, session_id: str) -> Optional[SessionData]:
        """Return the cached session, or ``None`` on a miss, bad payload or Redis error."""
        try:
            payload = await self.redis.get(self._key(session_id))
        except RedisError as e:
            self.logger.error("Session cache read failed", session_id=redact(session_id), error=str(e))
            return None

        if not payload:
            return None

        try:
            return SessionData.model_validate_json(payload)
        except PydanticValidationError as e:
            self.logger.warning("Discarding unreadable session payload", session_id=redact(session_id),
                                error=str(e))
            return None

    async def set(self, session_id: str, session: SessionData, ttl_seconds: Optional[int] = None) -> bool:
        """Cache ``session`` until its access token expires. Returns ``False`` if the write was lost."""
        ttl = ttl_seconds if ttl_seconds is not None else self.ttl_seconds(session.access_token_expiry)
        payload = session.without_refresh_token().model_dump_json()

        try:
            await self.redis.set(self._key(session_id), payload, ex=max(1, int(ttl)))
        except RedisError as e:
            self.logger.error("Session cache write failed", session_id=redact(session_id), error=str(e))
            return False

        return True
