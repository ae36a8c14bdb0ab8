"""
Rate limit enforcement helpers used by route handlers.

Each helper builds the key for its scope, asks the limiter, and raises
``RateLimitError`` when the attempt is denied.
"""

from typing import Optional

from shared.errors import RateLimitError
from shared.tracing import RequestContext

from .keys import RateLimitAlgorithm, RateLimitKey
from .limiter import RedisRateLimiter


class RateLimitEnforcer:
    """Scope-aware wrapper around ``RedisRateLimiter``."""

    def __init__(self,
                 limiter: RedisRateLimiter,
                 sliding_window_seconds: int = 30,
                 sliding_max_requests: int = 10,
                 fixed_window_seconds: int = 60,
                 fixed_max_requests: int = 60):
        self.limiter = limiter
        self.sliding_window_seconds = sliding_window_seconds
        self.sliding_max_requests = sliding_max_requests
        self.fixed_window_seconds = fixed_window_seconds
        self.fixed_max_requests = fixed_max_requests

    async def _enforce(self, key: RateLimitKey, window_seconds: int, max_requests: int,
                       ctx: Optional[RequestContext]) -> None:
        decision = await self.limiter.allow(key, window_seconds, max_requests, ctx=ctx)
        if not decision.allowed:
            raise RateLimitError(decision.retry_after_seconds, {"scope": key.identifier.split(":", 1)[0]})

    async def enforce_fixed_by_email(self, email: str, route: Optional[str] = None,
                                     window_seconds: Optional[int] = None, max_requests: Optional[int] = None,
                                     ctx: Optional[RequestContext] = None) -> None:
        key = RateLimitKey.for_email(RateLimitAlgorithm.FIXED, email, route)
        await self._enforce(key, window_seconds or self.fixed_window_seconds,
                            self.fixed_max_requests if max_requests is None else max_requests, ctx)

    async def enforce_sliding_by_email(self, email: str, route: Optional[str] = None,
                                       window_seconds: Optional[int] = None, max_requests: Optional[int] = None,
                                       ctx: Optional[RequestContext] = None) -> None:
        key = RateLimitKey.for_email(RateLimitAlgorithm.SLIDING, email, route)
        await self._enforce(key, window_seconds or self.sliding_window_seconds,
                            self.sliding_max_requests if max_requests is None else max_requests, ctx)

    async def enforce_fixed_by_identity(self, subject: Optional[str], ip: Optional[str], route: Optional[str] = None,
                                        window_seconds: Optional[int] = None, max_requests: Optional[int] = None,
                                        ctx: Optional[RequestContext] = None) -> None:
        key = RateLimitKey.for_identity(RateLimitAlgorithm.FIXED, subject, ip, route)
        await self._enforce(key, window_seconds or self.fixed_window_seconds,
                            self.fixed_max_requests if max_requests is None else max_requests, ctx)

    async def enforce_sliding_by_identity(self, subject: Optional[str], ip: Optional[str], route: Optional[str] = None,
                                          window_seconds: Optional[int] = None, max_requests: Optional[int] = None,
                                          ctx: Optional[RequestContext] = None) -> None:
        key = RateLimitKey.for_identity(RateLimitAlgorithm.SLIDING, subject, ip, route)
        await self._enforce(key, window_seconds or self.sliding_window_seconds,
                            self.sliding_max_requests if max_requests is None else max_requests, ctx)

    async def enforce_fixed_by_ip(self, ip: Optional[str], route: Optional[str] = None,
                                  window_seconds: Optional[int] = None, max_requests: Optional[int] = None,
                                  ctx: Optional[RequestContext] = None) -> None:
        key = RateLimitKey.for_ip(RateLimitAlgorithm.FIXED, ip, route)
        await self._enforce(key, window_seconds or self.fixed_window_seconds,
                            self.fixed_max_requests if max_requests is None else max_requests, ctx)
