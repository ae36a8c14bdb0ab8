"""
Redis-backed fixed-window and sliding-window rate limiter.
"""

import uuid
from dataclasses import dataclass
from typing import Optional, Union

import redis.asyncio as redis
from redis.exceptions import RedisError

from shared.errors import ServiceError, ValidationError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from shared.tracing import RequestContext

from .keys import RateLimitAlgorithm, RateLimitKey
from .scripts import FIXED_WINDOW_SCRIPT, SLIDING_WINDOW_SCRIPT


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    retry_after_seconds: int = 0


class RedisRateLimiter:
    """Evaluates rate limits with one atomic script call per attempt.

    Nothing is held in process memory: every caller sharing the Redis
    instance sees the same counters.
    """

    def __init__(self, redis_client: redis.Redis, metrics: Optional[MetricsCollector] = None,
                 fail_open: bool = False):
        self.redis = redis_client
        self.metrics = metrics
        self.fail_open = fail_open
        self.logger = get_logger("auth.rate_limiter")
        self._scripts = {
            RateLimitAlgorithm.FIXED: redis_client.register_script(FIXED_WINDOW_SCRIPT),
            RateLimitAlgorithm.SLIDING: redis_client.register_script(SLIDING_WINDOW_SCRIPT),
        }

    async def allow(self,
                    key: Union[RateLimitKey, str],
                    window_seconds: int,
                    max_requests: int,
                    ctx: Optional[RequestContext] = None,
                    now: Optional[float] = None) -> RateLimitDecision:
        """Record one attempt against ``key`` and decide whether it may proceed.

        ``now`` overrides the Redis server clock (seconds since the epoch).
        """
        if isinstance(key, str):
            key = RateLimitKey.parse(key)
        if window_seconds <= 0:
            raise ValidationError("window_seconds must be positive", {"window_seconds": window_seconds})
        if max_requests < 0:
            raise ValidationError("max_requests must not be negative", {"max_requests": max_requests})

        rendered = str(key)
        args = [int(window_seconds), int(max_requests), "" if now is None else repr(float(now))]
        if key.algorithm == RateLimitAlgorithm.SLIDING:
            args.append(uuid.uuid4().hex)

        try:
            allowed, retry_after = await self._scripts[key.algorithm](keys=[rendered], args=args)
        except RedisError as e:
            self.logger.error(
                "Rate limit evaluation failed",
                algorithm=key.algorithm.value,
                route=key.route,
                error=str(e)
            )
            if ctx is not None:
                ctx.set_attribute("rate.limit.error", str(e))
            if self.fail_open:
                return RateLimitDecision(allowed=True)
            raise ServiceError("Rate limiter unavailable", {"algorithm": key.algorithm.value}) from e

        decision = RateLimitDecision(allowed=bool(int(allowed)), retry_after_seconds=int(retry_after))

        if ctx is not None:
            ctx.set_attribute("rate.limit.key", rendered)
            ctx.set_attribute("rate.limit.allowed", decision.allowed)
            ctx.set_attribute("rate.limit.window_seconds", int(window_seconds))
            ctx.set_attribute("rate.limit.max_requests", int(max_requests))
        if self.metrics is not None:
            self.metrics.increment_counter(
                "rate_limit_decisions_total",
                algorithm=key.algorithm.value,
                allowed=str(decision.allowed).lower()
            )
        if not decision.allowed:
            self.logger.info(
                "Rate limit exceeded",
                algorithm=key.algorithm.value,
                route=key.route,
                retry_after_seconds=decision.retry_after_seconds
            )

        return decision
