"""
Tests for the Redis-backed rate limiter.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from service_auth.app.ratelimit.keys import RateLimitAlgorithm, RateLimitKey
from service_auth.app.ratelimit.limiter import RedisRateLimiter
from shared.errors import ServiceError, ValidationError
from shared.tracing import RequestContext


class TestFixedWindow:
    """Test the fixed-window algorithm."""

    @pytest.fixture
    def limiter(self, redis_client):
        return RedisRateLimiter(redis_client)

    @pytest.mark.asyncio
    async def test_allows_up_to_max_then_denies(self, limiter):
        """The (max+1)-th attempt inside one window is denied with a retry hint."""
        key = RateLimitKey.for_email(RateLimitAlgorithm.FIXED, "a@b.com", "login")

        for _ in range(3):
            decision = await limiter.allow(key, 60, 3, now=1000.0)
            assert decision.allowed is True
            assert decision.retry_after_seconds == 0

        decision = await limiter.allow(key, 60, 3, now=1000.0)
        assert decision.allowed is False
        # window is [960, 1020)
        assert decision.retry_after_seconds == 20

    @pytest.mark.asyncio
    async def test_resend_example(self, limiter):
        """Five resends in quick succession pass; the sixth waits out the hour."""
        key = "fixed:resend:email:a@b.com"

        for _ in range(5):
            assert (await limiter.allow(key, 3600, 5, now=7200.5)).allowed

        decision = await limiter.allow(key, 3600, 5, now=7200.5)
        assert decision.allowed is False
        assert 3599 <= decision.retry_after_seconds <= 3600

    @pytest.mark.asyncio
    async def test_window_boundary_resets_count(self, limiter):
        """Attempts straddling a boundary fall into separate windows."""
        key = RateLimitKey.for_ip(RateLimitAlgorithm.FIXED, "10.0.0.1")

        assert (await limiter.allow(key, 60, 1, now=1019.0)).allowed
        assert not (await limiter.allow(key, 60, 1, now=1019.5)).allowed
        assert (await limiter.allow(key, 60, 1, now=1021.0)).allowed

    @pytest.mark.asyncio
    async def test_window_counter_expires(self, limiter, redis_client):
        """The per-window counter carries a TTL of the window length."""
        key = RateLimitKey.for_subject(RateLimitAlgorithm.FIXED, "user-1", "orders")

        await limiter.allow(key, 60, 5, now=1000.0)

        ttl = await redis_client.ttl("fixed:orders:user:user-1:960")
        assert 0 < ttl <= 60

    @pytest.mark.asyncio
    async def test_zero_max_always_denies(self, limiter):
        key = RateLimitKey.for_ip(RateLimitAlgorithm.FIXED, "10.0.0.2")

        decision = await limiter.allow(key, 60, 0, now=1000.0)

        assert decision.allowed is False
        assert decision.retry_after_seconds >= 1

    @pytest.mark.asyncio
    async def test_concurrent_attempts_admit_exactly_max(self, limiter):
        """Concurrent callers never exceed the limit."""
        key = RateLimitKey.for_email(RateLimitAlgorithm.FIXED, "burst@example.com")

        decisions = await asyncio.gather(*[limiter.allow(key, 60, 5, now=1000.0) for _ in range(20)])

        assert sum(1 for d in decisions if d.allowed) == 5


class TestSlidingWindow:
    """Test the sliding-window algorithm."""

    @pytest.fixture
    def limiter(self, redis_client):
        return RedisRateLimiter(redis_client)

    @pytest.mark.asyncio
    async def test_denies_then_recovers_after_oldest_expires(self, limiter):
        key = RateLimitKey.for_ip(RateLimitAlgorithm.SLIDING, "10.0.0.1", "signup")

        assert (await limiter.allow(key, 10, 2, now=100.0)).allowed
        assert (await limiter.allow(key, 10, 2, now=101.0)).allowed

        denied = await limiter.allow(key, 10, 2, now=102.0)
        assert denied.allowed is False
        assert denied.retry_after_seconds == 8

        assert (await limiter.allow(key, 10, 2, now=110.0)).allowed

    @pytest.mark.asyncio
    async def test_denied_attempts_are_not_recorded(self, limiter, redis_client):
        key = RateLimitKey.for_ip(RateLimitAlgorithm.SLIDING, "10.0.0.3")

        for offset in range(5):
            await limiter.allow(key, 30, 2, now=500.0 + offset)

        assert await redis_client.zcard(str(key)) == 2

    @pytest.mark.asyncio
    async def test_evenly_spaced_attempts_never_exceed_max(self, limiter, redis_client):
        """Requests spread over two windows stay within max per window."""
        key = RateLimitKey.for_subject(RateLimitAlgorithm.SLIDING, "user-7")
        window, max_requests = 20, 4
        spacing = window / max_requests

        for i in range(2 * max_requests):
            decision = await limiter.allow(key, window, max_requests, now=1000.0 + i * spacing)
            assert decision.allowed is True
            assert await redis_client.zcard(str(key)) <= max_requests

    @pytest.mark.asyncio
    async def test_same_instant_attempts_are_distinct(self, limiter):
        """Attempts at an identical timestamp each occupy a slot."""
        key = RateLimitKey.for_email(RateLimitAlgorithm.SLIDING, "same@example.com")

        results = [await limiter.allow(key, 30, 3, now=42.0) for _ in range(4)]

        assert [r.allowed for r in results] == [True, True, True, False]

    @pytest.mark.asyncio
    async def test_concurrent_attempts_admit_exactly_max(self, limiter, redis_client):
        """Concurrent callers never exceed the limit or record denied attempts."""
        key = RateLimitKey.for_email(RateLimitAlgorithm.SLIDING, "burst@example.com", "signup")

        decisions = await asyncio.gather(*[limiter.allow(key, 30, 5, now=1000.0 + i / 100) for i in range(20)])

        assert sum(1 for d in decisions if d.allowed) == 5
        assert await redis_client.zcard(str(key)) == 5


class TestLimiterBehaviour:
    """Test validation, context propagation and Redis failure handling."""

    @pytest.mark.asyncio
    async def test_rejects_non_positive_window(self, redis_client):
        limiter = RedisRateLimiter(redis_client)

        with pytest.raises(ValidationError):
            await limiter.allow("fixed:ip:1.2.3.4", 0, 5)

    @pytest.mark.asyncio
    async def test_rejects_unknown_algorithm(self, redis_client):
        limiter = RedisRateLimiter(redis_client)

        with pytest.raises(ValidationError):
            await limiter.allow("leaky:ip:1.2.3.4", 60, 5)

    @pytest.mark.asyncio
    async def test_records_context_attributes(self, redis_client):
        limiter = RedisRateLimiter(redis_client)
        ctx = RequestContext()

        await limiter.allow("sliding:signup:ip:1.2.3.4", 30, 10, ctx=ctx, now=10.0)

        assert ctx.attributes["rate.limit.key"] == "sliding:signup:ip:1.2.3.4"
        assert ctx.attributes["rate.limit.allowed"] is True
        assert ctx.attributes["rate.limit.window_seconds"] == 30
        assert ctx.attributes["rate.limit.max_requests"] == 10

    @pytest.mark.asyncio
    async def test_redis_failure_fails_closed(self, redis_client):
        limiter = RedisRateLimiter(redis_client)
        limiter._scripts[RateLimitAlgorithm.FIXED] = AsyncMock(side_effect=RedisConnectionError("down"))

        with pytest.raises(ServiceError):
            await limiter.allow("fixed:ip:1.2.3.4", 60, 5)

    @pytest.mark.asyncio
    async def test_redis_failure_fails_open_when_configured(self, redis_client):
        limiter = RedisRateLimiter(redis_client, fail_open=True)
        limiter._scripts[RateLimitAlgorithm.SLIDING] = AsyncMock(side_effect=RedisConnectionError("down"))
        ctx = RequestContext()

        decision = await limiter.allow("sliding:ip:1.2.3.4", 60, 5, ctx=ctx)

        assert decision.allowed is True
        assert ctx.attributes["rate.limit.error"] == "down"
