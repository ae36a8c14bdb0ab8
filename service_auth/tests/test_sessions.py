"""
Tests for session cookies, the session cache and refresh token stores.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from service_auth.app.sessions.cache import SessionCache
from service_auth.app.sessions.cookies import (
    EXPIRED,
    expired_cookie,
    format_set_cookie,
    get_cookie,
    new_session_id,
    parse_cookie_header,
)
from service_auth.app.sessions.models import RefreshTokenRecord, utcnow
from service_auth.app.sessions.refresh_store import InMemoryRefreshTokenStore, PostgresRefreshTokenStore
from shared.errors import ServiceError, ValidationError


def make_record(rt_id="rt-1", refresh_token="refresh-abc"):
    now = utcnow()
    return RefreshTokenRecord(
        rt_id=rt_id,
        user_sub="user-1",
        user_email="john.doe@example.com",
        refresh_token=refresh_token,
        issued_at=now,
        expires_at=now + timedelta(days=30)
    )


class TestCookies:
    """Test cookie parsing and formatting."""

    def test_names_are_case_insensitive(self):
        cookies = parse_cookie_header("at_sid=abc; Rt_Sid=def")
        assert cookies == {"at_sid": "abc", "rt_sid": "def"}
        assert get_cookie("at_sid=abc", "AT_SID") == "abc"

    def test_malformed_pairs_are_skipped(self):
        cookies = parse_cookie_header("broken; AT_SID=abc; x=a=b; =empty")
        assert cookies == {"at_sid": "abc"}

    def test_first_occurrence_wins(self):
        assert parse_cookie_header("AT_SID=first; AT_SID=second")["at_sid"] == "first"

    def test_missing_header(self):
        assert parse_cookie_header(None) == {}
        assert get_cookie("", "AT_SID") is None

    def test_empty_value_reads_as_absent(self):
        assert get_cookie("AT_SID=", "AT_SID") is None

    def test_set_cookie_attributes(self):
        expires = datetime(2030, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        assert format_set_cookie("AT_SID", "abc", expires) == (
            "AT_SID=abc; Path=/; HttpOnly; Secure; SameSite=Strict; Expires=Wed, 02 Jan 2030 03:04:05 GMT"
        )

    def test_expired_cookie(self):
        cookie = expired_cookie("RT_SID")
        assert cookie.startswith("RT_SID=;")
        assert cookie.endswith(f"Expires={EXPIRED}")

    def test_session_ids_are_opaque_and_unique(self):
        ids = {new_session_id() for _ in range(50)}
        assert len(ids) == 50
        assert all(len(i) == 43 and "=" not in i and ";" not in i for i in ids)


class TestSessionCache:
    """Test the Redis session cache."""

    @pytest.fixture
    def cache(self, redis_client):
        return SessionCache(redis_client)

    @pytest.mark.asyncio
    async def test_round_trip_strips_refresh_token(self, cache, redis_client, make_session):
        session = make_session(refresh_token="secret-refresh")

        assert await cache.set("sid-1", session) is True
        cached = await cache.get("sid-1")

        assert cached.access_token == session.access_token
        assert cached.sub == session.sub
        assert cached.refresh_token == ""
        assert "secret-refresh" not in await redis_client.get("sess:sid-1")

    @pytest.mark.asyncio
    async def test_ttl_follows_access_token_expiry(self, cache, redis_client, make_session):
        await cache.set("sid-2", make_session(expires_in=120))

        ttl = await redis_client.ttl("sess:sid-2")
        assert 110 <= ttl <= 120

    @pytest.mark.asyncio
    async def test_expired_session_gets_minimum_ttl(self, cache, redis_client, make_session):
        await cache.set("sid-3", make_session(expires_in=-300))

        assert 0 < await redis_client.ttl("sess:sid-3") <= 1

    def test_ttl_seconds_rounds_up(self):
        now = utcnow()
        assert SessionCache.ttl_seconds(now + timedelta(seconds=10.2), now) == 11
        assert SessionCache.ttl_seconds(now - timedelta(seconds=5), now) == 1

    @pytest.mark.asyncio
    async def test_miss_returns_none(self, cache):
        assert await cache.get("unknown") is None

    @pytest.mark.asyncio
    async def test_unreadable_payload_is_a_miss(self, cache, redis_client):
        await redis_client.set("sess:bad", "{not json")
        assert await cache.get("bad") is None

    @pytest.mark.asyncio
    async def test_redis_errors_are_contained(self, make_session):
        broken = MagicMock()
        broken.get = AsyncMock(side_effect=RedisConnectionError("down"))
        broken.set = AsyncMock(side_effect=RedisConnectionError("down"))
        cache = SessionCache(broken)

        assert await cache.get("sid") is None
        assert await cache.set("sid", make_session()) is False


class TestInMemoryRefreshTokenStore:
    """Test the process-local refresh token store."""

    @pytest.mark.asyncio
    async def test_save_and_get(self):
        store = InMemoryRefreshTokenStore()
        record = make_record()

        await store.save(record)

        assert await store.get("rt-1") == record
        assert await store.get("rt-2") is None

    @pytest.mark.asyncio
    async def test_existing_record_is_not_overwritten(self):
        store = InMemoryRefreshTokenStore()
        await store.save(make_record(refresh_token="original"))

        await store.save(make_record(refresh_token="replacement"))

        assert (await store.get("rt-1")).refresh_token == "original"

    @pytest.mark.asyncio
    async def test_invalid_input(self):
        store = InMemoryRefreshTokenStore()

        with pytest.raises(ValidationError):
            await store.save(make_record(rt_id=""))
        with pytest.raises(ValidationError):
            await store.save(make_record(refresh_token=""))
        with pytest.raises(ValidationError):
            await store.get("")


class TestPostgresRefreshTokenStore:
    """Test the asyncpg store against a mocked pool."""

    @pytest.fixture
    def conn(self):
        return AsyncMock()

    @pytest.fixture
    def store(self, conn):
        store = PostgresRefreshTokenStore("postgres://test")
        store.pool = MagicMock()
        store.pool.acquire.return_value.__aenter__.return_value = conn
        return store

    @pytest.mark.asyncio
    async def test_save_is_conditional_insert(self, store, conn):
        conn.execute.return_value = "INSERT 0 1"
        record = make_record()

        await store.save(record)

        query, *params = conn.execute.call_args.args
        assert "ON CONFLICT (rt_id) DO NOTHING" in query
        assert params[0] == "rt-1"
        assert params[3] == "refresh-abc"

    @pytest.mark.asyncio
    async def test_get_maps_row(self, store, conn):
        record = make_record()
        conn.fetchrow.return_value = record.model_dump()

        assert await store.get("rt-1") == record

    @pytest.mark.asyncio
    async def test_get_missing_row(self, store, conn):
        conn.fetchrow.return_value = None
        assert await store.get("rt-404") is None

    @pytest.mark.asyncio
    async def test_incomplete_row_is_absent(self, store, conn):
        row = make_record().model_dump()
        row["refresh_token"] = ""
        conn.fetchrow.return_value = row

        assert await store.get("rt-1") is None

    @pytest.mark.asyncio
    async def test_health_check(self, store, conn):
        conn.fetchval.return_value = 1
        assert await store.check_health() == "ok"

        conn.fetchval.side_effect = OSError("connection refused")
        assert await store.check_health() == "error"

    @pytest.mark.asyncio
    async def test_get_outage_is_service_error(self, store, conn):
        conn.fetchrow.side_effect = ConnectionRefusedError("connection refused")

        with pytest.raises(ServiceError):
            await store.get("rt-1")
