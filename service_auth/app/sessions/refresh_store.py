"""
Durable refresh-token storage.

The store is pure persistence: it never checks expiry. Whether a stored
refresh token is still usable is decided by the identity provider during
the exchange.
"""

import asyncio
from typing import Dict, Optional, Protocol

import asyncpg

from shared.errors import AccessLayerException, ServiceError, ValidationError
from shared.logging import get_logger, redact
from .models import RefreshTokenRecord

STORE_IO_ERRORS = (OSError, asyncio.TimeoutError, asyncpg.PostgresError, asyncpg.InterfaceError)


def _check_record(record: RefreshTokenRecord) -> None:
    if not record.rt_id:
        raise ValidationError("Refresh session id is required")
    if not record.user_sub:
        raise ValidationError("Refresh record owner is required")
    if not record.refresh_token:
        raise ValidationError("Refresh token is required")


def _check_id(rt_id: str) -> None:
    if not rt_id:
        raise ValidationError("Refresh session id is required")


class RefreshTokenStore(Protocol):
    async def save(self, record: RefreshTokenRecord) -> None: ...

    async def get(self, rt_id: str) -> Optional[RefreshTokenRecord]: ...

    async def check_health(self) -> str: ...


class InMemoryRefreshTokenStore:
    """Process-local store for local development and tests."""

    def __init__(self):
        self._records: Dict[str, RefreshTokenRecord] = {}
        self.logger = get_logger("auth.sessions.refresh_store.memory")

    async def save(self, record: RefreshTokenRecord) -> None:
        _check_record(record)
        if record.rt_id in self._records:
            self.logger.warning("Refresh record already exists", rt_id=redact(record.rt_id))
            return
        self._records[record.rt_id] = record

    async def get(self, rt_id: str) -> Optional[RefreshTokenRecord]:
        _check_id(rt_id)
        return self._records.get(rt_id)

    async def check_health(self) -> str:
        return "ok"


class PostgresRefreshTokenStore:
    """asyncpg-backed store. Inserts are conditional; rows are never updated."""

    def __init__(self, dsn: str):
        self.dsn = dsn
        self.logger = get_logger("auth.sessions.refresh_store.postgres")
        self.pool: Optional[asyncpg.Pool] = None

    async def start(self):
        """Open the pool and create the table if needed."""
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=1,
                max_size=10,
                command_timeout=10
            )
            await self._create_tables()
            self.logger.info("Refresh token store started")
        except STORE_IO_ERRORS as e:
            self.logger.error("Failed to start refresh token store", error=str(e))
            raise AccessLayerException("POSTGRES_START_FAILED", str(e)) from e

    async def stop(self):
        if self.pool:
            await self.pool.close()
            self.logger.info("Refresh token store stopped")

    async def _create_tables(self):
        async with self.pool.acquire() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS refresh_tokens (
                    rt_id VARCHAR(128) PRIMARY KEY,
                    user_sub VARCHAR(255) NOT NULL,
                    user_email VARCHAR(320),
                    refresh_token TEXT NOT NULL,
                    issued_at TIMESTAMP WITH TIME ZONE NOT NULL,
                    expires_at TIMESTAMP WITH TIME ZONE NOT NULL
                );
            """)

    async def save(self, record: RefreshTokenRecord) -> None:
        _check_record(record)
        async with self.pool.acquire() as conn:
            status = await conn.execute("""
                INSERT INTO refresh_tokens (
                    rt_id, user_sub, user_email, refresh_token, issued_at, expires_at
                ) VALUES ($1, $2, $3, $4, $5, $6)
                ON CONFLICT (rt_id) DO NOTHING
            """,
                record.rt_id, record.user_sub, record.user_email,
                record.refresh_token, record.issued_at, record.expires_at
            )

        if status.endswith(" 0"):
            self.logger.warning("Refresh record already exists", rt_id=redact(record.rt_id))

    async def get(self, rt_id: str) -> Optional[RefreshTokenRecord]:
        _check_id(rt_id)
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow("""
                    SELECT rt_id, user_sub, user_email, refresh_token, issued_at, expires_at
                    FROM refresh_tokens WHERE rt_id = $1
                """, rt_id)
        except STORE_IO_ERRORS as e:
            self.logger.error("Refresh token lookup failed", rt_id=redact(rt_id), error=str(e))
            raise ServiceError("Refresh token store unavailable") from e

        if row is None:
            return None
        if not row["user_sub"] or not row["refresh_token"]:
            self.logger.warning("Refresh record incomplete", rt_id=redact(rt_id))
            return None

        return RefreshTokenRecord(**dict(row))

    async def check_health(self) -> str:
        try:
            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
            return "ok"
        except STORE_IO_ERRORS as e:
            self.logger.error("Refresh token store health check failed", error=str(e))
            return "error"
