"""
Session data models and resolution results.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Union

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionData(BaseModel):
    """Cached under ``sess:{access_session_id}``.

    ``refresh_token`` is only populated transiently, between a provider call
    and persistence; cached copies always carry an empty value.
    """

    issued_at: datetime = Field(default_factory=utcnow)
    access_token: str
    id_token: str = ""
    access_token_expiry: datetime
    refresh_token: str = ""
    refresh_token_expiry: Optional[datetime] = None
    sub: str
    email: Optional[str] = None

    def without_refresh_token(self) -> "SessionData":
        return self.model_copy(update={"refresh_token": ""})


class RefreshTokenRecord(BaseModel):
    """Durable refresh-session record. Written once, never updated."""

    rt_id: str
    user_sub: str
    user_email: Optional[str] = None
    refresh_token: str
    issued_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime


@dataclass(frozen=True)
class Resolved:
    """A live session.

    ``access_session_id`` and ``expires_at`` are set only when a refresh
    happened and the ``AT_SID`` cookie must be rotated.
    """

    session: SessionData
    access_session_id: Optional[str] = None
    expires_at: Optional[datetime] = None

    @property
    def rotated(self) -> bool:
        return self.access_session_id is not None


@dataclass(frozen=True)
class Denied:
    """No session could be resolved; the client must sign in again."""

    reason: str


@dataclass(frozen=True)
class ClearRefreshCookie:
    """Denied, and the presented ``RT_SID`` must be expired on the client."""

    reason: str = "refresh_session_not_found"


SessionResolution = Union[Resolved, Denied, ClearRefreshCookie]
