"""
Cookie parsing and ``Set-Cookie`` formatting for the session cookies.
"""

import secrets
from datetime import datetime, timezone
from email.utils import format_datetime
from typing import Dict, Optional

ACCESS_SESSION_COOKIE = "AT_SID"
REFRESH_SESSION_COOKIE = "RT_SID"

EXPIRED = "Thu, 01 Jan 1970 00:00:00 GMT"


def new_session_id() -> str:
    """Opaque id: 32 random bytes, base64url without padding."""
    return secrets.token_urlsafe(32)


def parse_cookie_header(header: Optional[str]) -> Dict[str, str]:
    """Parse a ``Cookie`` header into a dict keyed by lowercased name.

    Pairs that do not split into exactly one name and one value are skipped.
    The first occurrence of a name wins.
    """
    cookies: Dict[str, str] = {}
    if not header:
        return cookies

    for part in header.split(";"):
        pieces = part.strip().split("=")
        if len(pieces) != 2:
            continue
        name, value = pieces[0].strip().lower(), pieces[1].strip()
        if name and name not in cookies:
            cookies[name] = value

    return cookies


def get_cookie(header: Optional[str], name: str) -> Optional[str]:
    value = parse_cookie_header(header).get(name.lower())
    return value or None


def http_date(moment: datetime) -> str:
    """RFC 1123 date in GMT."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return format_datetime(moment.astimezone(timezone.utc), usegmt=True)


def format_set_cookie(name: str, value: str, expires: datetime) -> str:
    return f"{name}={value}; Path=/; HttpOnly; Secure; SameSite=Strict; Expires={http_date(expires)}"


def expired_cookie(name: str) -> str:
    return f"{name}=; Path=/; HttpOnly; Secure; SameSite=Strict; Expires={EXPIRED}"
