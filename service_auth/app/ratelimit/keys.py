"""
Rate limit key model.

A key is ``{algorithm}:{route}:{identifier}`` or ``{algorithm}:{identifier}``
where the identifier is one of ``email:<normalized>``, ``user:<sub>`` or
``ip:<address>``.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from fastapi import Request

from shared.errors import ValidationError


class RateLimitAlgorithm(str, Enum):
    FIXED = "fixed"
    SLIDING = "sliding"


def normalize_email(email: Optional[str]) -> str:
    """Trim and lowercase an email; raises on empty input."""
    normalized = (email or "").strip().lower()
    if not normalized:
        raise ValidationError("Email is required for rate limiting")
    return normalized


def client_ip(request: Request) -> str:
    """Best-effort client address: first X-Forwarded-For hop, X-Real-IP, then the peer."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        first_hop = forwarded_for.split(",")[0].strip()
        if first_hop:
            return first_hop

    real_ip = request.headers.get("X-Real-IP")
    if real_ip and real_ip.strip():
        return real_ip.strip()

    return request.client.host if request.client and request.client.host else "unknown"


@dataclass(frozen=True)
class RateLimitKey:
    """Composite rate limit key. Equal actors and routes render identical strings."""

    algorithm: RateLimitAlgorithm
    identifier: str
    route: Optional[str] = None

    def __str__(self) -> str:
        if self.route:
            return f"{self.algorithm.value}:{self.route}:{self.identifier}"
        return f"{self.algorithm.value}:{self.identifier}"

    @staticmethod
    def _route(route: Optional[str]) -> Optional[str]:
        if route is None:
            return None
        return route.strip().strip("/") or None

    @classmethod
    def for_email(cls, algorithm: RateLimitAlgorithm, email: str, route: Optional[str] = None) -> "RateLimitKey":
        return cls(algorithm, f"email:{normalize_email(email)}", cls._route(route))

    @classmethod
    def for_subject(cls, algorithm: RateLimitAlgorithm, subject: str, route: Optional[str] = None) -> "RateLimitKey":
        return cls(algorithm, f"user:{subject.strip()}", cls._route(route))

    @classmethod
    def for_ip(cls, algorithm: RateLimitAlgorithm, ip: Optional[str], route: Optional[str] = None) -> "RateLimitKey":
        address = (ip or "").strip() or "unknown"
        return cls(algorithm, f"ip:{address}", cls._route(route))

    @classmethod
    def for_identity(cls, algorithm: RateLimitAlgorithm, subject: Optional[str], ip: Optional[str],
                     route: Optional[str] = None) -> "RateLimitKey":
        """Per-user key when authenticated, per-IP otherwise."""
        if subject and subject.strip():
            return cls.for_subject(algorithm, subject, route)
        return cls.for_ip(algorithm, ip, route)

    @classmethod
    def parse(cls, raw: str) -> "RateLimitKey":
        """Parse a rendered key; only the algorithm prefix is interpreted."""
        algorithm, sep, rest = raw.partition(":")
        try:
            parsed = RateLimitAlgorithm(algorithm)
        except ValueError:
            raise ValidationError("Unknown rate limit algorithm", {"key": raw})
        if not sep or not rest:
            raise ValidationError("Rate limit key has no identifier", {"key": raw})
        return cls(parsed, rest)
