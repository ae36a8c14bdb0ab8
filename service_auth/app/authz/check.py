"""
Authorization check: maps a session resolution to an allow/deny answer for
the edge proxy, with cookie rotation and identity header injection.
"""

import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from shared.logging import get_logger
from shared.metrics import MetricsCollector
from shared.tracing import RequestContext
from ..sessions.cookies import (
    ACCESS_SESSION_COOKIE,
    REFRESH_SESSION_COOKIE,
    expired_cookie,
    format_set_cookie,
)
from ..sessions.models import ClearRefreshCookie, Denied, Resolved
from ..sessions.resolver import SessionResolver


@dataclass
class CheckResult:
    allowed: bool
    status_code: int
    reason: str = ""
    headers: Dict[str, str] = field(default_factory=dict)
    set_cookies: List[str] = field(default_factory=list)


class AuthorizationCheck:
    """Answers one proxy check per inbound request."""

    def __init__(self,
                 resolver: SessionResolver,
                 *,
                 inject_identity_headers: bool = True,
                 inject_authorization_header: bool = False,
                 metrics: Optional[MetricsCollector] = None):
        self.resolver = resolver
        self.inject_identity_headers = inject_identity_headers
        self.inject_authorization_header = inject_authorization_header
        self.metrics = metrics
        self.logger = get_logger("auth.authz.check")

    async def check(self, cookie_header: Optional[str], ctx: RequestContext) -> CheckResult:
        start_time = time.time()
        resolution = await self.resolver.resolve_cookie_header(cookie_header, ctx)

        if isinstance(resolution, Resolved):
            result = self._allow(resolution)
        elif isinstance(resolution, ClearRefreshCookie):
            result = CheckResult(
                allowed=False,
                status_code=401,
                reason=resolution.reason,
                set_cookies=[expired_cookie(REFRESH_SESSION_COOKIE)]
            )
        elif isinstance(resolution, Denied):
            result = CheckResult(allowed=False, status_code=401, reason=resolution.reason)
        else:
            raise TypeError(f"Unexpected session resolution: {resolution!r}")

        ctx.set_attribute("authz.allowed", result.allowed)
        ctx.set_attribute("authz.reason", result.reason)
        if self.metrics is not None:
            self.metrics.increment_counter("authz_checks_total", decision="allow" if result.allowed else "deny")
            self.metrics.get_metric("authz_check_duration_seconds").observe(time.time() - start_time)
        if not result.allowed:
            self.logger.info("Authorization denied", request_id=ctx.request_id, reason=result.reason)

        return result

    def _allow(self, resolution: Resolved) -> CheckResult:
        session = resolution.session
        result = CheckResult(allowed=True, status_code=200, reason="refreshed" if resolution.rotated else "cached")

        if self.inject_identity_headers:
            result.headers["x-user-sub"] = session.sub
            if session.email:
                result.headers["x-user-email"] = session.email
        if self.inject_authorization_header:
            result.headers["authorization"] = f"Bearer {session.access_token}"
        if resolution.rotated:
            result.set_cookies.append(
                format_set_cookie(ACCESS_SESSION_COOKIE, resolution.access_session_id, resolution.expires_at)
            )

        return result
