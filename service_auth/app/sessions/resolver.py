"""
Session resolution from the ``AT_SID`` / ``RT_SID`` cookie pair.
"""

from typing import Optional

from shared.errors import ServiceError
from shared.logging import get_logger, redact
from shared.metrics import MetricsCollector
from shared.tracing import RequestContext
from ..identity.provider import IdentityProvider, IdentityProviderError
from ..validation.token_validator import TokenExpiredError, TokenValidationError, TokenValidator
from .cache import SessionCache
from .cookies import ACCESS_SESSION_COOKIE, REFRESH_SESSION_COOKIE, new_session_id, parse_cookie_header
from .models import ClearRefreshCookie, Denied, Resolved, SessionResolution
from .refresh_store import RefreshTokenStore


class SessionResolver:
    """Turns session cookies into a live session, refreshing when needed.

    A cached session with a valid access token resolves directly. Anything
    else (cache miss, expired token, and by default any other validation
    failure) goes to the refresh path: look up ``RT_SID``, exchange its
    refresh token with the provider once, re-cache and rotate ``AT_SID``.
    A provider rejection is final for the request.

    Concurrent refreshes of one session are not coordinated; each may
    exchange the refresh token independently.
    """

    def __init__(self,
                 cache: SessionCache,
                 refresh_store: RefreshTokenStore,
                 validator: TokenValidator,
                 provider: IdentityProvider,
                 *,
                 deny_tampered_tokens: bool = False,
                 metrics: Optional[MetricsCollector] = None):
        self.cache = cache
        self.refresh_store = refresh_store
        self.validator = validator
        self.provider = provider
        self.deny_tampered_tokens = deny_tampered_tokens
        self.metrics = metrics
        self.logger = get_logger("auth.sessions.resolver")

    async def resolve_cookie_header(self, cookie_header: Optional[str], ctx: RequestContext) -> SessionResolution:
        cookies = parse_cookie_header(cookie_header)
        return await self.resolve(
            cookies.get(ACCESS_SESSION_COOKIE.lower()) or None,
            cookies.get(REFRESH_SESSION_COOKIE.lower()) or None,
            ctx
        )

    async def resolve(self,
                      access_session_id: Optional[str],
                      refresh_session_id: Optional[str],
                      ctx: RequestContext) -> SessionResolution:
        logger = self.logger.bind(request_id=ctx.request_id)
        ctx.set_attribute("session.access_cookie_present", access_session_id is not None)
        ctx.set_attribute("session.refresh_cookie_present", refresh_session_id is not None)

        if access_session_id:
            session = await self.cache.get(access_session_id)
            if session is None:
                ctx.set_attribute("session.cache", "miss")
            else:
                ctx.set_attribute("session.cache", "hit")
                try:
                    await self.validator.validate(session.access_token, ctx)
                    ctx.set_attribute("session.outcome", "cached")
                    return Resolved(session=session)
                except TokenExpiredError:
                    logger.info("Access token expired, attempting refresh",
                                session_id=redact(access_session_id))
                except TokenValidationError as e:
                    logger.warning("Cached access token failed validation",
                                   session_id=redact(access_session_id), reason=e.reason)
                    if self.deny_tampered_tokens and e.tampered:
                        ctx.set_attribute("session.outcome", "denied_invalid_token")
                        return Denied(reason="invalid_access_token")

        if not refresh_session_id:
            ctx.set_attribute("session.outcome", "no_session")
            return Denied(reason="no_session")

        return await self._refresh(access_session_id, refresh_session_id, ctx, logger)

    async def _refresh(self, access_session_id, refresh_session_id, ctx, logger) -> SessionResolution:
        try:
            record = await self.refresh_store.get(refresh_session_id)
        except (ServiceError, OSError) as e:
            # The id was not proven unknown, so the refresh cookie is kept.
            logger.error("Refresh token store unavailable", rt_id=redact(refresh_session_id), error=str(e))
            ctx.set_error("refresh store unavailable")
            ctx.set_attribute("session.outcome", "refresh_store_unavailable")
            self._record_refresh("store_unavailable")
            return Denied(reason="refresh_store_unavailable")

        if record is None:
            logger.warning("Refresh session not found", rt_id=redact(refresh_session_id))
            ctx.set_attribute("session.outcome", "refresh_session_not_found")
            self._record_refresh("not_found")
            return ClearRefreshCookie()

        try:
            refreshed = await self.provider.exchange_refresh_token(record.refresh_token, ctx)
        except IdentityProviderError as e:
            logger.warning("Refresh token exchange failed", rt_id=redact(refresh_session_id),
                           sub=record.user_sub, code=e.code)
            ctx.set_error(f"refresh failed: {e.code}")
            ctx.set_attribute("session.outcome", "refresh_rejected")
            self._record_refresh("rejected")
            return Denied(reason="refresh_rejected")

        session = refreshed.without_refresh_token()
        session_id = access_session_id or new_session_id()
        if not await self.cache.set(session_id, session):
            logger.warning("Refreshed session was not cached", session_id=redact(session_id))

        logger.info("Session refreshed", session_id=redact(session_id), sub=session.sub,
                    reused_session_id=access_session_id is not None)
        ctx.set_attribute("session.outcome", "refreshed")
        self._record_refresh("success")
        return Resolved(session=session, access_session_id=session_id, expires_at=session.access_token_expiry)

    def _record_refresh(self, outcome: str) -> None:
        if self.metrics is not None:
            self.metrics.increment_counter("session_refresh_total", outcome=outcome)
