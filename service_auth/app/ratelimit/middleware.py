"""
Rate limiting middleware for the write routes of the Auth Service.
"""

from typing import Iterable, Optional

from fastapi import Request
from fastapi.responses import JSONResponse

from shared.base_service import exception_response
from shared.errors import AccessLayerException, RateLimitError
from shared.logging import get_logger
from shared.tracing import RequestContext

from ..sessions.cache import SessionCache
from ..sessions.cookies import ACCESS_SESSION_COOKIE, get_cookie
from .enforcement import RateLimitEnforcer
from .keys import client_ip


class RateLimitMiddleware:
    """Sliding-window limit per (user or IP) and route for matching paths.

    The user is the subject of the cached session ``AT_SID`` points at; the
    token itself is not validated here. Anonymous callers are keyed by IP.
    """

    def __init__(self, enforcer: RateLimitEnforcer, path_prefixes: Iterable[str],
                 session_cache: Optional[SessionCache] = None):
        self.enforcer = enforcer
        self.path_prefixes = tuple(path_prefixes)
        self.session_cache = session_cache
        self.logger = get_logger("auth.rate_limit_middleware")

    def applies_to(self, request: Request) -> bool:
        return request.method != "GET" and request.url.path.startswith(self.path_prefixes)

    async def subject_for(self, request: Request) -> Optional[str]:
        if self.session_cache is None:
            return None
        access_session_id = get_cookie(request.headers.get("cookie"), ACCESS_SESSION_COOKIE)
        if not access_session_id:
            return None
        session = await self.session_cache.get(access_session_id)
        return session.sub if session is not None else None

    async def check_request(self, request: Request, ctx: Optional[RequestContext] = None) -> Optional[JSONResponse]:
        """Return a 429 response when the caller is over its limit, else ``None``."""
        if not self.applies_to(request):
            return None

        try:
            await self.enforcer.enforce_sliding_by_identity(
                await self.subject_for(request),
                client_ip(request),
                route=request.url.path,
                ctx=ctx
            )
        except RateLimitError as e:
            self.logger.warning(
                "Request rate limited",
                path=request.url.path,
                retry_after_seconds=e.retry_after_seconds
            )
            return exception_response(e)
        except AccessLayerException as e:
            self.logger.error("Rate limit check failed", path=request.url.path, code=e.code)
            return exception_response(e)

        return None
