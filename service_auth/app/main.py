"""
Auth service: session resolution for the edge proxy and rate-limited sign-up.
"""

from datetime import timedelta
from typing import Dict, Optional

import redis.asyncio as redis
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError

from shared.base_service import BaseService
from shared.config import ServiceConfig
from shared.tracing import RequestContext, trace_request
from .authz.check import AuthorizationCheck
from .identity.http_provider import HttpIdentityProvider
from .identity.provider import IdentityProvider
from .jwks.client import JWKSClient
from .ratelimit.enforcement import RateLimitEnforcer
from .ratelimit.limiter import RedisRateLimiter
from .ratelimit.middleware import RateLimitMiddleware
from .sessions.cache import SessionCache
from .sessions.refresh_store import InMemoryRefreshTokenStore, PostgresRefreshTokenStore, RefreshTokenStore
from .sessions.resolver import SessionResolver
from .signup.models import (
    InitiateSignUpRequest,
    InitiateSignUpResponse,
    ResendVerificationRequest,
    VerifySignUpRequest,
    VerifySignUpResponse,
)
from .signup.service import SignUpService
from .validation.token_validator import TokenValidator, TokenVerificationRequest

CHECK_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


class AuthService(BaseService):
    """Auth service implementation.

    Collaborators can be injected; anything not supplied is built from
    configuration.
    """

    def __init__(self,
                 config: Optional[ServiceConfig] = None,
                 *,
                 redis_client: Optional[redis.Redis] = None,
                 refresh_store: Optional[RefreshTokenStore] = None,
                 identity_provider: Optional[IdentityProvider] = None,
                 jwks_client: Optional[JWKSClient] = None):
        super().__init__("auth", 8010, config)

        self.redis = redis_client or redis.from_url(
            self.config.redis_url,
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5
        )
        self.jwks_client = jwks_client or JWKSClient(
            self.config.auth_authority,
            self.config.jwks_cache_ttl_seconds,
            metrics=self.metrics
        )
        self.refresh_store = refresh_store or self._build_refresh_store()
        self.identity_provider = identity_provider or HttpIdentityProvider(
            self.config.identity_provider_url,
            self.config.auth_client_id,
            self.config.auth_client_secret,
            refresh_token_ttl=timedelta(days=self.config.refresh_token_ttl_days),
            timeout=self.config.identity_provider_timeout_seconds
        )

        self.token_validator = TokenValidator(
            self.jwks_client,
            self.config.auth_client_id,
            self.config.token_clock_skew_seconds,
            metrics=self.metrics
        )
        self.session_cache = SessionCache(self.redis)
        self.rate_limiter = RedisRateLimiter(self.redis, self.metrics, fail_open=self.config.ratelimit_fail_open)
        self.enforcer = RateLimitEnforcer(
            self.rate_limiter,
            sliding_window_seconds=self.config.ratelimit_sliding_window_seconds,
            sliding_max_requests=self.config.ratelimit_sliding_max_requests,
            fixed_window_seconds=self.config.ratelimit_fixed_window_seconds,
            fixed_max_requests=self.config.ratelimit_fixed_max_requests
        )
        self.resolver = SessionResolver(
            self.session_cache,
            self.refresh_store,
            self.token_validator,
            self.identity_provider,
            deny_tampered_tokens=self.config.deny_tampered_tokens,
            metrics=self.metrics
        )
        self.authorization_check = AuthorizationCheck(
            self.resolver,
            inject_identity_headers=self.config.inject_identity_headers,
            inject_authorization_header=self.config.inject_authorization_header,
            metrics=self.metrics
        )
        self.signup_service = SignUpService(
            self.identity_provider,
            self.enforcer,
            self.session_cache,
            self.refresh_store,
            refresh_token_ttl=timedelta(days=self.config.refresh_token_ttl_days)
        )
        self.rate_limit_middleware = RateLimitMiddleware(self.enforcer, ["/signup"], self.session_cache)

        self._setup_lifecycle()
        self._setup_rate_limit_middleware()
        self._setup_auth_routes()

    def _build_refresh_store(self) -> RefreshTokenStore:
        if self.config.refresh_store_backend == "memory":
            self.logger.warning("Using in-memory refresh token store")
            return InMemoryRefreshTokenStore()
        return PostgresRefreshTokenStore(self.config.postgres_dsn)

    def _setup_lifecycle(self):
        @self.app.on_event("startup")
        async def _startup():
            start = getattr(self.refresh_store, "start", None)
            if start is not None:
                await start()

        @self.app.on_event("shutdown")
        async def _shutdown():
            stop = getattr(self.refresh_store, "stop", None)
            if stop is not None:
                await stop()
            await self.jwks_client.close()
            close = getattr(self.identity_provider, "close", None)
            if close is not None:
                await close()
            await self.redis.aclose()

    def _setup_rate_limit_middleware(self):
        @self.app.middleware("http")
        async def enforce_rate_limits(request: Request, call_next):
            request_id = request.headers.get("x-request-id")
            ctx = RequestContext(request_id=request_id) if request_id else RequestContext()
            limited = await self.rate_limit_middleware.check_request(request, ctx)
            if limited is not None:
                return limited
            return await call_next(request)

    def _setup_auth_routes(self):
        """Set up auth-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "auth",
                "message": "Session gateway - Auth Service",
                "version": "1.0.0"
            }

        @self.app.post("/auth/verify")
        async def verify_token(request: TokenVerificationRequest):
            """Introspect an access token without touching sessions."""
            response = await self.token_validator.verify_token(request.token)
            return response.model_dump(exclude_none=True)

        @self.app.api_route("/authz/check", methods=CHECK_METHODS)
        @self.app.api_route("/authz/check/{path:path}", methods=CHECK_METHODS)
        async def authz_check(request: Request, path: str = ""):
            """ext-authz HTTP check: 200 allows the proxied request, 401 denies it."""
            with trace_request("authz.check", request.headers.get("x-request-id"),
                               **{"http.target": f"/{path}"}) as ctx:
                result = await self.authorization_check.check(request.headers.get("cookie"), ctx)

            response = Response(status_code=result.status_code)
            for name, value in result.headers.items():
                response.headers[name] = value
            for cookie in result.set_cookies:
                response.headers.append("set-cookie", cookie)
            return response

        @self.app.post("/signup", response_model=InitiateSignUpResponse)
        async def initiate_sign_up(body: InitiateSignUpRequest, request: Request):
            with trace_request("signup.initiate", request.headers.get("x-request-id")) as ctx:
                step = await self.signup_service.initiate_sign_up(body, ctx)
            return InitiateSignUpResponse(step=step)

        @self.app.post("/signup/verify", response_model=VerifySignUpResponse)
        async def verify_sign_up(body: VerifySignUpRequest, request: Request):
            with trace_request("signup.verify", request.headers.get("x-request-id")) as ctx:
                result = await self.signup_service.verify_and_sign_in(body.email, body.code, ctx)

            payload = VerifySignUpResponse(
                sub=result.session.sub,
                email=result.session.email,
                expires_at=result.session.access_token_expiry
            )
            response = JSONResponse(content=payload.model_dump(mode="json"))
            for cookie in result.set_cookies:
                response.headers.append("set-cookie", cookie)
            return response

        @self.app.post("/signup/resend", status_code=202)
        async def resend_verification(body: ResendVerificationRequest, request: Request):
            with trace_request("signup.resend", request.headers.get("x-request-id")) as ctx:
                await self.signup_service.resend_verification(body.email, ctx)
            return {"status": "sent"}

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check auth dependencies."""
        dependencies = {}

        try:
            await self.redis.ping()
            dependencies["redis"] = "ok"
        except RedisError as e:
            self.logger.error("Redis health check failed", error=str(e))
            dependencies["redis"] = "error"

        dependencies["refresh_store"] = await self.refresh_store.check_health()
        dependencies["identity_provider"] = await self.jwks_client.check_health()

        return dependencies


def create_app():
    """Create FastAPI application."""
    service = AuthService()
    return service.app


if __name__ == "__main__":
    service = AuthService()
    service.run()
