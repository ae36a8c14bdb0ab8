"""
Sign-up orchestration on top of the identity provider.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from typing import List, Optional

from shared.logging import get_logger, mask_email
from shared.tracing import RequestContext
from ..identity.provider import DuplicateEmailError, EmailAvailability, IdentityProvider
from ..ratelimit.enforcement import RateLimitEnforcer
from ..sessions.cache import SessionCache
from ..sessions.cookies import ACCESS_SESSION_COOKIE, REFRESH_SESSION_COOKIE, format_set_cookie, new_session_id
from ..sessions.models import RefreshTokenRecord, SessionData, utcnow
from ..sessions.refresh_store import RefreshTokenStore
from .models import InitiateSignUpRequest, SignUpStep

# (window_seconds, max_requests) per normalized email
INITIATE_LIMIT = (3600, 15)
VERIFY_LIMIT = (3600, 5)
RESEND_LIMIT = (3600, 5)


@dataclass
class SignInResult:
    session: SessionData
    access_session_id: str
    refresh_session_id: str
    set_cookies: List[str] = field(default_factory=list)


class SignUpService:
    """Initiate, verify and resend, each bounded per email address."""

    def __init__(self,
                 provider: IdentityProvider,
                 enforcer: RateLimitEnforcer,
                 cache: SessionCache,
                 refresh_store: RefreshTokenStore,
                 refresh_token_ttl: timedelta = timedelta(days=30)):
        self.provider = provider
        self.enforcer = enforcer
        self.cache = cache
        self.refresh_store = refresh_store
        self.refresh_token_ttl = refresh_token_ttl
        self.logger = get_logger("auth.signup")

    async def initiate_sign_up(self, request: InitiateSignUpRequest,
                               ctx: Optional[RequestContext] = None) -> SignUpStep:
        window, limit = INITIATE_LIMIT
        await self.enforcer.enforce_fixed_by_email(request.email, "signup", window, limit, ctx)

        if request.require_password and not request.password:
            availability = await self.provider.check_email_availability(request.email)
            if availability == EmailAvailability.AVAILABLE:
                return SignUpStep.PASSWORD_REQUIRED
            if availability == EmailAvailability.PENDING_CONFIRMATION:
                await self.provider.resend_verification_code(request.email)
                self.logger.info("Resent verification code", email=mask_email(request.email))
                return SignUpStep.VERIFICATION_REQUIRED
            raise DuplicateEmailError()

        try:
            await self.provider.sign_up(request.email, request.password, request.name)
        except DuplicateEmailError:
            availability = await self.provider.check_email_availability(request.email)
            if availability != EmailAvailability.PENDING_CONFIRMATION:
                raise
            await self.provider.resend_verification_code(request.email)
            self.logger.info("Resent verification code", email=mask_email(request.email))
            return SignUpStep.VERIFICATION_REQUIRED

        self.logger.info("Verification code sent", email=mask_email(request.email))
        return SignUpStep.VERIFICATION_REQUIRED

    async def verify_and_sign_in(self, email: str, code: str,
                                 ctx: Optional[RequestContext] = None) -> SignInResult:
        window, limit = VERIFY_LIMIT
        await self.enforcer.enforce_fixed_by_email(email, "signup-verify", window, limit, ctx)

        session_token = await self.provider.verify_signup(email, code)
        signed_in = await self.provider.initiate_auth(email, session_token)

        refresh_session_id = new_session_id()
        refresh_expiry = signed_in.refresh_token_expiry or (utcnow() + self.refresh_token_ttl)
        await self.refresh_store.save(RefreshTokenRecord(
            rt_id=refresh_session_id,
            user_sub=signed_in.sub,
            user_email=signed_in.email or email,
            refresh_token=signed_in.refresh_token,
            issued_at=signed_in.issued_at,
            expires_at=refresh_expiry
        ))

        session = signed_in.without_refresh_token()
        access_session_id = new_session_id()
        if not await self.cache.set(access_session_id, session):
            self.logger.warning("New session was not cached", email=mask_email(email))

        self.logger.info("Signed in after verification", sub=session.sub, email=mask_email(email))
        return SignInResult(
            session=session,
            access_session_id=access_session_id,
            refresh_session_id=refresh_session_id,
            set_cookies=[
                format_set_cookie(ACCESS_SESSION_COOKIE, access_session_id, session.access_token_expiry),
                format_set_cookie(REFRESH_SESSION_COOKIE, refresh_session_id, refresh_expiry),
            ]
        )

    async def resend_verification(self, email: str, ctx: Optional[RequestContext] = None) -> None:
        window, limit = RESEND_LIMIT
        await self.enforcer.enforce_fixed_by_email(email, "signup-resend", window, limit, ctx)
        await self.provider.resend_verification_code(email)
        self.logger.info("Resent verification code", email=mask_email(email))
