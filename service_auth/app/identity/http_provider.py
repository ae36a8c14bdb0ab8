"""
HTTP client for the identity provider.

Token refresh uses the standard OAuth2 ``refresh_token`` grant; the sign-up
operations use the provider's JSON endpoints under ``/signup``.
"""

from datetime import timedelta
from typing import Any, Dict, Optional, Type

import httpx
from jose import jwt
from jose.exceptions import JWTError

from shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenException
from shared.logging import get_logger, mask_email
from shared.tracing import RequestContext
from ..sessions.models import SessionData, utcnow
from .provider import (
    DuplicateEmailError,
    EmailAvailability,
    IdentityProviderError,
    RefreshRejectedError,
    UserAlreadyConfirmedError,
    UserNotFoundError,
    VerificationAttemptsExceededError,
    VerificationCodeDeliveryFailedError,
    VerificationCodeDeliveryTooSoonError,
    VerificationCodeExpiredError,
    VerificationCodeMismatchError,
)

DEFAULT_EXPIRES_IN = 3600

ERROR_MAP: Dict[str, Type[IdentityProviderError]] = {
    "invalid_grant": RefreshRejectedError,
    "duplicate_email": DuplicateEmailError,
    "user_not_found": UserNotFoundError,
    "user_already_confirmed": UserAlreadyConfirmedError,
    "code_mismatch": VerificationCodeMismatchError,
    "code_expired": VerificationCodeExpiredError,
    "too_many_attempts": VerificationAttemptsExceededError,
    "code_delivery_failed": VerificationCodeDeliveryFailedError,
    "code_delivery_too_soon": VerificationCodeDeliveryTooSoonError,
}


def _json_body(response: httpx.Response) -> Any:
    """Decoded JSON body; empty or non-JSON bodies (an HTML error page) become ``{}``."""
    if not response.content:
        return {}
    try:
        return response.json()
    except ValueError:
        return {}


def _seconds(value: Any, default: Optional[int] = None) -> Optional[int]:
    if value in (None, ""):
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise IdentityProviderError("Token response carried a malformed lifetime", {"value": str(value)}) from e


class HttpIdentityProvider:
    """``IdentityProvider`` backed by the provider's HTTP API."""

    def __init__(self,
                 base_url: str,
                 client_id: str,
                 client_secret: str = "",
                 *,
                 refresh_token_ttl: timedelta = timedelta(days=30),
                 http_client: Optional[httpx.AsyncClient] = None,
                 timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.token_url = f"{self.base_url}/protocol/openid-connect/token"
        self.client_id = client_id
        self.client_secret = client_secret
        self.refresh_token_ttl = refresh_token_ttl
        self.logger = get_logger("auth.identity.http")

        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None
        self.circuit_breaker = CircuitBreaker(
            name=f"identity:{self.base_url}",
            failure_threshold=5,
            recovery_timeout=30,
            expected_exceptions=(httpx.TransportError, httpx.HTTPStatusError)
        )

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        response = await self._client.request(method, url, **kwargs)
        if response.status_code >= 500:
            response.raise_for_status()
        return response

    async def _request(self, method: str, url: str, **kwargs) -> Dict[str, Any]:
        """Send a request and return its JSON body, raising mapped errors on 4xx."""
        try:
            response = await self.circuit_breaker.call(self._send, method, url, **kwargs)
        except (httpx.HTTPError, CircuitBreakerOpenException) as e:
            self.logger.error("Identity provider unavailable", url=url, error=str(e))
            raise IdentityProviderError(details={"error": str(e)}) from e

        body = _json_body(response)
        if response.status_code >= 400:
            error = body.get("error", "") if isinstance(body, dict) else ""
            exc_type = ERROR_MAP.get(error, IdentityProviderError)
            description = body.get("error_description") if isinstance(body, dict) else None
            raise exc_type(description, {"provider_error": error, "status": response.status_code})

        return body if isinstance(body, dict) else {}

    def _session_from_tokens(self, tokens: Dict[str, Any], previous_refresh_token: str = "") -> SessionData:
        access_token = tokens.get("access_token")
        if not access_token:
            raise IdentityProviderError("Token response missing access_token")

        id_token = tokens.get("id_token") or ""
        try:
            claims = jwt.get_unverified_claims(id_token or access_token)
        except JWTError as e:
            raise IdentityProviderError("Token response carried an unreadable token") from e

        subject = claims.get("sub")
        if not subject:
            raise IdentityProviderError("Token response missing subject")

        now = utcnow()
        expires_in = _seconds(tokens.get("expires_in"), DEFAULT_EXPIRES_IN)
        refresh_expires_in = _seconds(tokens.get("refresh_expires_in"))
        refresh_expiry = (
            now + timedelta(seconds=refresh_expires_in)
            if refresh_expires_in else now + self.refresh_token_ttl
        )

        return SessionData(
            issued_at=now,
            access_token=access_token,
            id_token=id_token,
            access_token_expiry=now + timedelta(seconds=expires_in),
            refresh_token=tokens.get("refresh_token") or previous_refresh_token,
            refresh_token_expiry=refresh_expiry,
            sub=subject,
            email=claims.get("email"),
        )

    async def exchange_refresh_token(self, refresh_token: str,
                                     ctx: Optional[RequestContext] = None) -> SessionData:
        form = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": self.client_id,
        }
        if self.client_secret:
            form["client_secret"] = self.client_secret

        try:
            tokens = await self._request("POST", self.token_url, data=form)
        except IdentityProviderError as e:
            if ctx is not None:
                ctx.set_attribute("auth.refresh.error", e.code)
            if isinstance(e, RefreshRejectedError):
                raise
            if e.details.get("status") in (400, 401):
                raise RefreshRejectedError(e.message, e.details) from e
            raise

        return self._session_from_tokens(tokens, previous_refresh_token=refresh_token)

    async def sign_up(self, email: str, password: Optional[str] = None,
                      name: Optional[str] = None) -> None:
        payload: Dict[str, Any] = {"email": email}
        if password:
            payload["password"] = password
        if name:
            payload["name"] = name
        await self._request("POST", f"{self.base_url}/signup", json=payload)
        self.logger.info("Sign-up submitted", email=mask_email(email))

    async def check_email_availability(self, email: str) -> EmailAvailability:
        body = await self._request("GET", f"{self.base_url}/signup/availability", params={"email": email})
        try:
            return EmailAvailability(body.get("status"))
        except ValueError as e:
            raise IdentityProviderError("Unknown availability status", {"status": body.get("status")}) from e

    async def resend_verification_code(self, email: str) -> None:
        await self._request("POST", f"{self.base_url}/signup/resend", json={"email": email})

    async def verify_signup(self, email: str, code: str) -> str:
        body = await self._request("POST", f"{self.base_url}/signup/verify", json={"email": email, "code": code})
        session_token = body.get("session")
        if not session_token:
            raise IdentityProviderError("Verification response missing session")
        return session_token

    async def initiate_auth(self, email: str, session_token: str) -> SessionData:
        tokens = await self._request(
            "POST",
            f"{self.base_url}/signup/authenticate",
            json={"email": email, "session": session_token, "client_id": self.client_id}
        )
        return self._session_from_tokens(tokens)
