"""
Access token validation for the Auth service.
"""

from typing import Any, Dict, Optional

from jose import jwt
from jose.exceptions import ExpiredSignatureError, JWTClaimsError, JWTError
from pydantic import BaseModel, ConfigDict

from shared.errors import AuthenticationError, ExternalServiceError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from shared.tracing import RequestContext
from ..jwks.client import JWKSClient


class AccessTokenClaims(BaseModel):
    """Typed view of a validated access token."""

    model_config = ConfigDict(extra="allow")

    sub: str
    client_id: str
    iss: str
    exp: int
    iat: Optional[int] = None
    email: Optional[str] = None
    scope: Optional[str] = None


class TokenVerificationRequest(BaseModel):
    """Request model for token verification."""
    token: str


class TokenVerificationResponse(BaseModel):
    """Response model for token verification."""
    valid: bool
    expired: bool = False
    claims: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


class TokenExpiredError(AuthenticationError):
    """Signature and issuer are fine but the token is past ``exp`` plus skew."""

    def __init__(self, details: Optional[Dict[str, Any]] = None):
        super().__init__("Access token expired", details, code="TOKEN_EXPIRED")


class TokenValidationError(AuthenticationError):
    """Any non-expiry failure.

    ``tampered`` is false when the token could not be checked at all (signing
    keys unavailable, or a kid not yet published after a key rotation)
    rather than failing a check.
    """

    def __init__(self, reason: str, message: str = "Access token invalid", tampered: bool = True,
                 details: Optional[Dict[str, Any]] = None):
        merged = {"reason": reason}
        merged.update(details or {})
        super().__init__(message, merged, code="TOKEN_INVALID")
        self.reason = reason
        self.tampered = tampered


class TokenValidator:
    """Validates signature, issuer, expiry and the ``client_id`` claim.

    Signing keys and the issuer come from the identity provider's discovery
    document. Expiry is checked with ``clock_skew_seconds`` of leeway.
    """

    def __init__(self,
                 jwks_client: JWKSClient,
                 expected_client_id: str,
                 clock_skew_seconds: int = 60,
                 metrics: Optional[MetricsCollector] = None):
        self.jwks_client = jwks_client
        self.expected_client_id = expected_client_id
        self.clock_skew_seconds = clock_skew_seconds
        self.metrics = metrics
        self.logger = get_logger("auth.validator")

    async def validate(self, token: str, ctx: Optional[RequestContext] = None) -> AccessTokenClaims:
        """Return typed claims or raise ``TokenExpiredError`` / ``TokenValidationError``."""
        try:
            claims = await self._decode(token)
        except TokenExpiredError:
            self._record("expired", ctx)
            raise
        except TokenValidationError as e:
            self._record("invalid", ctx, e.reason)
            raise

        self._record("valid", ctx)
        return claims

    async def verify_token(self, token: str) -> TokenVerificationResponse:
        """Non-raising variant used by the introspection route."""
        if token.startswith("Bearer "):
            token = token[7:]

        try:
            claims = await self.validate(token)
        except TokenExpiredError as e:
            return TokenVerificationResponse(valid=False, expired=True, error=e.message)
        except TokenValidationError as e:
            return TokenVerificationResponse(valid=False, error=e.reason)

        return TokenVerificationResponse(valid=True, claims=claims.model_dump(exclude_none=True))

    async def _decode(self, token: str) -> AccessTokenClaims:
        if not token:
            raise TokenValidationError("missing")

        try:
            header = jwt.get_unverified_header(token)
        except JWTError as e:
            raise TokenValidationError("malformed", details={"error": str(e)}) from e

        try:
            config = await self.jwks_client.get_configuration()
            kid = header.get("kid")
            if kid:
                key = await self.jwks_client.get_key(kid)
            elif len(config.keys) == 1:
                key = config.keys[0]
            else:
                key = None
        except ExternalServiceError as e:
            raise TokenValidationError("keys_unavailable", "Signing keys unavailable", tampered=False) from e

        if key is None:
            raise TokenValidationError("unknown_key", details={"kid": kid}, tampered=False)

        try:
            payload = jwt.decode(
                token,
                key,
                algorithms=[key.get("alg", "RS256")],
                issuer=config.issuer,
                options={
                    "verify_aud": False,
                    "require_exp": True,
                    "leeway": self.clock_skew_seconds,
                }
            )
        except ExpiredSignatureError as e:
            raise TokenExpiredError() from e
        except JWTClaimsError as e:
            raise TokenValidationError("claims", details={"error": str(e)}) from e
        except JWTError as e:
            raise TokenValidationError("signature", details={"error": str(e)}) from e

        client_id = payload.get("client_id")
        if not client_id:
            raise TokenValidationError("client_id_missing")
        if client_id != self.expected_client_id:
            raise TokenValidationError("client_id_mismatch", details={"client_id": client_id})
        if not payload.get("sub"):
            raise TokenValidationError("subject_missing")

        return AccessTokenClaims.model_validate(payload)

    def _record(self, status: str, ctx: Optional[RequestContext], reason: Optional[str] = None) -> None:
        if self.metrics is not None:
            self.metrics.increment_counter("token_validations_total", status=status)
        if ctx is not None:
            ctx.set_attribute("auth.validation.status", status)
            if reason:
                ctx.set_attribute("auth.validation.failure_reason", reason)
        if reason:
            self.logger.warning("Token verification failed", reason=reason)
