"""
Identity provider interface consumed by the session resolver and sign-up flow.

Implementations translate provider failures into the exceptions below so
callers never depend on a particular provider's error vocabulary.
"""

from enum import Enum
from typing import Any, Dict, Optional, Protocol

from shared.errors import AccessLayerException
from shared.tracing import RequestContext
from ..sessions.models import SessionData


class EmailAvailability(str, Enum):
    AVAILABLE = "available"
    PENDING_CONFIRMATION = "pending_confirmation"
    REGISTERED = "registered"


class IdentityProviderError(AccessLayerException):
    """Base class for failures reported by the identity provider."""

    status_code = 502
    default_code = "PROVIDER_OPERATION_FAILED"
    default_message = "Identity provider operation failed"

    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(self.default_code, message or self.default_message, details)


class RefreshRejectedError(IdentityProviderError):
    status_code = 401
    default_code = "REFRESH_REJECTED"
    default_message = "Refresh token rejected"


class DuplicateEmailError(IdentityProviderError):
    status_code = 409
    default_code = "DUPLICATE_EMAIL"
    default_message = "An account with this email already exists"


class UserNotFoundError(IdentityProviderError):
    status_code = 404
    default_code = "USER_NOT_FOUND"
    default_message = "User not found"


class UserAlreadyConfirmedError(IdentityProviderError):
    status_code = 409
    default_code = "USER_ALREADY_CONFIRMED"
    default_message = "User is already confirmed"


class VerificationCodeMismatchError(IdentityProviderError):
    status_code = 400
    default_code = "VERIFICATION_CODE_MISMATCH"
    default_message = "Verification code does not match"


class VerificationCodeExpiredError(IdentityProviderError):
    status_code = 400
    default_code = "VERIFICATION_CODE_EXPIRED"
    default_message = "Verification code has expired"


class VerificationAttemptsExceededError(IdentityProviderError):
    status_code = 429
    default_code = "VERIFICATION_ATTEMPTS_EXCEEDED"
    default_message = "Too many verification attempts"


class VerificationCodeDeliveryFailedError(IdentityProviderError):
    status_code = 502
    default_code = "VERIFICATION_CODE_DELIVERY_FAILED"
    default_message = "Verification code could not be delivered"


class VerificationCodeDeliveryTooSoonError(IdentityProviderError):
    status_code = 429
    default_code = "VERIFICATION_CODE_DELIVERY_TOO_SOON"
    default_message = "A verification code was sent recently"


class IdentityProvider(Protocol):
    """Operations the gateway needs from the identity provider."""

    async def exchange_refresh_token(self, refresh_token: str,
                                     ctx: Optional[RequestContext] = None) -> SessionData:
        """New access, identity and refresh tokens; raises ``RefreshRejectedError``."""
        ...

    async def sign_up(self, email: str, password: Optional[str] = None,
                      name: Optional[str] = None) -> None: ...

    async def check_email_availability(self, email: str) -> EmailAvailability: ...

    async def resend_verification_code(self, email: str) -> None: ...

    async def verify_signup(self, email: str, code: str) -> str:
        """Confirm the sign-up and return an opaque session token for ``initiate_auth``."""
        ...

    async def initiate_auth(self, email: str, session_token: str) -> SessionData: ...
