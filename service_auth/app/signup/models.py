"""
Request and response models for the sign-up routes.
"""

import re
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _validate_email(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("Email address is required.")
    if not EMAIL_PATTERN.match(value):
        raise ValueError("Email address is not valid.")
    return value


class SignUpStep(str, Enum):
    VERIFICATION_REQUIRED = "verification_required"
    PASSWORD_REQUIRED = "password_required"


class InitiateSignUpRequest(BaseModel):
    email: str
    password: Optional[str] = None
    require_password: bool = False
    name: Optional[str] = Field(default=None, max_length=100)

    check_email = field_validator("email")(_validate_email)

    @field_validator("password")
    @classmethod
    def check_password(cls, value: Optional[str]) -> Optional[str]:
        if value is None or not value.strip():
            return None
        if len(value) < 8:
            raise ValueError("Password must be at least 8 characters when provided.")
        if not re.search(r"[A-Za-z]", value):
            raise ValueError("Password must contain at least one letter when provided.")
        if not re.search(r"\d", value):
            raise ValueError("Password must contain at least one number when provided.")
        return value

    @model_validator(mode="after")
    def password_needs_flag(self) -> "InitiateSignUpRequest":
        if self.password and not self.require_password:
            raise ValueError("require_password must be true when a password is provided")
        return self


class InitiateSignUpResponse(BaseModel):
    step: SignUpStep


class VerifySignUpRequest(BaseModel):
    email: str
    code: str = Field(min_length=6, max_length=6)
    name: Optional[str] = Field(default=None, max_length=100)

    check_email = field_validator("email")(_validate_email)


class VerifySignUpResponse(BaseModel):
    sub: str
    email: Optional[str] = None
    expires_at: datetime


class ResendVerificationRequest(BaseModel):
    email: str

    check_email = field_validator("email")(_validate_email)
