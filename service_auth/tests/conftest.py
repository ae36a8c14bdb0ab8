"""
Shared fixtures for Auth service tests.
"""

from datetime import timedelta

import httpx
import pytest
from fakeredis import FakeServer
from fakeredis.aioredis import FakeRedis

from service_auth.app.jwks.client import JWKSClient
from service_auth.app.sessions.models import SessionData, utcnow
from service_auth.app.validation.token_validator import TokenValidator
from shared.test_helpers import MockTokenGenerator, TestUser

ISSUER = "http://idp.test"
CLIENT_ID = "auth-backend"


@pytest.fixture(scope="session")
def token_generator():
    """RSA-backed token generator shared across the test session."""
    return MockTokenGenerator(issuer=ISSUER, client_id=CLIENT_ID)


@pytest.fixture
def user():
    return TestUser(user_id="user-1", email="john.doe@example.com")


@pytest.fixture
def redis_client():
    """Isolated in-process Redis with Lua scripting support."""
    return FakeRedis(server=FakeServer(), decode_responses=True)


@pytest.fixture
def jwks_client(token_generator):
    return JWKSClient(ISSUER, http_client=httpx.AsyncClient(transport=token_generator.discovery_transport()))


@pytest.fixture
def validator(jwks_client):
    return TokenValidator(jwks_client, CLIENT_ID, clock_skew_seconds=60)


@pytest.fixture
def make_session(token_generator, user):
    """Build SessionData whose access token expires ``expires_in`` seconds from now."""

    def _make(expires_in: int = 300, refresh_token: str = "", **claims) -> SessionData:
        now = utcnow()
        return SessionData(
            issued_at=now,
            access_token=token_generator.generate_access_token(user, expires_in, **claims),
            id_token=token_generator.generate_id_token(user, expires_in),
            access_token_expiry=now + timedelta(seconds=expires_in),
            refresh_token=refresh_token,
            refresh_token_expiry=now + timedelta(days=30),
            sub=user.user_id,
            email=user.email,
        )

    return _make
