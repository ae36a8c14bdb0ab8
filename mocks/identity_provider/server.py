"""
Mock identity provider: discovery, JWKS, refresh-token grant and sign-up
endpoints, issuing real RS256 tokens.
"""

import uuid
from dataclasses import dataclass
from typing import Dict, Optional
from urllib.parse import parse_qs

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from shared.logging import get_logger, mask_email
from shared.test_helpers import MockTokenGenerator, TestUser


class SignUpBody(BaseModel):
    email: str
    password: Optional[str] = None
    name: Optional[str] = None


class EmailBody(BaseModel):
    email: str


class VerifyBody(BaseModel):
    email: str
    code: str


class AuthenticateBody(BaseModel):
    email: str
    session: str
    client_id: Optional[str] = None


@dataclass
class MockAccount:
    user: TestUser
    code: str
    confirmed: bool = False


def _error(status_code: int, error: str, description: str = "") -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error, "error_description": description})


class MockIdentityProvider:
    """In-memory identity provider for local development and integration tests."""

    def __init__(self, issuer: str = "http://localhost:8080", client_id: str = "auth-backend",
                 verification_code: str = "123456"):
        self.logger = get_logger("mock.identity_provider")
        self.tokens = MockTokenGenerator(issuer=issuer, client_id=client_id)
        self.client_id = client_id
        self.verification_code = verification_code
        self.access_token_ttl = 300
        self.accounts: Dict[str, MockAccount] = {}
        self.sign_in_sessions: Dict[str, str] = {}
        self.refresh_tokens: Dict[str, str] = {}
        self.app = FastAPI(title="Mock Identity Provider", version="1.0.0")
        self._setup_routes()

    def _issue(self, email: str) -> Dict:
        refresh_token = uuid.uuid4().hex
        self.refresh_tokens[refresh_token] = email
        return self.tokens.token_response(self.accounts[email].user, self.access_token_ttl, refresh_token)

    def revoke_refresh_tokens(self, email: str) -> None:
        for token, owner in list(self.refresh_tokens.items()):
            if owner == email:
                del self.refresh_tokens[token]

    def _setup_routes(self):

        @self.app.get("/.well-known/openid-configuration")
        async def openid_configuration():
            return self.tokens.discovery_document()

        @self.app.get("/protocol/openid-connect/certs")
        async def jwks_endpoint():
            return self.tokens.jwks()

        @self.app.post("/protocol/openid-connect/token")
        async def token_endpoint(request: Request):
            form = {key: values[0] for key, values in parse_qs((await request.body()).decode()).items()}
            if form.get("client_id") != self.client_id:
                return _error(401, "invalid_client")
            if form.get("grant_type") != "refresh_token":
                return _error(400, "unsupported_grant_type")

            email = self.refresh_tokens.get(form.get("refresh_token", ""))
            if email is None:
                return _error(400, "invalid_grant", "Refresh token is invalid or expired")
            # refresh tokens are not rotated; the response omits a new one
            return self.tokens.token_response(self.accounts[email].user, self.access_token_ttl)

        @self.app.post("/signup")
        async def sign_up(body: SignUpBody):
            email = body.email.strip().lower()
            if email in self.accounts:
                return _error(409, "duplicate_email")
            self.accounts[email] = MockAccount(
                user=TestUser(user_id=str(uuid.uuid4()), email=email, name=body.name or ""),
                code=self.verification_code
            )
            self.logger.info("Mock sign-up", email=mask_email(email))
            return JSONResponse(status_code=201, content={"status": "pending"})

        @self.app.get("/signup/availability")
        async def availability(email: str):
            account = self.accounts.get(email.strip().lower())
            if account is None:
                return {"status": "available"}
            return {"status": "registered" if account.confirmed else "pending_confirmation"}

        @self.app.post("/signup/resend")
        async def resend(body: EmailBody):
            account = self.accounts.get(body.email.strip().lower())
            if account is None:
                return _error(404, "user_not_found")
            if account.confirmed:
                return _error(409, "user_already_confirmed")
            return {"status": "sent"}

        @self.app.post("/signup/verify")
        async def verify(body: VerifyBody):
            email = body.email.strip().lower()
            account = self.accounts.get(email)
            if account is None:
                return _error(404, "user_not_found")
            if body.code != account.code:
                return _error(400, "code_mismatch")
            account.confirmed = True
            session = uuid.uuid4().hex
            self.sign_in_sessions[session] = email
            return {"session": session}

        @self.app.post("/signup/authenticate")
        async def authenticate(body: AuthenticateBody):
            email = self.sign_in_sessions.pop(body.session, None)
            if email is None or email != body.email.strip().lower():
                return _error(400, "invalid_grant", "Sign-in session is invalid")
            return self._issue(email)


def create_app():
    """Create mock identity provider application."""
    return MockIdentityProvider().app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(create_app(), host="0.0.0.0", port=8080)
