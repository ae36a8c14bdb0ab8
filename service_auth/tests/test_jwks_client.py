"""
Tests for the discovery and signing key client.
"""

import httpx
import pytest

from service_auth.app.jwks.client import JWKSClient
from shared.errors import ExternalServiceError
from shared.test_helpers import MockTokenGenerator


class CountingTransport(httpx.AsyncBaseTransport):
    """Wraps a handler and counts requests per URL."""

    def __init__(self, handler):
        self.handler = handler
        self.calls = []

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(str(request.url))
        return self.handler(request)


def idp_handler(generator):
    def handler(request):
        url = str(request.url)
        if url.endswith("/.well-known/openid-configuration"):
            return httpx.Response(200, json=generator.discovery_document())
        if url.endswith("/certs"):
            return httpx.Response(200, json=generator.jwks())
        return httpx.Response(404)
    return handler


class TestJWKSClient:
    """Test discovery, caching and key rotation."""

    @pytest.fixture
    def generator(self):
        return MockTokenGenerator(issuer="http://jwks.test")

    def make_client(self, transport, **kwargs):
        return JWKSClient("http://jwks.test/", http_client=httpx.AsyncClient(transport=transport), **kwargs)

    @pytest.mark.asyncio
    async def test_fetches_discovery_then_jwks(self, generator):
        transport = CountingTransport(idp_handler(generator))
        client = self.make_client(transport)

        config = await client.get_configuration()

        assert config.issuer == "http://jwks.test"
        assert config.find_key(generator.kid)["kty"] == "RSA"
        assert transport.calls == [
            "http://jwks.test/.well-known/openid-configuration",
            "http://jwks.test/protocol/openid-connect/certs",
        ]

    @pytest.mark.asyncio
    async def test_configuration_is_cached(self, generator):
        transport = CountingTransport(idp_handler(generator))
        client = self.make_client(transport)

        await client.get_configuration()
        await client.get_configuration()

        assert len(transport.calls) == 2

    @pytest.mark.asyncio
    async def test_unknown_kid_forces_refresh(self, generator):
        transport = CountingTransport(idp_handler(generator))
        client = self.make_client(transport, min_refresh_interval=0)
        await client.get_configuration()

        rotated = MockTokenGenerator(issuer="http://jwks.test")
        transport.handler = idp_handler(rotated)

        key = await client.get_key(rotated.kid)

        assert key is not None
        assert key["kid"] == rotated.kid
        assert len(transport.calls) == 4

    @pytest.mark.asyncio
    async def test_forced_refresh_is_throttled(self, generator):
        transport = CountingTransport(idp_handler(generator))
        client = self.make_client(transport, min_refresh_interval=30)
        await client.get_configuration()

        assert await client.get_key("missing") is None
        assert len(transport.calls) == 2

    @pytest.mark.asyncio
    async def test_serves_stale_keys_when_refresh_fails(self, generator):
        transport = CountingTransport(idp_handler(generator))
        client = self.make_client(transport, cache_ttl=0)
        first = await client.get_configuration()

        transport.handler = lambda request: httpx.Response(500)

        assert await client.get_configuration() is first

    @pytest.mark.asyncio
    async def test_unavailable_without_cache(self):
        transport = CountingTransport(lambda request: httpx.Response(503))
        client = JWKSClient("http://down.test", http_client=httpx.AsyncClient(transport=transport))

        with pytest.raises(ExternalServiceError):
            await client.get_configuration()
        assert await client.check_health() == "error"

    @pytest.mark.asyncio
    async def test_rejects_incomplete_discovery_document(self):
        transport = CountingTransport(lambda request: httpx.Response(200, json={"issuer": "http://bad.test"}))
        client = JWKSClient("http://bad.test", http_client=httpx.AsyncClient(transport=transport))

        with pytest.raises(ExternalServiceError):
            await client.get_configuration()
