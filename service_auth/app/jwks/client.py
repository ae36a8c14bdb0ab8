"""
Discovery document and signing key client for the identity provider.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenException
from shared.errors import ExternalServiceError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from shared.retry import RetryConfig, RetryError, retry_on_exception


@dataclass(frozen=True)
class SigningConfiguration:
    """Issuer and signing keys published by the identity provider."""

    issuer: str
    keys: List[Dict[str, Any]] = field(default_factory=list)
    token_endpoint: Optional[str] = None
    fetched_at: float = 0.0

    def find_key(self, kid: str) -> Optional[Dict[str, Any]]:
        for key in self.keys:
            if key.get("kid") == kid:
                return key
        return None


class JWKSClient:
    """Fetches ``{authority}/.well-known/openid-configuration`` and its JWKS.

    The pair is cached for ``cache_ttl`` seconds. An unknown ``kid`` forces a
    refresh, at most once per ``min_refresh_interval`` seconds, to pick up
    rotated keys.
    """

    def __init__(self,
                 authority: str,
                 cache_ttl: int = 3600,
                 *,
                 http_client: Optional[httpx.AsyncClient] = None,
                 http_timeout: float = 5.0,
                 min_refresh_interval: float = 30.0,
                 metrics: Optional[MetricsCollector] = None):
        self.authority = authority.rstrip("/")
        self.discovery_url = f"{self.authority}/.well-known/openid-configuration"
        self.cache_ttl = cache_ttl
        self.min_refresh_interval = min_refresh_interval
        self.metrics = metrics
        self.logger = get_logger("auth.jwks")

        self._client = http_client or httpx.AsyncClient(timeout=http_timeout)
        self._owns_client = http_client is None
        self._config: Optional[SigningConfiguration] = None
        self._lock = asyncio.Lock()
        self.circuit_breaker = CircuitBreaker(
            name=f"discovery:{self.authority}",
            failure_threshold=5,
            recovery_timeout=30,
            expected_exceptions=(RetryError, httpx.HTTPError, ValueError)
        )

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _is_fresh(self, max_age: float) -> bool:
        return self._config is not None and (time.time() - self._config.fetched_at) < max_age

    async def get_configuration(self, force: bool = False) -> SigningConfiguration:
        """Return the cached configuration, refreshing it when stale or forced."""
        if self._is_fresh(self.min_refresh_interval if force else self.cache_ttl):
            return self._config

        async with self._lock:
            if self._is_fresh(self.min_refresh_interval if force else self.cache_ttl):
                return self._config

            try:
                self._config = await self.circuit_breaker.call(self._fetch_configuration)
            except (RetryError, CircuitBreakerOpenException, httpx.HTTPError, ValueError) as e:
                self._record_refresh("error")
                self.logger.error("Failed to refresh signing keys", url=self.discovery_url, error=str(e))
                if self._config is not None:
                    self.logger.warning("Using stale signing keys due to fetch failure")
                    return self._config
                raise ExternalServiceError("identity-provider", "Signing keys unavailable") from e

            self._record_refresh("success")
            self.logger.info(
                "Signing keys refreshed",
                issuer=self._config.issuer,
                keys_count=len(self._config.keys)
            )
            return self._config

    async def get_key(self, kid: str) -> Optional[Dict[str, Any]]:
        """Find the signing key for ``kid``, forcing one refresh on a miss."""
        config = await self.get_configuration()
        key = config.find_key(kid)
        if key is not None:
            return key

        config = await self.get_configuration(force=True)
        key = config.find_key(kid)
        if key is None:
            self.logger.warning("Signing key not found", kid=kid)
        return key

    async def check_health(self) -> str:
        try:
            await self.get_configuration()
            return "ok"
        except ExternalServiceError:
            return "error"

    @retry_on_exception((httpx.TransportError,), RetryConfig(max_attempts=3, base_delay=0.2))
    async def _get_json(self, url: str) -> Dict[str, Any]:
        response = await self._client.get(url)
        response.raise_for_status()
        payload = response.json()
        if not isinstance(payload, dict):
            raise ValueError(f"Expected a JSON object from {url}")
        return payload

    async def _fetch_configuration(self) -> SigningConfiguration:
        document = await self._get_json(self.discovery_url)
        issuer = document.get("issuer")
        jwks_uri = document.get("jwks_uri")
        if not isinstance(issuer, str) or not isinstance(jwks_uri, str):
            raise ValueError("Discovery document missing issuer or jwks_uri")

        jwks = await self._get_json(jwks_uri)
        keys = jwks.get("keys")
        if not isinstance(keys, list):
            raise ValueError("JWKS response missing 'keys' array")

        return SigningConfiguration(
            issuer=issuer,
            keys=[key for key in keys if isinstance(key, dict)],
            token_endpoint=document.get("token_endpoint"),
            fetched_at=time.time()
        )

    def _record_refresh(self, status: str) -> None:
        if self.metrics is not None:
            self.metrics.increment_counter("jwks_refresh_total", status=status)
