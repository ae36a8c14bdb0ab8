"""
Shared configuration management for the session gateway.
"""

from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="ACCESS_",
        env_file=".env",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")
    cors_allow_origins: List[str] = Field(default_factory=list)

    # External services
    redis_url: str = Field(default="redis://localhost:6379/0")
    postgres_dsn: str = Field(default="postgres://localhost:5432/access")

    # Identity provider
    auth_authority: str = Field(default="http://localhost:8080/realms/auth")
    auth_client_id: str = Field(default="auth-backend")
    auth_client_secret: str = Field(default="")
    identity_provider_url: str = Field(default="http://localhost:8080/realms/auth")
    identity_provider_timeout_seconds: float = Field(default=10.0)

    # Token validation
    jwks_cache_ttl_seconds: int = Field(default=3600)
    token_clock_skew_seconds: int = Field(default=60)
    deny_tampered_tokens: bool = Field(default=False)

    # Sessions
    refresh_token_ttl_days: int = Field(default=30)
    refresh_store_backend: str = Field(default="postgres")
    inject_authorization_header: bool = Field(default=False)
    inject_identity_headers: bool = Field(default=True)

    # Rate limiting
    ratelimit_sliding_window_seconds: int = Field(default=30)
    ratelimit_sliding_max_requests: int = Field(default=10)
    ratelimit_fixed_window_seconds: int = Field(default=60)
    ratelimit_fixed_max_requests: int = Field(default=60)
    ratelimit_fail_open: bool = Field(default=False)

    # Observability
    enable_tracing: bool = Field(default=False)
    otel_exporter: str = Field(default="http://localhost:4317")
    enable_console_tracing: bool = Field(default=False)


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port, **overrides)
