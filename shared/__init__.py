"""
Shared utilities for the session gateway.

- config: Service configuration via pydantic-settings
- logging: Structured logging with redaction helpers
- metrics: Prometheus metrics helpers
- tracing: OpenTelemetry setup and the per-request context
- errors: Canonical error types and responses
- retry: Retry decorator for idempotent reads
- circuit_breaker: Protection for calls to the identity provider
- base_service: FastAPI service skeleton with health and metrics routes

Do not import from service packages into shared/.
"""
