"""
Shared metrics configuration for the session gateway.
"""

from typing import Any, Dict, List, Optional, Sequence, Tuple, Type

from prometheus_client import CollectorRegistry, Counter, Histogram, Info, generate_latest

MetricSpec = Tuple[Type, str, str, Sequence[str]]

COMMON_METRICS: List[MetricSpec] = [
    (Counter, "http_requests_total", "Total HTTP requests", ["method", "endpoint", "status_code"]),
    (Histogram, "http_request_duration_seconds", "HTTP request duration in seconds", ["method", "endpoint"]),
    (Counter, "health_check_total", "Total health check requests", ["status"]),
    (Counter, "errors_total", "Total errors", ["error_type", "service"]),
]

AUTH_METRICS: List[MetricSpec] = [
    (Counter, "authz_checks_total", "Total authorization checks", ["decision"]),
    (Histogram, "authz_check_duration_seconds", "Authorization check duration in seconds", []),
    (Counter, "session_refresh_total", "Total refresh-token exchanges", ["outcome"]),
    (Counter, "token_validations_total", "Total token validations", ["status"]),
    (Counter, "jwks_refresh_total", "Total signing key refreshes", ["status"]),
    (Counter, "rate_limit_decisions_total", "Total rate limit decisions", ["algorithm", "allowed"]),
]


class MetricsCollector:
    """Centralized metrics collector for a service.

    Each collector owns a registry so several app instances can coexist in
    one process (tests build many).
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry if registry is not None else CollectorRegistry()
        self._metrics: Dict[str, Any] = {}

        info = Info("service_info", "Service information", registry=self.registry)
        info.info({"service": self.service_name, "version": "1.0.0"})
        self._metrics["service_info"] = info

        self._register(COMMON_METRICS)
        if self.service_name == "auth":
            self._register(AUTH_METRICS)

    def _register(self, specs: List[MetricSpec]) -> None:
        for metric_type, name, documentation, labels in specs:
            self._metrics[name] = metric_type(name, documentation, list(labels), registry=self.registry)

    def get_metric(self, name: str):
        return self._metrics.get(name)

    def record_http_request(self, method: str, endpoint: str, status_code: int, duration: float):
        """Count the request and observe its latency."""
        self._metrics["http_requests_total"].labels(method, endpoint, str(status_code)).inc()
        self._metrics["http_request_duration_seconds"].labels(method, endpoint).observe(duration)

    def record_health_check(self, status: str):
        self._metrics["health_check_total"].labels(status=status).inc()

    def record_error(self, error_type: str, service: Optional[str] = None):
        self._metrics["errors_total"].labels(error_type=error_type, service=service or self.service_name).inc()

    def increment_counter(self, metric_name: str, **labels):
        """Increment a counter metric; unknown names are ignored."""
        if metric_name in self._metrics:
            self._metrics[metric_name].labels(**labels).inc()

    def export(self) -> bytes:
        """Render the registry in the Prometheus text format."""
        return generate_latest(self.registry)


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    return MetricsCollector(service_name, registry)
