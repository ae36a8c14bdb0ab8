"""Tracing utilities: OpenTelemetry setup and the explicit request context."""

import os
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Optional, Dict, Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.instrumentation.redis import RedisInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.trace import Span, Status, StatusCode


def _otlp_exporter(endpoint: str) -> OTLPSpanExporter:
    """gRPC OTLP exporter; ``OTEL_EXPORTER_OTLP_HEADERS`` is honoured as ``k=v,k2=v2``."""
    headers = dict(
        (key.strip(), value.strip())
        for key, _, value in (segment.partition("=") for segment in os.getenv("OTEL_EXPORTER_OTLP_HEADERS", "").split(","))
        if key.strip() and value
    )
    return OTLPSpanExporter(endpoint=endpoint, headers=headers or None, insecure=endpoint.startswith("http://"))


def configure_tracing(service_name: str, otel_exporter: str = "http://localhost:4317", enable_console: bool = False) -> None:
    """Configure OpenTelemetry tracing for a service."""

    resource = Resource.create({
        "service.name": service_name,
        "service.version": "1.0.0",
        "service.instance.id": os.getenv("HOSTNAME", "unknown"),
        "deployment.environment": os.getenv("ACCESS_ENV", "development")
    })

    provider = TracerProvider(resource=resource)
    provider.add_span_processor(BatchSpanProcessor(_otlp_exporter(otel_exporter)))
    if enable_console:
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
    trace.set_tracer_provider(provider)

    FastAPIInstrumentor().instrument()
    RedisInstrumentor().instrument()
    HTTPXClientInstrumentor().instrument()


def get_tracer(name: str):
    """Get a tracer instance."""
    return trace.get_tracer(name)


@dataclass
class RequestContext:
    """Request-scoped context handed explicitly through every call.

    Components record tracing attributes here instead of reaching for the
    ambient current span. When a span is attached, attributes are mirrored
    onto it.
    """

    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    span: Optional[Span] = None
    attributes: Dict[str, Any] = field(default_factory=dict)

    def set_attribute(self, key: str, value: Any) -> None:
        self.attributes[key] = value
        if self.span is not None and self.span.is_recording():
            self.span.set_attribute(key, value)

    def set_error(self, description: str) -> None:
        self.set_attribute("error", True)
        self.set_attribute("error.message", description)
        if self.span is not None and self.span.is_recording():
            self.span.set_status(Status(StatusCode.ERROR, description))


@contextmanager
def trace_request(operation_name: str, request_id: Optional[str] = None, **attributes):
    """Open a span for one inbound request and yield its ``RequestContext``."""
    tracer = get_tracer(__name__)
    with tracer.start_as_current_span(operation_name) as span:
        ctx = RequestContext(request_id=request_id or uuid.uuid4().hex, span=span)
        ctx.set_attribute("request.id", ctx.request_id)
        for key, value in attributes.items():
            ctx.set_attribute(key, value)

        try:
            yield ctx
        except Exception as exc:
            ctx.set_error(str(exc))
            raise
