"""
Shared logging configuration for the session gateway.
"""

import sys
import logging
from typing import Any, Callable, Dict, Optional

import structlog
from opentelemetry import trace

Processor = Callable[[Any, str, Dict[str, Any]], Dict[str, Any]]


def configure_logging(service_name: str, log_level: str = "info") -> None:
    """Configure JSON structured logging to stdout."""
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            service_context(service_name),
            add_trace_context,
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=getattr(logging, log_level.upper()))


def service_context(service_name: str) -> Processor:
    def add_service(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        event_dict.setdefault("service", service_name)
        return event_dict
    return add_service


def add_trace_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Attach the active OpenTelemetry trace and span ids, if any."""
    span_context = trace.get_current_span().get_span_context()
    if span_context.trace_id:
        event_dict["trace_id"] = f"{span_context.trace_id:032x}"
    if span_context.span_id:
        event_dict["span_id"] = f"{span_context.span_id:016x}"
    return event_dict


def mask_email(email: Optional[str]) -> str:
    """Mask the local part of an email address for logging.

    ``alice@example.com`` becomes ``a***e@example.com``; local parts of
    two characters or fewer are fully starred.
    """
    if not email or "@" not in email:
        return "***"

    local, domain = email.split("@", 1)
    if len(local) <= 2:
        return f"{'*' * len(local)}@{domain}"

    return f"{local[0]}{'*' * (len(local) - 2)}{local[-1]}@{domain}"


def redact(value: Optional[str], keep: int = 6) -> str:
    """Shorten an opaque identifier or token so it can be logged."""
    if not value:
        return ""
    return value[:keep] + "..."


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
