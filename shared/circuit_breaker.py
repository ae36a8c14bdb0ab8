"""
Circuit breaker for calls to the identity provider and discovery endpoints.
"""

import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Tuple, Type

from shared.errors import ServiceError
from shared.logging import get_logger


class CircuitBreakerState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerOpenException(ServiceError):
    """Raised instead of calling through while the breaker is open."""

    def __init__(self, name: str):
        super().__init__(f"Circuit breaker '{name}' is open", {"circuit_breaker": name})
        self.code = "CIRCUIT_OPEN"


class CircuitBreaker:
    """Counts consecutive failures of ``expected_exceptions`` and opens past a threshold.

    Exceptions outside ``expected_exceptions`` propagate without touching the
    failure count, so a provider rejecting a credential does not trip the
    breaker for everybody else. After ``recovery_timeout`` seconds one trial
    call is let through; its outcome closes or re-opens the breaker.
    """

    def __init__(self,
                 failure_threshold: int = 5,
                 recovery_timeout: float = 60.0,
                 expected_exceptions: Tuple[Type[BaseException], ...] = (Exception,),
                 name: str = "default"):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.expected_exceptions = expected_exceptions
        self.name = name
        self.logger = get_logger(f"circuit_breaker.{name}")

        self._state = CircuitBreakerState.CLOSED
        self._failure_count = 0
        self._opened_at = 0.0

    async def call(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        if self._state == CircuitBreakerState.OPEN:
            if time.monotonic() - self._opened_at < self.recovery_timeout:
                raise CircuitBreakerOpenException(self.name)
            self._state = CircuitBreakerState.HALF_OPEN
            self.logger.info("Circuit breaker half-open, allowing trial call")

        try:
            result = await func(*args, **kwargs)
        except self.expected_exceptions:
            self._on_failure()
            raise

        self._on_success()
        return result

    def _on_success(self) -> None:
        if self._state != CircuitBreakerState.CLOSED:
            self.logger.info("Circuit breaker closed")
        self._state = CircuitBreakerState.CLOSED
        self._failure_count = 0

    def _on_failure(self) -> None:
        self._failure_count += 1
        tripped = self._state == CircuitBreakerState.HALF_OPEN or self._failure_count >= self.failure_threshold
        if tripped:
            self._state = CircuitBreakerState.OPEN
            self._opened_at = time.monotonic()
            self.logger.warning("Circuit breaker opened", failure_count=self._failure_count,
                                threshold=self.failure_threshold)

    def get_state(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self._state.value,
            "failure_count": self._failure_count,
            "failure_threshold": self.failure_threshold,
            "recovery_timeout": self.recovery_timeout
        }
