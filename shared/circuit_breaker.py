"""
Circuit breaker for calls to collaborators the gateway does not own.
"""

import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from shared.logging import get_logger


class CircuitBreakerState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerOpenException(Exception):
    """Exception raised when circuit breaker is open."""


class CircuitBreaker:
    """Counts consecutive failures and short-circuits calls while open."""

    def __init__(self,
                 failure_threshold: int = 5,
                 recovery_timeout: float = 60.0,
                 name: str = "default",
                 clock: Optional[Callable[[], float]] = None):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.name = name
        self.logger = get_logger(f"circuit_breaker.{name}")
        self._clock = clock or time.monotonic

        self._state = CircuitBreakerState.CLOSED
        self._failure_count = 0
        self._opened_at = 0.0

    @property
    def state(self) -> CircuitBreakerState:
        return self._state

    def _should_attempt_call(self) -> bool:
        if self._state != CircuitBreakerState.OPEN:
            return True
        if self._clock() - self._opened_at >= self.recovery_timeout:
            self._state = CircuitBreakerState.HALF_OPEN
            self.logger.info("Circuit breaker transitioning to half-open")
            return True
        return False

    async def call(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """Execute function with circuit breaker protection."""
        if not self._should_attempt_call():
            raise CircuitBreakerOpenException(
                f"Circuit breaker '{self.name}' is OPEN - blocking call"
            )

        try:
            result = await func(*args, **kwargs)
        except Exception:
            self._record_failure()
            raise

        if self._state == CircuitBreakerState.HALF_OPEN:
            self.logger.info("Circuit breaker reset to CLOSED after successful call")
        self._state = CircuitBreakerState.CLOSED
        self._failure_count = 0
        return result

    def _record_failure(self):
        self._failure_count += 1

        # A failed trial call while half-open reopens immediately.
        if self._state == CircuitBreakerState.HALF_OPEN or self._failure_count >= self.failure_threshold:
            self._state = CircuitBreakerState.OPEN
            self._opened_at = self._clock()
            self.logger.warning(
                "Circuit breaker opened due to failures",
                failure_count=self._failure_count,
                threshold=self.failure_threshold
            )

    def get_state(self) -> Dict[str, Any]:
        """Get current circuit breaker state."""
        return {
            "name": self.name,
            "state": self._state.value,
            "failure_count": self._failure_count,
            "failure_threshold": self.failure_threshold,
            "recovery_timeout": self.recovery_timeout
        }
