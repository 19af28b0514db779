"""
Circuit breaker guarding calls to the credential store.
"""
import logging
import time
from enum import Enum
from typing import Awaitable, Callable, Optional, TypeVar
from app.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    """Circuit breaker states."""
    CLOSED = "closed"  # Store calls pass through
    OPEN = "open"  # Store calls fail immediately
    HALF_OPEN = "half_open"  # Probing whether the store recovered


class CircuitBreakerOpenException(Exception):
    """Exception raised when circuit breaker is open."""

    def __init__(self, message: str = "Circuit breaker is open"):
        self.message = message
        super().__init__(self.message)


class CircuitBreaker:
    """
    Counts consecutive store failures and short-circuits calls once the
    store looks down.

    - CLOSED: calls pass through; failure_threshold consecutive failures open it
    - OPEN: calls raise CircuitBreakerOpenException until recovery_timeout passes
    - HALF_OPEN: up to half_open_max_calls trial calls; enough successes close it,
      any failure reopens it

    Only exceptions listed in counted_exceptions count as failures, so a
    duplicate-row error does not trip the breaker.
    """

    def __init__(
        self,
        name: str = "credential_store",
        failure_threshold: Optional[int] = None,
        recovery_timeout: Optional[float] = None,
        half_open_max_calls: Optional[int] = None,
        counted_exceptions: tuple = (Exception,),
        clock: Optional[Callable[[], float]] = None
    ):
        self.name = name
        self.failure_threshold = failure_threshold or settings.CIRCUIT_BREAKER_FAILURE_THRESHOLD
        self.recovery_timeout = recovery_timeout or settings.CIRCUIT_BREAKER_RECOVERY_TIMEOUT
        self.half_open_max_calls = half_open_max_calls or settings.CIRCUIT_BREAKER_HALF_OPEN_MAX_CALLS
        self.counted_exceptions = counted_exceptions
        self._clock = clock or time.monotonic

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._half_open_calls = 0
        self._opened_at: Optional[float] = None

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    def _transition(self, state: CircuitState) -> None:
        self._state = state
        self._success_count = 0
        self._half_open_calls = 0
        if state == CircuitState.CLOSED:
            self._failure_count = 0
            self._opened_at = None
        elif state == CircuitState.OPEN:
            self._opened_at = self._clock()

    def _before_call(self) -> None:
        if self._state == CircuitState.OPEN:
            if self._clock() - (self._opened_at or 0.0) < self.recovery_timeout:
                raise CircuitBreakerOpenException(
                    f"Circuit breaker '{self.name}' is open. Retry after {self.recovery_timeout}s"
                )
            self._transition(CircuitState.HALF_OPEN)
            logger.info(f"Circuit breaker '{self.name}' entering half-open state")

        if self._state == CircuitState.HALF_OPEN:
            if self._half_open_calls >= self.half_open_max_calls:
                raise CircuitBreakerOpenException(
                    f"Circuit breaker '{self.name}' half-open call limit reached"
                )
            self._half_open_calls += 1

    def _on_success(self) -> None:
        if self._state == CircuitState.HALF_OPEN:
            self._success_count += 1
            if self._success_count >= self.half_open_max_calls:
                self._transition(CircuitState.CLOSED)
                logger.info(f"Circuit breaker '{self.name}' closed after successful recovery")
        else:
            self._failure_count = 0

    def _on_failure(self) -> None:
        self._failure_count += 1
        if self._state == CircuitState.HALF_OPEN:
            self._transition(CircuitState.OPEN)
            logger.warning(f"Circuit breaker '{self.name}' reopened after failure in half-open state")
        elif self._state == CircuitState.CLOSED and self._failure_count >= self.failure_threshold:
            self._transition(CircuitState.OPEN)
            logger.warning(f"Circuit breaker '{self.name}' opened after {self._failure_count} failures")

    async def call(self, func: Callable[..., Awaitable[T]], *args, **kwargs) -> T:
        """
        Await func through the breaker.

        Raises:
            CircuitBreakerOpenException: If the circuit is open
            Exception: Whatever func raises
        """
        self._before_call()
        try:
            result = await func(*args, **kwargs)
        except self.counted_exceptions:
            self._on_failure()
            raise
        self._on_success()
        return result

    def reset(self) -> None:
        """Manually reset the circuit breaker to closed state."""
        self._transition(CircuitState.CLOSED)
        logger.info(f"Circuit breaker '{self.name}' manually reset")

    def get_status(self) -> dict:
        return {
            "name": self.name,
            "state": self._state.value,
            "failure_count": self._failure_count,
            "failure_threshold": self.failure_threshold,
            "recovery_timeout": self.recovery_timeout,
        }
