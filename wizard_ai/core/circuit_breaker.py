"""
Circuit breaker guarding the remote AI service.

- Opens after `failure_threshold` consecutive failed remote calls (default 5)
- Stays open for `open_duration_seconds` (default 5 minutes); callers fall
  back without touching the network or consuming rate-limit quota
- Half-open: admits up to `half_open_attempts` probe calls; one success
  closes the circuit, one failure re-opens it
"""
import time
from enum import Enum
from threading import Lock
from typing import Callable, Optional

from wizard_ai.core.logging import get_logger
from wizard_ai.core.metrics import update_circuit_breaker_state

logger = get_logger(__name__)


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, bypass service
    HALF_OPEN = "half_open"  # Testing recovery


class CircuitBreaker:
    """
    Consecutive-failure circuit breaker.

    The orchestrator asks allow_request() before a remote call and reports the
    outcome with record_success() / record_failure().
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        open_duration_seconds: float = 300.0,
        half_open_attempts: int = 3,
        clock: Callable[[], float] = time.time,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.open_duration_seconds = open_duration_seconds
        self.half_open_attempts = half_open_attempts
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._lock = Lock()
        self._consecutive_failures = 0
        self._opened_at: Optional[float] = None
        self._half_open_in_flight = 0
        update_circuit_breaker_state(self.name, self._state.value)

    @property
    def state(self) -> CircuitState:
        """Get current circuit breaker state."""
        with self._lock:
            self._update_state()
            return self._state

    def _set_state(self, state: CircuitState) -> None:
        self._state = state
        update_circuit_breaker_state(self.name, state.value)

    def _update_state(self) -> None:
        # Caller holds the lock.
        if self._state != CircuitState.OPEN or self._opened_at is None:
            return
        if self._clock() - self._opened_at >= self.open_duration_seconds:
            self._set_state(CircuitState.HALF_OPEN)
            self._half_open_in_flight = 0
            logger.info(
                "circuit_breaker_half_open",
                circuit_breaker=self.name,
                state="half_open",
            )

    def allow_request(self) -> bool:
        """
        Decide whether a remote call may be attempted now.

        In HALF_OPEN each admitted call counts as a probe.
        """
        with self._lock:
            self._update_state()
            if self._state == CircuitState.CLOSED:
                return True
            if self._state == CircuitState.OPEN:
                return False
            if self._half_open_in_flight < self.half_open_attempts:
                self._half_open_in_flight += 1
                return True
            return False

    def release(self) -> None:
        """Hand back a half-open probe slot that never reached the service."""
        with self._lock:
            if self._state == CircuitState.HALF_OPEN and self._half_open_in_flight > 0:
                self._half_open_in_flight -= 1

    def record_success(self) -> None:
        """Record a successful remote call."""
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                logger.info(
                    "circuit_breaker_closed",
                    circuit_breaker=self.name,
                )
            self._set_state(CircuitState.CLOSED)
            self._consecutive_failures = 0
            self._opened_at = None
            self._half_open_in_flight = 0

    def record_failure(self) -> None:
        """Record a failed remote call."""
        with self._lock:
            self._consecutive_failures += 1

            if self._state == CircuitState.HALF_OPEN:
                self._set_state(CircuitState.OPEN)
                self._opened_at = self._clock()
                self._half_open_in_flight = 0
                logger.warning(
                    "circuit_breaker_reopened",
                    circuit_breaker=self.name,
                    consecutive_failures=self._consecutive_failures,
                )
            elif (
                self._state == CircuitState.CLOSED
                and self._consecutive_failures >= self.failure_threshold
            ):
                self._set_state(CircuitState.OPEN)
                self._opened_at = self._clock()
                logger.warning(
                    "circuit_breaker_opened",
                    circuit_breaker=self.name,
                    consecutive_failures=self._consecutive_failures,
                    threshold=self.failure_threshold,
                )

    def reset(self) -> None:
        """Force the circuit closed."""
        with self._lock:
            self._set_state(CircuitState.CLOSED)
            self._consecutive_failures = 0
            self._opened_at = None
            self._half_open_in_flight = 0

    def get_metrics(self) -> dict:
        """Get circuit breaker metrics for monitoring."""
        with self._lock:
            self._update_state()
            return {
                "name": self.name,
                "state": self._state.value,
                "consecutive_failures": self._consecutive_failures,
                "failure_threshold": self.failure_threshold,
                "opened_at": self._opened_at,
                "half_open_in_flight": self._half_open_in_flight,
            }
