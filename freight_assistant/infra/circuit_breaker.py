"""Circuit breaker guarding end-to-end assistant runs."""

import threading
import time
from enum import Enum
from typing import Callable, Optional

from freight_assistant.infra.config import config


class CircuitState(str, Enum):
    """Circuit breaker states."""
    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, reject requests


class RunCircuitBreaker:
    """
    Process-wide failure counter for assistant runs.

    A run that fails end-to-end counts once, regardless of how many model or
    tool calls it made. After ``failure_threshold`` failures new runs are
    rejected until ``cooldown_seconds`` have passed since the last recorded
    failure; the counter then resets and runs resume.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        cooldown_seconds: float = 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize circuit breaker.

        Args:
            failure_threshold: Number of failures before opening circuit
            cooldown_seconds: Seconds after the last failure before runs resume
            clock: Monotonic time source (injectable for tests)
        """
        self.failure_threshold = failure_threshold
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._lock = threading.Lock()

        self.failure_count = 0
        self.last_failure_time: Optional[float] = None

    @property
    def state(self) -> CircuitState:
        with self._lock:
            if self.failure_count >= self.failure_threshold:
                return CircuitState.OPEN
            return CircuitState.CLOSED

    def can_execute(self) -> bool:
        """Return True unless the threshold is reached and the cooldown is still running."""
        with self._lock:
            if self.failure_count < self.failure_threshold:
                return True

            elapsed = self._clock() - (self.last_failure_time or 0.0)
            if elapsed >= self.cooldown_seconds:
                self.failure_count = 0
                self.last_failure_time = None
                return True
            return False

    def retry_after(self) -> int:
        """Seconds until the circuit closes again (0 when closed)."""
        with self._lock:
            if self.failure_count < self.failure_threshold or self.last_failure_time is None:
                return 0
            remaining = self.cooldown_seconds - (self._clock() - self.last_failure_time)
            return max(0, int(remaining))

    def record_success(self) -> None:
        with self._lock:
            self.failure_count = 0
            self.last_failure_time = None

    def record_failure(self) -> None:
        with self._lock:
            self.failure_count += 1
            self.last_failure_time = self._clock()


# Global circuit breaker shared by every request in the process
assistant_circuit_breaker = RunCircuitBreaker(
    failure_threshold=config.CIRCUIT_FAILURE_THRESHOLD,
    cooldown_seconds=config.CIRCUIT_COOLDOWN_SECONDS,
)
