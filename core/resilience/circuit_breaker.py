"""
Circuit Breaker Pattern Implementation

Per-instance failure detection with time-based recovery. After
`failure_threshold` consecutive failures the circuit opens for
`cooldown` seconds; the first availability check after the cooldown
closes it again optimistically (there is no half-open trial phase).

The breaker holds no lock of its own: callers that share an instance
between tasks serialize access (see ServiceRegistry).
"""

import time
from enum import Enum
from typing import Callable, Optional
import structlog

from core.monitoring.metrics import circuit_trips_total

logger = structlog.get_logger("circuit-breaker")

Clock = Callable[[], float]

DEFAULT_FAILURE_THRESHOLD = 3
DEFAULT_COOLDOWN_SECONDS = 10.0


class CircuitState(Enum):
    """Circuit breaker states"""
    CLOSED = "closed"      # Normal operation
    OPEN = "open"          # Tripped, skip until cooldown elapses


class CircuitBreaker:
    """
    Circuit breaker guarding a single service instance.

    Usage:
        breaker = CircuitBreaker(failure_threshold=3, cooldown=10)

        if breaker.allow_request():
            try:
                await call()
                breaker.record_success()
            except httpx.HTTPError:
                breaker.record_failure()
    """

    def __init__(
        self,
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
        cooldown: float = DEFAULT_COOLDOWN_SECONDS,
        clock: Clock = time.monotonic,
        name: Optional[str] = None
    ):
        """
        Args:
            failure_threshold: Consecutive failures before opening circuit
            cooldown: Seconds the circuit stays open once tripped
            clock: Monotonic time source, injectable for tests
            name: Label used in log lines
        """
        self.failure_threshold = failure_threshold
        self.cooldown = cooldown
        self.clock = clock
        self.name = name

        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.open_until: Optional[float] = None

    @property
    def is_closed(self) -> bool:
        return self.state == CircuitState.CLOSED

    def allow_request(self) -> bool:
        """
        Check if a request may be routed here.

        An open circuit whose cooldown has elapsed is closed as a side
        effect and the failure counter reset.
        """
        if self.state == CircuitState.CLOSED:
            return True

        if self.clock() >= (self.open_until or 0.0):
            self.state = CircuitState.CLOSED
            self.failure_count = 0
            self.open_until = None
            logger.info("Circuit breaker CLOSED (cooldown elapsed)", instance=self.name)
            return True

        return False

    def record_success(self):
        """Record a successful call"""
        self.failure_count = 0
        self.state = CircuitState.CLOSED
        self.open_until = None

    def record_failure(self):
        """Record a failed call"""
        if self.state == CircuitState.OPEN:
            # Already tripped; failures do not extend the cooldown.
            return

        self.failure_count += 1

        if self.failure_count >= self.failure_threshold:
            self.state = CircuitState.OPEN
            self.open_until = self.clock() + self.cooldown
            circuit_trips_total.labels(instance=self.name or "unnamed").inc()
            logger.warning(
                "Circuit breaker OPEN",
                instance=self.name,
                failures=self.failure_count,
                threshold=self.failure_threshold,
                cooldown=self.cooldown
            )

    def time_until_reset(self) -> float:
        """Seconds remaining until the circuit may close"""
        if self.state == CircuitState.CLOSED or self.open_until is None:
            return 0.0
        return max(0.0, self.open_until - self.clock())

    def get_state(self) -> dict:
        """Get current circuit breaker state"""
        return {
            "state": self.state.value,
            "failure_count": self.failure_count,
            "time_until_reset": self.time_until_reset() if self.state == CircuitState.OPEN else None
        }
