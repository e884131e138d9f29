"""
Circuit breaker state machine for the simulated downstream dependency.

State machine: CLOSED -> OPEN -> HALF_OPEN -> CLOSED.

* **CLOSED** -- normal operation; consecutive failures are counted.
* **OPEN** -- new requests fail fast until the cooldown elapses.
* **HALF_OPEN** -- traffic flows again; the first observed success closes
  the breaker, any failure re-opens it and restarts the cooldown.
"""

import logging
from enum import Enum

from .distributions import Milliseconds

logger = logging.getLogger(__name__)


class BreakerState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Consecutive-failure circuit breaker driven by simulated time.

    The failure counter does not decay on success while closed; it is only
    cleared when the breaker closes or is reset.

    Attributes:
        state: Current breaker state.
        failure_count: Failures recorded since the breaker last closed.
        last_trip_time: When the breaker last transitioned into OPEN.
    """

    def __init__(self) -> None:
        self.state = BreakerState.CLOSED
        self.failure_count = 0
        self.last_trip_time = Milliseconds(0)

    @property
    def is_open(self) -> bool:
        return self.state == BreakerState.OPEN

    def update(self, now: Milliseconds, enabled: bool, cooldown_ms: float) -> None:
        """Apply the per-tick cooldown check.

        Disabling the breaker removes it entirely: it is forced closed with
        a zero counter every tick.
        """
        if not enabled:
            self.state = BreakerState.CLOSED
            self.failure_count = 0
            return
        if self.state == BreakerState.OPEN and now - self.last_trip_time >= cooldown_ms:
            self.state = BreakerState.HALF_OPEN
            logger.info(
                "circuit_breaker_half_open after %.0f ms (failures=%d)",
                now - self.last_trip_time,
                self.failure_count,
            )

    def record_failure(self, now: Milliseconds, threshold: int) -> None:
        """Count a failed or timed-out attempt, tripping when warranted."""
        self.failure_count += 1
        if self.state == BreakerState.HALF_OPEN or self.failure_count >= threshold:
            if self.state != BreakerState.OPEN:
                logger.info(
                    "circuit_breaker_open at %.0f ms from %s (failures=%d)",
                    now,
                    self.state.value,
                    self.failure_count,
                )
            self.state = BreakerState.OPEN
            self.last_trip_time = now

    def record_success(self) -> None:
        """A successful attempt heals a half-open breaker."""
        if self.state == BreakerState.HALF_OPEN:
            logger.info("circuit_breaker_closed after probe success")
            self.state = BreakerState.CLOSED
            self.failure_count = 0

    def reset(self) -> None:
        self.state = BreakerState.CLOSED
        self.failure_count = 0
        self.last_trip_time = Milliseconds(0)

    def __repr__(self) -> str:
        return f"CircuitBreaker({self.state.value}, failures={self.failure_count})"
