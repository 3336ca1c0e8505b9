"""Per-peer circuit breaker with exponential backoff."""

from __future__ import annotations

import time
from enum import Enum
from typing import Callable


class BreakerState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Opens after repeated consecutive failures, doubling its cooldown each time."""

    FAILURE_THRESHOLD = 5
    MIN_COOLDOWN = 5.0
    MAX_COOLDOWN = 60.0

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._state = BreakerState.CLOSED
        self._consecutive_failures = 0
        self._last_failure_time: float | None = None
        self._cooldown = self.MIN_COOLDOWN

    def state(self) -> BreakerState:
        """Current state, reporting half-open once the cooldown has elapsed."""
        if self._state is BreakerState.OPEN:
            if (
                self._last_failure_time is not None
                and self._clock() - self._last_failure_time >= self._cooldown
            ):
                return BreakerState.HALF_OPEN
            return BreakerState.OPEN
        return self._state

    def allow_request(self) -> bool:
        """Whether a request may go through."""
        return self.state() is not BreakerState.OPEN

    def record_success(self) -> None:
        """Reset to closed with the minimum cooldown."""
        self._consecutive_failures = 0
        self._state = BreakerState.CLOSED
        self._cooldown = self.MIN_COOLDOWN

    def record_failure(self) -> None:
        """Count a failure; trips the breaker once the threshold is reached."""
        self._consecutive_failures += 1
        self._last_failure_time = self._clock()
        if self._consecutive_failures >= self.FAILURE_THRESHOLD:
            self._state = BreakerState.OPEN
            self._cooldown = min(self._cooldown * 2, self.MAX_COOLDOWN)

    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    def cooldown(self) -> float:
        """Current cooldown in seconds."""
        return self._cooldown