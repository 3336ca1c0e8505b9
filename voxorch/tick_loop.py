"""Fixed-rate game loop that runs named systems in order."""

from __future__ import annotations

import logging
import math
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable

logger = logging.getLogger(__name__)

_HISTORY_LEN = 100


@dataclass
class TickSystem:
    """A named function run once per tick."""

    name: str
    func: Callable[[], None]


class TickLoop:
    """Drives the 20 Hz loop and tracks tick timing."""

    def __init__(self, clock: Callable[[], float] = time.perf_counter) -> None:
        self._clock = clock
        self._systems: list[TickSystem] = []
        self._tick_interval = 0.05
        self._tick_count = 0
        self.last_tick_ms = 0.0
        self._tick_history: deque[float] = deque(maxlen=_HISTORY_LEN)

    def add_system(self, name: str, func: Callable[[], None]) -> None:
        """Register a system; systems run in registration order."""
        self._systems.append(TickSystem(str(name), func))

    def tick(self) -> None:
        """Run every system once and record how long it took."""
        tick_start = self._clock()
        for system in self._systems:
            sys_start = self._clock()
            system.func()
            logger.debug(
                "system %s took %.0f us", system.name, (self._clock() - sys_start) * 1e6
            )

        self.last_tick_ms = (self._clock() - tick_start) * 1000.0
        self._tick_count += 1
        self._tick_history.append(self.last_tick_ms)

        budget_ms = self._tick_interval * 1000.0
        if self.last_tick_ms > budget_ms:
            logger.warning(
                "tick %d exceeded budget: %.3f ms > %.3f ms",
                self._tick_count,
                self.last_tick_ms,
                budget_ms,
            )

    def interval(self) -> float:
        """Tick interval in seconds (0.05 for 20 Hz)."""
        return self._tick_interval

    def tick_count(self) -> int:
        return self._tick_count

    def p99_tick_ms(self) -> float:
        """p99 tick duration over the last 100 ticks, 0.0 with no history."""
        if not self._tick_history:
            return 0.0
        ordered = sorted(self._tick_history)
        index = math.ceil(len(ordered) * 0.99)
        return ordered[min(index, len(ordered) - 1)]