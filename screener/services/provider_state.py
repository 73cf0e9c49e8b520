"""Per-provider mutable state: circuit-breaker counters and call windows.

One ``ProviderState`` exists per provider per running process, held by a
``ProviderRegistry`` that the pipeline owns and passes down.  All
mutation happens on the event loop thread, so no locking is needed; an
embedding that drives the pipeline from several OS threads must guard
these objects itself.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable

from screener.config import CIRCUIT_BREAKER_COOLDOWN_SECONDS, CIRCUIT_BREAKER_THRESHOLD

logger = logging.getLogger(__name__)


@dataclass
class ProviderState:
    """Failure counter + recent call timestamps for one provider.

    The breaker is open while ``failures >= threshold``.  With
    ``cooldown == 0`` an open breaker stays open until some success
    resets the counter; with a positive cooldown a single half-open
    probe is let through once the cooldown has elapsed since the last
    failure.
    """

    name: str
    threshold: int = CIRCUIT_BREAKER_THRESHOLD
    cooldown: float = CIRCUIT_BREAKER_COOLDOWN_SECONDS
    clock: Callable[[], float] = time.monotonic

    failures: int = 0
    last_failure_at: float | None = None
    call_timestamps: deque[float] = field(default_factory=deque)
    total_calls: int = 0
    _probe_in_flight: bool = field(default=False, repr=False)

    @property
    def is_open(self) -> bool:
        return self.failures >= self.threshold

    def allows_call(self) -> bool:
        """Whether the orchestrator may attempt this provider right now."""
        if not self.is_open:
            return True
        if self.cooldown <= 0 or self.last_failure_at is None or self._probe_in_flight:
            return False
        if self.clock() - self.last_failure_at >= self.cooldown:
            logger.info("[%s] breaker half-open, allowing probe", self.name)
            self._probe_in_flight = True
            return True
        return False

    def record_success(self) -> None:
        if self.is_open:
            logger.info("[%s] breaker closed after success", self.name)
        self.failures = 0
        self.last_failure_at = None
        self._probe_in_flight = False

    def record_failure(self) -> None:
        self.failures += 1
        self.last_failure_at = self.clock()
        self._probe_in_flight = False
        if self.failures == self.threshold:
            logger.warning("[%s] breaker OPEN after %d failures", self.name, self.failures)

    def record_call(self) -> None:
        self.total_calls += 1

    def snapshot(self) -> dict:
        return {
            "failures": self.failures,
            "open": self.is_open,
            "calls": self.total_calls,
            "calls_in_window": len(self.call_timestamps),
        }


class ProviderRegistry:
    """Process-wide collection of provider states keyed by provider name."""

    def __init__(
        self,
        threshold: int = CIRCUIT_BREAKER_THRESHOLD,
        cooldown: float = CIRCUIT_BREAKER_COOLDOWN_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.threshold = threshold
        self.cooldown = cooldown
        self.clock = clock
        self._states: dict[str, ProviderState] = {}

    def state(self, name: str) -> ProviderState:
        """Return the state for *name*, creating it on first use."""
        if name not in self._states:
            self._states[name] = ProviderState(
                name=name,
                threshold=self.threshold,
                cooldown=self.cooldown,
                clock=self.clock,
            )
        return self._states[name]

    def reset(self, name: str) -> bool:
        """Manually close a provider's breaker. Returns False if unknown."""
        state = self._states.get(name)
        if state is None:
            return False
        state.record_success()
        return True

    def failure_counts(self) -> dict[str, int]:
        return {name: s.failures for name, s in self._states.items()}

    def snapshot(self) -> dict[str, dict]:
        return {name: s.snapshot() for name, s in self._states.items()}
