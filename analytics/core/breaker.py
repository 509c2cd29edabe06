"""
Circuit breaker for the cache backend.

CLOSED: calls pass through; consecutive failures are counted.
OPEN: calls are skipped without touching the backend until the reset
timeout elapses.
HALF_OPEN: a single trial call is let through; success closes the
breaker, failure re-opens it for another full timeout.
"""

from __future__ import annotations

import time
from enum import Enum
from typing import Callable

import structlog

log = structlog.get_logger()


class BreakerState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Consecutive-failure breaker with a cool-down."""

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        reset_timeout: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self._clock = clock
        self._state = BreakerState.CLOSED
        self._failures = 0
        self._opened_at = 0.0
        self._trial_in_flight = False

    @property
    def state(self) -> BreakerState:
        if self._state is BreakerState.OPEN and self._cooled_down():
            return BreakerState.HALF_OPEN
        return self._state

    @property
    def failures(self) -> int:
        return self._failures

    def _cooled_down(self) -> bool:
        return self._clock() - self._opened_at >= self.reset_timeout

    def allow(self) -> bool:
        """Return True if a backend call may be attempted now."""
        if self._state is BreakerState.CLOSED:
            return True
        if self._state is BreakerState.OPEN:
            if not self._cooled_down():
                return False
            self._state = BreakerState.HALF_OPEN
            self._trial_in_flight = False
        # HALF_OPEN: one trial at a time
        if self._trial_in_flight:
            return False
        self._trial_in_flight = True
        return True

    def release(self) -> None:
        """Abandon an in-flight trial without counting it either way."""
        self._trial_in_flight = False

    def record_success(self) -> None:
        if self._state is not BreakerState.CLOSED:
            log.info("cache.breaker_closed", breaker=self.name)
        self._state = BreakerState.CLOSED
        self._failures = 0
        self._trial_in_flight = False

    def record_failure(self) -> None:
        self._failures += 1
        self._trial_in_flight = False
        if self._state is BreakerState.HALF_OPEN or self._failures >= self.failure_threshold:
            if self._state is not BreakerState.OPEN:
                log.warning(
                    "cache.breaker_opened",
                    breaker=self.name,
                    failures=self._failures,
                    reset_timeout=self.reset_timeout,
                )
            self._state = BreakerState.OPEN
            self._opened_at = self._clock()
