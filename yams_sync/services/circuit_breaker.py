"""Circuit breaker guarding calls to the remote bucket.

States follow the usual closed/open/half-open cycle:

- CLOSED: calls run. Counts are cleared every ``counter_reset_interval``
  seconds. A failure trips the breaker when the failure ratio reaches
  ``max_failure_ratio`` or the consecutive failures exceed
  ``max_consecutive_failures``.
- OPEN: calls are rejected with ``CircuitOpenError`` until ``open_timeout``
  has elapsed, then the breaker moves to HALF_OPEN.
- HALF_OPEN: a single probe call runs; concurrent calls are rejected with
  ``TooManyRequestsError``. A success closes the breaker and a failure opens
  it again.

Thread-safety: safe under asyncio's single-threaded cooperative model. State
checks and mutations happen synchronously around the awaited call.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any, TypeVar

from yams_sync.exceptions import YamsError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(StrEnum):
    """Circuit breaker state."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitOpenError(YamsError):
    """The breaker is open and the call was not executed."""


class TooManyRequestsError(YamsError):
    """The breaker is half-open and its probe call is still in flight."""


@dataclass
class Counts:
    """Request counters for the current generation."""

    requests: int = 0
    total_successes: int = 0
    total_failures: int = 0
    consecutive_successes: int = 0
    consecutive_failures: int = 0

    def on_request(self) -> None:
        self.requests += 1

    def on_success(self) -> None:
        self.total_successes += 1
        self.consecutive_successes += 1
        self.consecutive_failures = 0

    def on_failure(self) -> None:
        self.total_failures += 1
        self.consecutive_failures += 1
        self.consecutive_successes = 0

    def clear(self) -> None:
        self.requests = 0
        self.total_successes = 0
        self.total_failures = 0
        self.consecutive_successes = 0
        self.consecutive_failures = 0


class CircuitBreaker:
    """Failure-ratio and consecutive-failure circuit breaker."""

    def __init__(
        self,
        name: str,
        *,
        max_consecutive_failures: int = 10,
        max_failure_ratio: float = 0.5,
        open_timeout: float = 30.0,
        counter_reset_interval: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if not 0.0 <= max_failure_ratio <= 1.0:
            raise ValueError("max_failure_ratio must be within [0, 1]")
        self.name = name
        self.max_consecutive_failures = max_consecutive_failures
        self.max_failure_ratio = max_failure_ratio
        self.open_timeout = open_timeout
        self.counter_reset_interval = counter_reset_interval
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._generation = 0
        self.counts = Counts()
        self._expiry = 0.0
        self._new_generation(self._clock())

    @property
    def state(self) -> CircuitState:
        """Current state, after applying any elapsed timeout."""
        state, _ = self._current_state(self._clock())
        return state

    async def call(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Run ``fn`` through the breaker and return its result.

        Raises ``CircuitOpenError`` or ``TooManyRequestsError`` without
        running ``fn`` when the breaker rejects the call; otherwise re-raises
        whatever ``fn`` raises after recording the failure.
        """
        generation = self._before_request()
        try:
            result = await fn(*args, **kwargs)
        except BaseException:
            self._after_request(generation, success=False)
            raise
        self._after_request(generation, success=True)
        return result

    def _before_request(self) -> int:
        now = self._clock()
        state, generation = self._current_state(now)
        if state is CircuitState.OPEN:
            raise CircuitOpenError(f"circuit breaker {self.name!r} is open")
        if state is CircuitState.HALF_OPEN and self.counts.requests >= 1:
            raise TooManyRequestsError(f"circuit breaker {self.name!r} is half-open")
        self.counts.on_request()
        return generation

    def _after_request(self, before: int, *, success: bool) -> None:
        now = self._clock()
        state, generation = self._current_state(now)
        if generation != before:
            return
        if success:
            self._on_success(state, now)
        else:
            self._on_failure(state, now)

    def _on_success(self, state: CircuitState, now: float) -> None:
        self.counts.on_success()
        if state is CircuitState.HALF_OPEN:
            self._set_state(CircuitState.CLOSED, now)

    def _on_failure(self, state: CircuitState, now: float) -> None:
        if state is CircuitState.CLOSED:
            self.counts.on_failure()
            if self._ready_to_trip():
                self._set_state(CircuitState.OPEN, now)
        elif state is CircuitState.HALF_OPEN:
            self._set_state(CircuitState.OPEN, now)

    def _ready_to_trip(self) -> bool:
        counts = self.counts
        if counts.consecutive_failures > self.max_consecutive_failures:
            return True
        return (
            counts.requests > 0
            and counts.total_failures / counts.requests >= self.max_failure_ratio
        )

    def _current_state(self, now: float) -> tuple[CircuitState, int]:
        if self._state is CircuitState.CLOSED:
            if self._expiry and self._expiry < now:
                self._new_generation(now)
        elif self._state is CircuitState.OPEN:
            if self._expiry < now:
                self._set_state(CircuitState.HALF_OPEN, now)
        return self._state, self._generation

    def _set_state(self, state: CircuitState, now: float) -> None:
        if self._state is state:
            return
        previous = self._state
        self._state = state
        self._new_generation(now)
        logger.warning("Circuit breaker %s: %s -> %s", self.name, previous, state)

    def _new_generation(self, now: float) -> None:
        self._generation += 1
        self.counts.clear()
        if self._state is CircuitState.CLOSED:
            interval = self.counter_reset_interval
            self._expiry = now + interval if interval > 0 else 0.0
        elif self._state is CircuitState.OPEN:
            self._expiry = now + self.open_timeout
        else:
            self._expiry = 0.0
