"""Resource-protection primitives shared by every engine component.

State machine of CircuitBreaker:
    CLOSED -> (consecutive failures >= threshold) -> OPEN
    OPEN -> (cooldown elapsed) -> HALF_OPEN
    HALF_OPEN -> (success) -> CLOSED
    HALF_OPEN -> (failure) -> OPEN
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from enum import Enum
from typing import Any, TypeVar

logger = logging.getLogger("heatmapper.safety")

T = TypeVar("T")
Clock = Callable[[], float]


def _default_clock() -> float:
    return time.monotonic() * 1000.0


class Throttle:
    """Leading-edge throttle: run now, drop every further call inside the interval."""

    def __init__(self, fn: Callable[[], Any], interval_ms: float, *, clock: Clock | None = None) -> None:
        self._fn = fn
        self.interval_ms = max(0.0, float(interval_ms))
        self._clock = clock or _default_clock
        self._last_run: float | None = None
        self.dropped = 0

    def __call__(self) -> bool:
        now = self._clock()
        if self._last_run is not None and now - self._last_run < self.interval_ms:
            self.dropped += 1
            return False
        self._last_run = now
        self._fn()
        return True

    def reset(self) -> None:
        self._last_run = None


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Suppress a failing operation for a cooldown window after repeated failures.

    Failures are re-raised to the caller that caused them (after bookkeeping); only calls
    short-circuited while OPEN return None without running the operation.
    """

    def __init__(
        self,
        failure_threshold: int = 3,
        cooldown_ms: float = 30_000.0,
        *,
        name: str = "default",
        clock: Clock | None = None,
    ) -> None:
        self.failure_threshold = max(1, int(failure_threshold))
        self.cooldown_ms = max(0.0, float(cooldown_ms))
        self.name = name
        self._clock = clock or _default_clock
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._opened_at: float | None = None
        self.short_circuited = 0

    @property
    def state(self) -> CircuitState:
        if self._state is CircuitState.OPEN and self._cooldown_elapsed():
            return CircuitState.HALF_OPEN
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failures

    def _cooldown_elapsed(self) -> bool:
        return self._opened_at is not None and self._clock() - self._opened_at >= self.cooldown_ms

    def allow_request(self) -> bool:
        if self._state is CircuitState.OPEN:
            if not self._cooldown_elapsed():
                return False
            self._state = CircuitState.HALF_OPEN
        return True

    def record_success(self) -> None:
        if self._state is CircuitState.HALF_OPEN:
            logger.info("circuit closed breaker=%s", self.name)
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._opened_at = None

    def record_failure(self) -> None:
        self._failures += 1
        if self._state is CircuitState.HALF_OPEN or self._failures >= self.failure_threshold:
            self._state = CircuitState.OPEN
            self._opened_at = self._clock()
            logger.warning(
                "circuit opened breaker=%s failures=%d cooldown_ms=%.0f",
                self.name,
                self._failures,
                self.cooldown_ms,
            )

    def execute(self, fn: Callable[[], T]) -> T | None:
        if not self.allow_request():
            self.short_circuited += 1
            return None
        try:
            result = fn()
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result

    def reset(self) -> None:
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._opened_at = None

    def get_stats(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "failures": self._failures,
            "shortCircuited": self.short_circuited,
        }


def safe_execute(
    fn: Callable[[], T],
    context: str = "unknown operation",
    *,
    slow_ms: float = 5.0,
    clock: Clock | None = None,
) -> T | None:
    """Run `fn` at a host-callback boundary: log and swallow errors, flag slow runs."""
    now = clock or _default_clock
    started = now()
    try:
        result = fn()
    except Exception as exc:  # noqa: BLE001
        logger.warning("error in %s after %.1fms: %s", context, now() - started, exc)
        return None
    duration = now() - started
    if duration > slow_ms:
        logger.warning("slow operation %s: %.1fms", context, duration)
    return result


__all__ = ["CircuitBreaker", "CircuitState", "Throttle", "safe_execute"]
