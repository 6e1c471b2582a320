"""Single-threaded cooperative scheduler.

Everything the engine does runs inside `run_pending()`, called by whatever loop hosts the
engine (the CDP pump in main.py, or a test). There is no parallelism: timers, intervals,
next-tick callbacks and idle slots are just ordered queues drained on that one thread.

Times are milliseconds on a monotonic clock. Tests inject a manual clock.
"""

from __future__ import annotations

import heapq
import itertools
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field

logger = logging.getLogger("heatmapper.scheduler")

Callback = Callable[[], object]


def monotonic_ms() -> float:
    return time.monotonic() * 1000.0


@dataclass(eq=False)
class TimerHandle:
    when: float
    fn: Callback
    interval: float | None = None
    idle: bool = False
    cancelled: bool = False
    label: str = ""

    def cancel(self) -> None:
        self.cancelled = True


@dataclass(order=True)
class _Entry:
    when: float
    seq: int
    handle: TimerHandle = field(compare=False)


class Scheduler:
    def __init__(self, clock: Callable[[], float] | None = None, *, idle_supported: bool = True) -> None:
        self._clock = clock or monotonic_ms
        self.idle_supported = idle_supported
        self._heap: list[_Entry] = []
        self._idle: list[TimerHandle] = []
        self._seq = itertools.count()

    def now(self) -> float:
        return float(self._clock())

    def _push(self, handle: TimerHandle) -> TimerHandle:
        heapq.heappush(self._heap, _Entry(handle.when, next(self._seq), handle))
        return handle

    def call_later(self, delay_ms: float, fn: Callback, *, label: str = "") -> TimerHandle:
        return self._push(TimerHandle(when=self.now() + max(0.0, float(delay_ms)), fn=fn, label=label))

    def call_soon(self, fn: Callback, *, label: str = "") -> TimerHandle:
        return self.call_later(0.0, fn, label=label)

    def call_every(self, interval_ms: float, fn: Callback, *, label: str = "") -> TimerHandle:
        interval = max(1.0, float(interval_ms))
        return self._push(TimerHandle(when=self.now() + interval, fn=fn, interval=interval, label=label))

    def request_idle(self, fn: Callback, timeout_ms: float = 100.0, *, label: str = "") -> TimerHandle:
        """Run `fn` at the next idle slot, or after `timeout_ms` at the latest.

        Without idle support this degrades to a next-tick callback.
        """
        if not self.idle_supported:
            return self.call_soon(fn, label=label)
        handle = TimerHandle(when=self.now() + max(0.0, float(timeout_ms)), fn=fn, idle=True, label=label)
        self._idle.append(handle)
        return handle

    def cancel(self, handle: TimerHandle | None) -> None:
        if handle is not None:
            handle.cancel()

    def cancel_all(self) -> None:
        for entry in self._heap:
            entry.handle.cancel()
        for handle in self._idle:
            handle.cancel()
        self._heap.clear()
        self._idle.clear()

    @property
    def pending(self) -> int:
        return sum(1 for e in self._heap if not e.handle.cancelled) + sum(1 for h in self._idle if not h.cancelled)

    def next_deadline(self) -> float | None:
        whens = [e.when for e in self._heap if not e.handle.cancelled]
        whens.extend(h.when for h in self._idle if not h.cancelled)
        return min(whens) if whens else None

    def _invoke(self, handle: TimerHandle) -> None:
        try:
            handle.fn()
        except Exception:  # noqa: BLE001
            logger.exception("scheduled callback failed label=%s", handle.label or "?")

    def run_pending(self, *, idle: bool = False) -> int:
        """Run every callback due at the current clock reading; return how many ran.

        Callbacks scheduled while draining with a zero delay run in the same pass.
        Idle callbacks run when `idle` is true or their timeout has elapsed.
        """
        ran = 0
        now = self.now()
        while self._heap and self._heap[0].when <= now:
            entry = heapq.heappop(self._heap)
            handle = entry.handle
            if handle.cancelled:
                continue
            if handle.interval is not None:
                # Re-arm before running so the callback may cancel itself.
                handle.when = entry.when + handle.interval
                if handle.when <= now:
                    handle.when = now + handle.interval
                self._push(handle)
            self._invoke(handle)
            ran += 1
            now = self.now()

        if self._idle:
            due = [h for h in self._idle if not h.cancelled and (idle or h.when <= now)]
            self._idle = [h for h in self._idle if not h.cancelled and h not in due]
            for handle in due:
                if handle.cancelled:
                    continue
                self._invoke(handle)
                ran += 1
        return ran


class ManualClock:
    """Deterministic clock for tests and offline replay."""

    def __init__(self, start_ms: float = 0.0) -> None:
        self.value = float(start_ms)

    def __call__(self) -> float:
        return self.value

    def advance(self, ms: float) -> float:
        self.value += float(ms)
        return self.value


__all__ = ["ManualClock", "Scheduler", "TimerHandle", "monotonic_ms"]
