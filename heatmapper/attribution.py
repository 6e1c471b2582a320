"""Long-task ingestion and attribution to candidate elements.

The browser does not say which node a long task belongs to, so attribution is a heuristic:
every significant task is charged to the current candidate set (viewport sample plus
recently visible elements), capped at `max_attributed` elements.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from .errors import HostCapabilityMissing
from .host import Handle, LongTaskEntry, PageHost, Subscription
from .safety import CircuitBreaker, safe_execute
from .scheduler import Scheduler
from .scoring import Issue, IssueKind, ScoringStore
from .visibility import VisibilityTracker

logger = logging.getLogger("heatmapper.attribution")


@dataclass(frozen=True, slots=True)
class LongTaskEvent:
    duration: float
    start_time: float
    attribution: str
    received_at: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "duration": self.duration,
            "startTime": self.start_time,
            "attribution": self.attribution,
            "timestamp": self.received_at,
        }


class LongTaskBuffer:
    """Rolling buffer of recent long tasks, bounded by age and by count."""

    def __init__(self, *, max_age_ms: float = 30_000.0, max_count: int = 200) -> None:
        self.max_age_ms = float(max_age_ms)
        self.max_count = max(1, int(max_count))
        self._events: list[LongTaskEvent] = []

    def __len__(self) -> int:
        return len(self._events)

    def append(self, event: LongTaskEvent, now: float) -> None:
        self._events.append(event)
        self.prune(now)

    def prune(self, now: float) -> None:
        cutoff = now - self.max_age_ms
        self._events = [e for e in self._events if e.received_at > cutoff]
        if len(self._events) > self.max_count:
            del self._events[: len(self._events) - self.max_count]

    def events(self) -> list[LongTaskEvent]:
        return list(self._events)

    def last(self, n: int) -> list[LongTaskEvent]:
        """Most recent `n` events, oldest first by start time."""
        if n <= 0:
            return []
        return sorted(self._events[-n:], key=lambda e: e.start_time)

    def clear(self) -> None:
        self._events.clear()

    def stats(self) -> tuple[int, float, float]:
        """(count, average duration, worst duration)."""
        if not self._events:
            return 0, 0.0, 0.0
        durations = [e.duration for e in self._events]
        return len(durations), sum(durations) / len(durations), max(durations)


class TaskAttributionObserver:
    def __init__(
        self,
        host: PageHost,
        tracker: VisibilityTracker,
        store: ScoringStore,
        scheduler: Scheduler,
        *,
        buffer: LongTaskBuffer | None = None,
        significance_ms: float = 50.0,
        max_attributed: int = 5,
        breaker: CircuitBreaker | None = None,
        on_attributed: Callable[[], None] | None = None,
        slow_ms: float = 5.0,
    ) -> None:
        self.host = host
        self.tracker = tracker
        self.store = store
        self.scheduler = scheduler
        self.buffer = buffer if buffer is not None else LongTaskBuffer()
        self.significance_ms = float(significance_ms)
        self.max_attributed = max(0, int(max_attributed))
        self.breaker = breaker if breaker is not None else CircuitBreaker(name="attribution", clock=scheduler.now)
        self.on_attributed = on_attributed
        self.slow_ms = slow_ms
        self._subscription: Subscription | None = None
        self.available: bool | None = None
        self._warned = False

    @property
    def active(self) -> bool:
        return self._subscription is not None

    def start(self) -> bool:
        if self._subscription is not None:
            return True
        try:
            self._subscription = self.host.subscribe_long_tasks(self._on_entries)
        except HostCapabilityMissing as exc:
            self.available = False
            if not self._warned:
                self._warned = True
                logger.warning("long task notifications unavailable; framework-marker attribution only: %s", exc)
            return False
        self.available = True
        logger.info("long task observer active threshold_ms=%.0f", self.significance_ms)
        return True

    def stop(self) -> None:
        sub, self._subscription = self._subscription, None
        if sub is not None:
            sub.disconnect()

    def _on_entries(self, entries: list[LongTaskEntry]) -> None:
        # Host callback boundary: never let a failure escape into the page.
        safe_execute(
            lambda: self.breaker.execute(lambda: self.process(entries)),
            "processing long tasks",
            slow_ms=self.slow_ms,
            clock=self.scheduler.now,
        )

    def process(self, entries: list[LongTaskEntry]) -> list[tuple[Handle, LongTaskEvent]]:
        if self._subscription is None:
            return []
        attributed: list[tuple[Handle, LongTaskEvent]] = []
        for entry in sorted(entries, key=lambda e: e.start_time):
            if entry.duration < self.significance_ms:
                continue
            attributed.extend(self.ingest(entry))
        if attributed and self.on_attributed is not None:
            self.on_attributed()
        return attributed

    def ingest(self, entry: LongTaskEntry) -> list[tuple[Handle, LongTaskEvent]]:
        now = self.scheduler.now()
        event = LongTaskEvent(
            duration=float(entry.duration),
            start_time=float(entry.start_time),
            attribution=entry.attribution or "unknown",
            received_at=now,
        )
        self.buffer.append(event, now)
        logger.debug("long task %.1fms attribution=%s", event.duration, event.attribution)

        candidates = self.tracker.get_candidates()[: self.max_attributed]
        issue = Issue(kind=IssueKind.LONG_TASK, magnitude=event.duration, occurred_at=now)
        for handle in candidates:
            self.store.record(handle, issue)
        return [(h, event) for h in candidates]


__all__ = ["LongTaskBuffer", "LongTaskEvent", "TaskAttributionObserver"]
