"""Score -> overlay reconciliation.

One overlay per record whose score clears the visibility floor, none for anything else.
Creation/removal bookkeeping happens synchronously inside `reconcile`; DOM position and
style writes are deferred to an idle slot and re-validated before they touch the page,
because a `stop()` or a later reconcile may have dropped the overlay in between.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum

from .config import HeatmapConfig
from .host import Handle, OverlayStyle, PageHost, Rect, Viewport
from .safety import CircuitBreaker, safe_execute
from .scheduler import Scheduler
from .scoring import PerformanceRecord

logger = logging.getLogger("heatmapper.overlay")


class Severity(str, Enum):
    GOOD = "good"
    WARNING = "warning"
    POOR = "poor"
    BAD = "bad"


_RGB: dict[Severity, tuple[int, int, int]] = {
    Severity.GOOD: (34, 197, 94),
    Severity.WARNING: (250, 204, 21),
    Severity.POOR: (251, 146, 60),
    Severity.BAD: (239, 68, 68),
}


def round_ms(value: float) -> int:
    """Half-up rounding, matching what the page shows for durations."""
    return int(math.floor(float(value) + 0.5))


def severity_for(score: float, config: HeatmapConfig) -> Severity:
    if score < config.threshold_good:
        return Severity.GOOD
    if score < config.threshold_warning:
        return Severity.WARNING
    if score < config.threshold_bad:
        return Severity.POOR
    return Severity.BAD


def severity_colors(severity: Severity) -> tuple[str, str]:
    """(fill, border) rgba strings."""
    r, g, b = _RGB[severity]
    return f"rgba({r}, {g}, {b}, 0.4)", f"rgba({r}, {g}, {b}, 0.8)"


def build_style(record: PerformanceRecord, rect: Rect, viewport: Viewport, config: HeatmapConfig) -> OverlayStyle:
    severity = severity_for(record.score, config)
    fill, border = severity_colors(severity)
    worst = round_ms(record.worst_magnitude)
    badge = f"{worst}ms" if record.worst_magnitude > 0 else None
    tooltip = None
    if config.show_tooltips:
        tooltip = f"score {record.score:g} · worst {worst}ms · {len(record.issues)} issue(s)"
    return OverlayStyle(
        left=rect.left + viewport.scroll_x,
        top=rect.top + viewport.scroll_y,
        width=rect.width,
        height=rect.height,
        background=fill,
        border=border,
        severity=severity.value,
        badge=badge,
        tooltip=tooltip,
    )


@dataclass(eq=False)
class _OverlayState:
    handle: Handle
    in_dom: bool = False
    hidden: bool = False
    written: OverlayStyle | None = None
    pending: OverlayStyle | None = None
    pending_hidden: bool = False


class OverlayRenderer:
    def __init__(
        self,
        host: PageHost,
        scheduler: Scheduler,
        *,
        config: HeatmapConfig | None = None,
        max_overlays: int = 5,
        min_score: float = 0.0,
        breaker: CircuitBreaker | None = None,
        guard: Callable[[Handle], bool] | None = None,
        idle_timeout_ms: float = 100.0,
        slow_ms: float = 5.0,
    ) -> None:
        self.host = host
        self.scheduler = scheduler
        self.config = config if config is not None else HeatmapConfig()
        self.max_overlays = max(0, int(max_overlays))
        self.min_score = float(min_score)
        self.breaker = breaker if breaker is not None else CircuitBreaker(name="overlay", clock=scheduler.now)
        self.guard = guard
        self.idle_timeout_ms = idle_timeout_ms
        self.slow_ms = slow_ms
        self._overlays: dict[Handle, _OverlayState] = {}
        self.created = 0
        self.destroyed = 0

    def __len__(self) -> int:
        return len(self._overlays)

    def __contains__(self, handle: object) -> bool:
        return handle in self._overlays

    @property
    def handles(self) -> list[Handle]:
        return list(self._overlays)

    def is_hidden(self, handle: Handle) -> bool:
        state = self._overlays.get(handle)
        return state is not None and state.hidden

    def visible_floor(self, score: float) -> bool:
        return score > 0 and score >= self.min_score

    def reconcile(self, records: Sequence[PerformanceRecord]) -> int | None:
        """Converge overlays onto `records`; returns the number kept, None if short-circuited."""
        return self.breaker.execute(lambda: self._reconcile(records))

    def _reconcile(self, records: Sequence[PerformanceRecord]) -> int:
        wanted = [r for r in records if self.visible_floor(r.score)]
        rects = self.host.get_rects([r.handle for r in wanted]) if wanted else {}
        viewport = self.host.viewport() if rects else None

        kept: set[Handle] = set()
        for record in wanted:
            if len(kept) >= self.max_overlays:
                break
            rect = rects.get(record.handle)
            if rect is None:
                continue
            kept.add(record.handle)
            state = self._overlays.get(record.handle)
            if state is None:
                state = _OverlayState(handle=record.handle)
                self._overlays[record.handle] = state
                self.created += 1
            if rect.area <= 0:
                self._schedule(state, None, hidden=True)
            else:
                assert viewport is not None
                self._schedule(state, build_style(record, rect, viewport, self.config), hidden=False)

        for handle in [h for h in self._overlays if h not in kept]:
            self.remove(handle)

        if kept:
            logger.debug("reconciled %d overlays", len(kept))
        return len(kept)

    def _schedule(self, state: _OverlayState, style: OverlayStyle | None, *, hidden: bool) -> None:
        already = state.pending is not None or state.pending_hidden
        if hidden:
            if state.hidden and state.in_dom and not already:
                return
            state.pending = None
            state.pending_hidden = True
        else:
            if not state.hidden and state.in_dom and state.written == style and not already:
                return
            state.pending = style
            state.pending_hidden = False
        if not already:
            self.scheduler.request_idle(lambda: self._flush(state), self.idle_timeout_ms, label="overlay-write")

    def _flush(self, state: _OverlayState) -> None:
        # Deferred write: the overlay may have been removed or the monitor stopped meanwhile.
        if self._overlays.get(state.handle) is not state:
            return
        if self.guard is not None and not self.guard(state.handle):
            state.pending = None
            state.pending_hidden = False
            return
        safe_execute(
            lambda: self.breaker.execute(lambda: self._write(state)),
            "overlay write",
            slow_ms=self.slow_ms,
            clock=self.scheduler.now,
        )

    def _write(self, state: _OverlayState) -> None:
        style, hide = state.pending, state.pending_hidden
        state.pending = None
        state.pending_hidden = False
        if not state.in_dom:
            self.host.create_overlay(state.handle)
            state.in_dom = True
        if hide:
            self.host.hide_overlay(state.handle)
            state.hidden = True
        elif style is not None:
            self.host.update_overlay(state.handle, style)
            state.written = style
            state.hidden = False

    def remove(self, handle: Handle) -> bool:
        state = self._overlays.pop(handle, None)
        if state is None:
            return False
        self.destroyed += 1
        if state.in_dom:
            self.host.remove_overlay(handle)
        return True

    def remove_many(self, handles: Sequence[Handle]) -> int:
        return sum(1 for h in handles if self.remove(h))

    def clear_all(self) -> None:
        """Destroy every overlay, including ones whose first write is still pending."""
        self.destroyed += len(self._overlays)
        self._overlays.clear()
        self.host.remove_all_overlays()


__all__ = ["OverlayRenderer", "Severity", "build_style", "round_ms", "severity_colors", "severity_for"]
