"""Bounded set of currently relevant elements.

Two views are merged into the candidate set:
- a recency set fed by visibility-intersection callbacks (capacity-bounded, oldest dropped first);
- a viewport sample drawn on demand from a fixed list of interesting selectors.
Candidates smaller than the minimum size are never returned or tracked.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence

from .config import INTERESTING_SELECTORS
from .errors import HostCapabilityMissing
from .host import Handle, PageHost, Rect, VisibilityEntry, VisibilityObservation

logger = logging.getLogger("heatmapper.visibility")


class VisibilityTracker:
    def __init__(
        self,
        host: PageHost,
        *,
        capacity: int = 50,
        sample_size: int = 20,
        min_size: float = 20.0,
        selectors: Sequence[str] = INTERESTING_SELECTORS,
    ) -> None:
        self.host = host
        self.capacity = max(1, int(capacity))
        self.sample_size = max(1, int(sample_size))
        self.min_size = float(min_size)
        self.selectors = tuple(selectors)
        # dict keeps insertion order: first key is the oldest entry.
        self._recent: dict[Handle, None] = {}
        self._observation: VisibilityObservation | None = None
        self.available = True

    def __len__(self) -> int:
        return len(self._recent)

    def __contains__(self, handle: object) -> bool:
        return handle in self._recent

    @property
    def recent(self) -> list[Handle]:
        return list(self._recent)

    def big_enough(self, rect: Rect | None) -> bool:
        return rect is not None and rect.width >= self.min_size and rect.height >= self.min_size

    def start(self) -> bool:
        if self._observation is not None:
            return True
        try:
            self._observation = self.host.observe_visibility(self._on_visibility)
        except HostCapabilityMissing as exc:
            if self.available:
                logger.warning("visibility observation unavailable; viewport sampling only: %s", exc)
            self.available = False
            return False
        self.available = True
        return True

    def stop(self) -> None:
        obs, self._observation = self._observation, None
        if obs is not None:
            obs.disconnect()

    def clear(self) -> None:
        self._recent.clear()

    def observe(self, handles: Iterable[Handle]) -> None:
        if self._observation is not None:
            self._observation.observe(list(handles))

    def _on_visibility(self, entries: list[VisibilityEntry]) -> None:
        for entry in entries:
            if entry.intersecting and self.big_enough(entry.rect):
                self.add(entry.handle)

    def add(self, handle: Handle) -> None:
        # Re-seen elements move to the newest end.
        self._recent.pop(handle, None)
        self._recent[handle] = None
        if len(self._recent) > self.capacity:
            keep = list(self._recent)[-(self.capacity // 2 or 1) :]
            self._recent = dict.fromkeys(keep)

    def viewport_sample(self) -> list[Handle]:
        handles = self.host.sample_elements(self.selectors, self.sample_size)
        if not handles:
            return []
        viewport = self.host.viewport()
        rects = self.host.get_rects(handles)
        return [h for h in handles if h in rects and viewport.overlaps(rects[h])]

    def get_candidates(self) -> list[Handle]:
        """Deduplicated union of the viewport sample and the attached recency set."""
        ordered: dict[Handle, None] = dict.fromkeys(self.viewport_sample())
        for handle in self._recent:
            ordered.setdefault(handle, None)
        if not ordered:
            return []
        rects = self.host.get_rects(list(ordered))
        return [h for h in ordered if self.big_enough(rects.get(h))]

    def sweep_detached(self) -> list[Handle]:
        if not self._recent:
            return []
        alive = self.host.attached(list(self._recent))
        gone = [h for h in self._recent if h not in alive]
        for handle in gone:
            del self._recent[handle]
        return gone


__all__ = ["VisibilityTracker"]
