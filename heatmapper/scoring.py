"""Per-element, time-windowed issue ledger and score computation.

Records live in an arena keyed by the host's integer handle. Scores are recomputed from
the surviving window only, so the same window always yields the same score regardless
of arrival order or of anything recorded earlier and since pruned.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .config import ScoreWeights
from .host import Handle

logger = logging.getLogger("heatmapper.scoring")


class IssueKind(str, Enum):
    LONG_TASK = "longtask"
    FRAMEWORK_MARKER = "framework"


@dataclass(frozen=True, slots=True)
class Issue:
    kind: IssueKind
    magnitude: float
    occurred_at: float

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.kind.value, "duration": self.magnitude, "timestamp": self.occurred_at}


@dataclass
class PerformanceRecord:
    handle: Handle
    issues: list[Issue] = field(default_factory=list)
    score: float = 0.0
    worst_magnitude: float = 0.0
    last_update: float = 0.0


def issue_weight(issue: Issue, weights: ScoreWeights) -> float:
    if issue.kind is IssueKind.FRAMEWORK_MARKER:
        return weights.framework_marker
    if issue.magnitude > weights.high_above_ms:
        return weights.high
    if issue.magnitude >= weights.medium_from_ms:
        return weights.medium
    return weights.low


def compute_score(issues: Iterable[Issue], weights: ScoreWeights) -> float:
    return float(sum(issue_weight(i, weights) for i in issues))


class ScoringStore:
    def __init__(
        self,
        weights: ScoreWeights | None = None,
        *,
        window_ms: float = 10_000.0,
        evict_empty: bool = False,
    ) -> None:
        self.weights = weights if weights is not None else ScoreWeights()
        self.window_ms = float(window_ms)
        self.evict_empty = evict_empty
        self._records: dict[Handle, PerformanceRecord] = {}

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, handle: object) -> bool:
        return handle in self._records

    def __iter__(self) -> Iterator[PerformanceRecord]:
        return iter(list(self._records.values()))

    def get(self, handle: Handle) -> PerformanceRecord | None:
        return self._records.get(handle)

    def handles(self) -> list[Handle]:
        return list(self._records)

    def _prune(self, record: PerformanceRecord, now: float) -> None:
        cutoff = now - self.window_ms
        record.issues = [i for i in record.issues if i.occurred_at > cutoff]
        record.score = compute_score(record.issues, self.weights)

    def record(self, handle: Handle, issue: Issue) -> PerformanceRecord:
        rec = self._records.get(handle)
        if rec is None:
            rec = PerformanceRecord(handle=handle, last_update=issue.occurred_at)
            self._records[handle] = rec
        rec.issues.append(issue)
        self._prune(rec, issue.occurred_at)
        if issue.kind is IssueKind.LONG_TASK:
            rec.worst_magnitude = max(rec.worst_magnitude, float(issue.magnitude))
        rec.last_update = issue.occurred_at
        return rec

    def prune(self, now: float) -> list[Handle]:
        """Re-apply the window to every record; returns handles evicted for emptiness."""
        emptied: list[Handle] = []
        for handle, rec in list(self._records.items()):
            self._prune(rec, now)
            if not rec.issues and self.evict_empty:
                del self._records[handle]
                emptied.append(handle)
        return emptied

    def evict_stale(self, now: float, ttl_ms: float, attached: set[Handle] | None = None) -> list[Handle]:
        """Drop records older than `ttl_ms`, or whose handle is not in `attached`.

        `attached=None` skips the detachment check.
        """
        removed: list[Handle] = []
        for handle, rec in list(self._records.items()):
            stale = now - rec.last_update > ttl_ms
            detached = attached is not None and handle not in attached
            if stale or detached:
                del self._records[handle]
                removed.append(handle)
        if removed:
            logger.debug("evicted %d records", len(removed))
        return removed

    def remove(self, handle: Handle) -> bool:
        return self._records.pop(handle, None) is not None

    def clear(self) -> None:
        self._records.clear()

    def ranked(self, limit: int | None = None) -> list[PerformanceRecord]:
        """Records by descending score; ties keep insertion order."""
        out = sorted(self._records.values(), key=lambda r: -r.score)
        return out if limit is None else out[: max(0, limit)]

    def count_at_least(self, score: float) -> int:
        return sum(1 for r in self._records.values() if r.score >= score)


__all__ = ["Issue", "IssueKind", "PerformanceRecord", "ScoringStore", "compute_score", "issue_weight"]
