"""MonitorController: lifecycle, configuration and wiring of the heatmap engine.

States: STOPPED (initial) -> STARTING -> ACTIVE -> STOPPED. `toggle()` re-enters STARTING.
`stop()` is the only cancellation path: it cancels this controller's timers, disconnects
observers, destroys every overlay and clears scoring/visibility state. Deferred overlay
writes still queued on the scheduler become no-ops because the renderer and the
`_is_live` guard both re-check state before writing.

One controller serves every profile (live, throttled-with-markers, static demo); the
profile only changes limits and the attribution source.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from .attribution import LongTaskBuffer, LongTaskEvent, TaskAttributionObserver
from .config import DEMO_MAGNITUDES_MS, HeatmapConfig, Profile, get_profile
from .errors import HeatmapError
from .host import Handle, PageHost
from .overlay import OverlayRenderer, round_ms
from .safety import CircuitBreaker, Throttle, safe_execute
from .scheduler import Scheduler, TimerHandle
from .scoring import Issue, IssueKind, ScoringStore
from .settings import SettingsStore
from .visibility import VisibilityTracker

logger = logging.getLogger("heatmapper.controller")

FRAMEWORKS = ("React", "Angular", "Vue")


class MonitorState(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    ACTIVE = "active"


class MonitorController:
    def __init__(
        self,
        host: PageHost,
        settings: SettingsStore,
        *,
        profile: Profile | str | None = None,
        scheduler: Scheduler | None = None,
    ) -> None:
        self.host = host
        self.settings = settings
        self.profile = profile if isinstance(profile, Profile) else get_profile(profile)
        self.limits = self.profile.limits
        self.scheduler = scheduler if scheduler is not None else Scheduler()
        self.config = HeatmapConfig()
        self.enabled = False
        self.state = MonitorState.STOPPED
        self.framework_counts: dict[str, int] = dict.fromkeys(FRAMEWORKS, 0)

        lim = self.limits
        clock = self.scheduler.now
        self.store = ScoringStore(self.profile.weights, window_ms=lim.issue_window_ms, evict_empty=self.profile.evict_empty)
        self.tracker = VisibilityTracker(
            host, capacity=lim.max_tracked, sample_size=lim.viewport_sample, min_size=lim.min_element_size
        )
        self.long_tasks = LongTaskBuffer(max_age_ms=lim.long_task_buffer_ms, max_count=lim.long_task_buffer_max)
        self.attribution_breaker = CircuitBreaker(
            lim.breaker_threshold, lim.breaker_cooldown_ms, name="attribution", clock=clock
        )
        self.overlay_breaker = CircuitBreaker(lim.breaker_threshold, lim.breaker_cooldown_ms, name="overlay", clock=clock)
        self.scan_breaker = CircuitBreaker(lim.breaker_threshold, lim.breaker_cooldown_ms, name="scan", clock=clock)
        self.observer = TaskAttributionObserver(
            host,
            self.tracker,
            self.store,
            self.scheduler,
            buffer=self.long_tasks,
            significance_ms=lim.long_task_threshold_ms,
            max_attributed=lim.max_attributed,
            breaker=self.attribution_breaker,
            on_attributed=self.request_refresh,
            slow_ms=lim.slow_operation_ms,
        )
        self.renderer = OverlayRenderer(
            host,
            self.scheduler,
            config=self.config,
            max_overlays=lim.max_overlays,
            min_score=lim.overlay_min_score,
            breaker=self.overlay_breaker,
            guard=self._is_live,
            idle_timeout_ms=lim.idle_timeout_ms,
            slow_ms=lim.slow_operation_ms,
        )
        self._refresh = Throttle(self.refresh, lim.update_throttle_ms, clock=clock)
        self._timers: dict[str, TimerHandle] = {}
        self._disposed = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def active(self) -> bool:
        return self.enabled

    def init(self) -> None:
        """Load persisted settings; arm a delayed autostart when monitoring is enabled."""
        stored = self._load_settings()
        self.enabled = stored.get("heatmapEnabled") is not False
        if "heatmapConfig" in stored:
            self.config = HeatmapConfig.from_dict(stored.get("heatmapConfig"))
            self.renderer.config = self.config
        if self.enabled:
            self._arm("autostart", self.scheduler.call_later(self.limits.autostart_delay_ms, self._autostart))
            logger.info(
                "initialized profile=%s; monitoring starts in %.0fms", self.profile.name, self.limits.autostart_delay_ms
            )
        else:
            logger.info("initialized profile=%s; monitoring disabled", self.profile.name)

    def _autostart(self) -> None:
        self._timers.pop("autostart", None)
        if self.enabled and self.state is MonitorState.STOPPED:
            self.start()

    def start(self) -> None:
        if self._disposed:
            raise HeatmapError("controller is disposed")
        self._cancel("autostart")
        self.enabled = True
        if self.state is not MonitorState.STOPPED:
            return
        self.state = MonitorState.STARTING
        logger.info("starting monitoring profile=%s", self.profile.name)

        if self.profile.live_attribution:
            self.observer.start()
        self.tracker.start()

        lim = self.limits
        sched = self.scheduler
        self._arm("cleanup", sched.call_every(lim.cleanup_interval_ms, self.cleanup, label="cleanup"))
        self._arm(
            "initial_scan",
            sched.call_later(lim.initial_scan_delay_ms, lambda: self.scan(initial=True), label="initial-scan"),
        )
        interval = self.profile.scan_interval_ms
        if interval is None and self.profile.live_attribution and self.observer.available is False:
            interval = lim.fallback_scan_interval_ms
        if interval:
            self._arm("scan", sched.call_every(interval, self.scan, label="scan"))

        self.state = MonitorState.ACTIVE

    def stop(self) -> None:
        logger.info("stopping monitoring")
        self.enabled = False
        for name in list(self._timers):
            self._cancel(name)
        # host teardown may fail (closed socket); local state is reset regardless
        for step, context in (
            (self.observer.stop, "stopping long-task observer"),
            (self.tracker.stop, "stopping visibility tracker"),
            (self.renderer.clear_all, "removing overlays"),
        ):
            safe_execute(step, context, slow_ms=self.limits.slow_operation_ms, clock=self.scheduler.now)
        self.store.clear()
        self.tracker.clear()
        self._refresh.reset()
        self.state = MonitorState.STOPPED

    def toggle(self) -> bool:
        if self.enabled:
            self.stop()
        else:
            self.start()
        self._persist({"heatmapEnabled": self.enabled})
        return self.enabled

    def dispose(self) -> None:
        if self._disposed:
            return
        self.stop()
        self._disposed = True

    def update_config(self, partial: Any) -> HeatmapConfig:
        self.config = self.config.merged(partial)
        self.renderer.config = self.config
        self._persist({"heatmapConfig": self.config.to_dict()})
        if self.state is MonitorState.ACTIVE:
            self.request_refresh()
        return self.config

    # ------------------------------------------------------------------
    # Timers and passes
    # ------------------------------------------------------------------

    def _arm(self, name: str, handle: TimerHandle) -> None:
        self._cancel(name)
        self._timers[name] = handle

    def _cancel(self, name: str) -> None:
        handle = self._timers.pop(name, None)
        if handle is not None:
            handle.cancel()

    def _is_live(self, handle: Handle) -> bool:
        return self.state is MonitorState.ACTIVE and handle in self.store

    def request_refresh(self) -> None:
        if self.state is not MonitorState.ACTIVE:
            return
        if not self._refresh() and "refresh" not in self._timers:
            # dropped by the throttle: repaint once the window closes
            self._arm(
                "refresh",
                self.scheduler.call_later(self.limits.update_throttle_ms, self._trailing_refresh, label="refresh"),
            )

    def _trailing_refresh(self) -> None:
        self._timers.pop("refresh", None)
        self._refresh.reset()
        self.request_refresh()

    def refresh(self) -> None:
        if self.state is not MonitorState.ACTIVE:
            return
        safe_execute(
            lambda: self.renderer.reconcile(self.store.ranked()),
            "updating overlays",
            slow_ms=self.limits.slow_operation_ms,
            clock=self.scheduler.now,
        )

    def scan(self, *, initial: bool = False) -> None:
        if self.state is not MonitorState.ACTIVE:
            return
        if initial:
            self._timers.pop("initial_scan", None)
        safe_execute(
            lambda: self.scan_breaker.execute(lambda: self._scan(initial)),
            "initial element scan" if initial else "element scan",
            slow_ms=self.limits.slow_operation_ms,
            clock=self.scheduler.now,
        )

    def _scan(self, initial: bool) -> None:
        sampled = self.tracker.viewport_sample()
        if initial:
            self.tracker.observe(sampled)
            logger.info("tracking %d elements", len(sampled))
        rects = self.host.get_rects(sampled) if sampled else {}
        candidates = [h for h in sampled if self.tracker.big_enough(rects.get(h))]
        now = self.scheduler.now()
        self.store.prune(now)
        recorded = False

        marks = self.host.frameworks(candidates) if candidates else {}
        counts = dict.fromkeys(FRAMEWORKS, 0)
        for name in marks.values():
            if name in counts:
                counts[name] += 1
        self.framework_counts = counts

        if self.profile.framework_attribution or (self.profile.live_attribution and self.observer.available is False):
            for handle in candidates:
                if marks.get(handle) in counts:
                    self.store.record(
                        handle,
                        Issue(IssueKind.FRAMEWORK_MARKER, self.profile.weights.framework_marker, now),
                    )
                    recorded = True

        if not self.profile.live_attribution:
            recorded = self._seed_demo(candidates, now) or recorded

        if recorded:
            self.request_refresh()

    def _seed_demo(self, candidates: list[Handle], now: float) -> bool:
        """Static demo: fixed magnitudes on the first sampled elements, re-seeded when expired."""
        seeded = False
        for index, handle in enumerate(candidates[: self.limits.max_overlays]):
            rec = self.store.get(handle)
            if rec is not None and rec.issues:
                continue
            magnitude = DEMO_MAGNITUDES_MS[index % len(DEMO_MAGNITUDES_MS)]
            self.store.record(handle, Issue(IssueKind.LONG_TASK, magnitude, now))
            self.long_tasks.append(LongTaskEvent(magnitude, now, "synthetic", now), now)
            seeded = True
        return seeded

    def cleanup(self) -> None:
        safe_execute(self._cleanup, "cleanup", slow_ms=self.limits.slow_operation_ms, clock=self.scheduler.now)

    def _cleanup(self) -> None:
        now = self.scheduler.now()
        emptied = self.store.prune(now)
        attached = self.host.attached(self.store.handles()) if len(self.store) else set()
        removed = self.store.evict_stale(now, self.limits.record_ttl_ms, attached)
        self.renderer.remove_many(emptied + removed)
        gone = self.tracker.sweep_detached()
        self.long_tasks.prune(now)
        if removed or emptied:
            logger.info("cleaned up %d stale elements", len(removed) + len(emptied))
        if gone:
            logger.debug("dropped %d detached elements from recency set", len(gone))
        if not self.profile.live_attribution:
            # demo issues expire with the window; re-seed so the static overlays persist
            self.scan()
        self.request_refresh()

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def metrics_summary(self) -> dict[str, Any]:
        count, average, worst = self.long_tasks.stats()
        return {
            "elementsTracked": len(self.tracker),
            "overlaysActive": len(self.renderer),
            "performanceIssues": self.store.count_at_least(self.profile.weights.medium),
            "longTaskCount": count,
            "averageLongTaskDuration": round_ms(average),
            "worstLongTaskDuration": round_ms(worst),
            "frameworkComponents": dict(self.framework_counts),
            "mode": self.profile.mode,
            "longTaskSupported": self.observer.available,
        }

    def status(self) -> dict[str, Any]:
        return {
            "active": self.enabled,
            "state": self.state.value,
            "profile": self.profile.name,
            "metrics": self.metrics_summary(),
        }

    def export_data(self) -> dict[str, Any]:
        lim = self.limits
        records = list(self.store)
        infos = self.host.describe([r.handle for r in records]) if records else {}
        elements = []
        for rec in records:
            info = infos.get(rec.handle)
            elements.append(
                {
                    "handle": rec.handle,
                    "tag": info.tag if info else None,
                    "domId": (info.dom_id or None) if info else None,
                    "classList": list(info.classes) if info else [],
                    "score": rec.score,
                    "worstDuration": rec.worst_magnitude,
                    "issueCount": len(rec.issues),
                    "recentIssues": [i.to_dict() for i in rec.issues[-lim.export_recent_issues :]],
                }
            )
        return {
            "timestamp": datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "sourceUrl": self.host.url(),
            "summary": self.metrics_summary(),
            "longTasks": [e.to_dict() for e in self.long_tasks.last(lim.export_long_tasks)],
            "elements": elements,
        }

    # ------------------------------------------------------------------
    # Settings collaborator
    # ------------------------------------------------------------------

    def _load_settings(self) -> dict[str, Any]:
        try:
            return self.settings.load()
        except Exception as exc:  # noqa: BLE001
            logger.warning("failed to load settings; using defaults: %s", exc)
            return {}

    def _persist(self, values: dict[str, Any]) -> None:
        try:
            self.settings.save(values)
        except Exception as exc:  # noqa: BLE001
            logger.warning("failed to persist settings keys=%s: %s", sorted(values), exc)


__all__ = ["FRAMEWORKS", "MonitorController", "MonitorState"]
