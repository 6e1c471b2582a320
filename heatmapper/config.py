from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from .errors import CommandError


def expand_path(raw: str) -> str:
    return str(Path(raw).expanduser())


# camelCase wire key -> dataclass attribute
_CONFIG_KEYS: dict[str, str] = {
    "thresholdGood": "threshold_good",
    "thresholdWarning": "threshold_warning",
    "thresholdBad": "threshold_bad",
    "showTooltips": "show_tooltips",
}


@dataclass(frozen=True)
class HeatmapConfig:
    """Visual thresholds (ms-equivalent score units) and overlay options."""

    threshold_good: float = 16.0
    threshold_warning: float = 50.0
    threshold_bad: float = 100.0
    show_tooltips: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {wire: getattr(self, attr) for wire, attr in _CONFIG_KEYS.items()}

    @classmethod
    def from_dict(cls, raw: Any) -> HeatmapConfig:
        """Lenient load for persisted settings: unknown or invalid keys are ignored."""
        base = cls()
        if not isinstance(raw, dict):
            return base
        clean: dict[str, Any] = {}
        for wire, attr in _CONFIG_KEYS.items():
            if wire not in raw:
                continue
            try:
                clean[attr] = _coerce_field(attr, raw[wire])
            except ValueError:
                continue
        return replace(base, **clean)

    def merged(self, partial: Any) -> HeatmapConfig:
        """Strict merge used by updateConfig; rejects unknown keys and bad types."""
        if not isinstance(partial, dict):
            raise CommandError(action="updateConfig", reason="config must be an object")
        unknown = sorted(k for k in partial if k not in _CONFIG_KEYS)
        if unknown:
            raise CommandError(
                action="updateConfig",
                reason=f"unknown config keys: {', '.join(unknown)}",
                details={"allowed": sorted(_CONFIG_KEYS)},
            )
        clean: dict[str, Any] = {}
        for wire, value in partial.items():
            attr = _CONFIG_KEYS[wire]
            try:
                clean[attr] = _coerce_field(attr, value)
            except ValueError as exc:
                raise CommandError(action="updateConfig", reason=f"{wire}: {exc}") from exc
        return replace(self, **clean)


def _coerce_field(attr: str, value: Any) -> Any:
    if attr == "show_tooltips":
        if not isinstance(value, bool):
            raise ValueError("expected boolean")
        return value
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError("expected number")
    if value < 0:
        raise ValueError("expected non-negative number")
    return float(value)


@dataclass(frozen=True)
class ScoreWeights:
    """Tiered issue weights; LongTask tiers are chosen by magnitude in ms."""

    high: float = 100.0
    medium: float = 50.0
    low: float = 20.0
    framework_marker: float = 10.0
    high_above_ms: float = 100.0
    medium_from_ms: float = 50.0


@dataclass(frozen=True)
class SafetyLimits:
    max_overlays: int = 5
    max_tracked: int = 50
    max_attributed: int = 5
    viewport_sample: int = 20
    min_element_size: float = 20.0
    long_task_threshold_ms: float = 50.0
    autostart_delay_ms: float = 3000.0
    initial_scan_delay_ms: float = 1000.0
    update_throttle_ms: float = 1000.0
    cleanup_interval_ms: float = 10_000.0
    fallback_scan_interval_ms: float = 3000.0
    issue_window_ms: float = 10_000.0
    record_ttl_ms: float = 30_000.0
    long_task_buffer_ms: float = 30_000.0
    long_task_buffer_max: int = 200
    export_long_tasks: int = 20
    export_recent_issues: int = 5
    slow_operation_ms: float = 5.0
    breaker_threshold: int = 3
    breaker_cooldown_ms: float = 30_000.0
    overlay_min_score: float = 0.0
    idle_timeout_ms: float = 100.0


# Candidate selectors sampled from the viewport: structural containers and component markers.
INTERESTING_SELECTORS: tuple[str, ...] = (
    "main",
    "section",
    "article",
    "div",
    "button",
    '[class*="component"]',
    "[data-component]",
)

DEMO_MAGNITUDES_MS: tuple[float, ...] = (16.0, 35.0, 75.0, 120.0, 200.0)


@dataclass(frozen=True)
class Profile:
    name: str
    mode: str
    limits: SafetyLimits = field(default_factory=SafetyLimits)
    weights: ScoreWeights = field(default_factory=ScoreWeights)
    live_attribution: bool = True
    framework_attribution: bool = False
    scan_interval_ms: float | None = None
    evict_empty: bool = False


PROFILES: dict[str, Profile] = {
    "real": Profile(name="real", mode="REAL - Live Long Task monitoring"),
    "safe": Profile(
        name="safe",
        mode="SAFE - Throttled monitoring with framework markers",
        limits=SafetyLimits(max_overlays=20),
        framework_attribution=True,
        scan_interval_ms=3000.0,
    ),
    "minimal": Profile(
        name="minimal",
        mode="DEMO - Static overlays for safety",
        limits=SafetyLimits(autostart_delay_ms=2000.0),
        live_attribution=False,
    ),
}


def get_profile(name: str | None) -> Profile:
    key = (name or "").strip().lower()
    if key in {"", "default", "live"}:
        key = "real"
    if key in {"demo", "static"}:
        key = "minimal"
    profile = PROFILES.get(key)
    if profile is None:
        raise ValueError(f"Unknown profile: {name!r} (expected one of {sorted(PROFILES)})")
    return profile


@dataclass
class EngineConfig:
    cdp_host: str = "127.0.0.1"
    cdp_port: int = 9222
    target_url: str = ""
    profile: str = "real"
    settings_path: str = field(default_factory=lambda: expand_path("~/.perf-heatmapper/settings.json"))
    cdp_timeout: float = 5.0
    poll_interval: float = 0.02
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> EngineConfig:
        return cls(
            cdp_host=os.environ.get("HEATMAP_CDP_HOST", "127.0.0.1").strip() or "127.0.0.1",
            cdp_port=int(os.environ.get("HEATMAP_CDP_PORT", "9222")),
            target_url=os.environ.get("HEATMAP_TARGET_URL", "").strip(),
            profile=os.environ.get("HEATMAP_PROFILE", "real"),
            settings_path=expand_path(os.environ.get("HEATMAP_SETTINGS_FILE", "~/.perf-heatmapper/settings.json")),
            cdp_timeout=float(os.environ.get("HEATMAP_CDP_TIMEOUT", "5")),
            poll_interval=max(0.001, float(os.environ.get("HEATMAP_POLL_INTERVAL", "0.02"))),
            log_level=(os.environ.get("HEATMAP_LOG_LEVEL", "INFO").strip().upper() or "INFO"),
        )

    @property
    def http_base(self) -> str:
        return f"http://{self.cdp_host}:{self.cdp_port}"
