"""Persisted monitor settings (`heatmapEnabled`, `heatmapConfig`).

Design
- A small JSON file, replaced atomically (write temp file, then replace).
- Fail-soft reads: a missing or corrupt file behaves like empty settings.
"""

from __future__ import annotations

import json
import logging
import os
from contextlib import suppress
from pathlib import Path
from typing import Any, Protocol

logger = logging.getLogger("heatmapper.settings")

SETTINGS_KEYS = ("heatmapEnabled", "heatmapConfig")


class SettingsStore(Protocol):
    def load(self) -> dict[str, Any]: ...

    def save(self, values: dict[str, Any]) -> None: ...


def _filter(values: Any) -> dict[str, Any]:
    if not isinstance(values, dict):
        return {}
    return {k: v for k, v in values.items() if k in SETTINGS_KEYS}


class MemorySettingsStore:
    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self.values: dict[str, Any] = _filter(initial or {})
        self.saves = 0

    def load(self) -> dict[str, Any]:
        return json.loads(json.dumps(self.values))

    def save(self, values: dict[str, Any]) -> None:
        self.values.update(_filter(values))
        self.saves += 1


class JsonSettingsStore:
    def __init__(self, path: str | Path) -> None:
        self.path = Path(path).expanduser()

    def load(self) -> dict[str, Any]:
        p = self.path
        try:
            if not p.is_file():
                return {}
            obj = json.loads(p.read_text(encoding="utf-8", errors="replace"))
        except (OSError, ValueError) as exc:
            logger.warning("ignoring unreadable settings file %s: %s", p, exc)
            return {}
        return _filter(obj)

    def save(self, values: dict[str, Any]) -> None:
        merged = self.load()
        merged.update(_filter(values))
        p = self.path
        p.parent.mkdir(parents=True, exist_ok=True)
        tmp = p.with_suffix(p.suffix + ".tmp")
        tmp.write_text(json.dumps(merged, ensure_ascii=True, indent=2, sort_keys=True), encoding="utf-8")
        with suppress(OSError):
            os.chmod(tmp, 0o600)
        tmp.replace(p)


__all__ = ["JsonSettingsStore", "MemorySettingsStore", "SETTINGS_KEYS", "SettingsStore"]
