from __future__ import annotations

import json
from pathlib import Path

import pytest

from heatmapper.config import EngineConfig, HeatmapConfig, get_profile
from heatmapper.errors import CommandError
from heatmapper.settings import JsonSettingsStore, MemorySettingsStore


def test_json_store_merges_and_filters(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "settings.json"
    store = JsonSettingsStore(path)
    assert store.load() == {}

    store.save({"heatmapEnabled": False, "junk": 1})
    store.save({"heatmapConfig": {"thresholdBad": 120.0}})
    assert store.load() == {"heatmapEnabled": False, "heatmapConfig": {"thresholdBad": 120.0}}
    assert json.loads(path.read_text())["heatmapEnabled"] is False
    assert not path.with_suffix(".json.tmp").exists()


def test_json_store_ignores_corrupt_file(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    path.write_text("{not json")
    assert JsonSettingsStore(path).load() == {}
    path.write_text("[1, 2]")
    assert JsonSettingsStore(path).load() == {}


def test_memory_store_returns_copies() -> None:
    store = MemorySettingsStore({"heatmapConfig": {"thresholdGood": 5}})
    loaded = store.load()
    loaded["heatmapConfig"]["thresholdGood"] = 99
    assert store.values["heatmapConfig"]["thresholdGood"] == 5


def test_config_from_dict_is_lenient() -> None:
    cfg = HeatmapConfig.from_dict({"thresholdGood": 8, "thresholdBad": "x", "other": True})
    assert cfg.threshold_good == 8.0
    assert cfg.threshold_bad == 100.0
    assert HeatmapConfig.from_dict(None) == HeatmapConfig()


def test_config_merge_is_strict() -> None:
    base = HeatmapConfig()
    assert base.merged({}) == base
    assert base.merged({"thresholdWarning": 40}).to_dict()["thresholdWarning"] == 40.0
    with pytest.raises(CommandError) as exc:
        base.merged({"thresholdGood": -1})
    assert exc.value.to_dict()["error"] == "thresholdGood: expected non-negative number"
    with pytest.raises(CommandError):
        base.merged({"thresholdGood": True})


def test_profiles_and_aliases() -> None:
    assert get_profile(None).name == "real"
    assert get_profile("demo").name == "minimal"
    assert get_profile("SAFE").limits.max_overlays == 20
    assert get_profile("minimal").live_attribution is False
    with pytest.raises(ValueError):
        get_profile("turbo")


def test_engine_config_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("HEATMAP_CDP_PORT", "9333")
    monkeypatch.setenv("HEATMAP_TARGET_URL", " localhost:3000 ")
    monkeypatch.setenv("HEATMAP_PROFILE", "safe")
    monkeypatch.setenv("HEATMAP_LOG_LEVEL", "debug")
    monkeypatch.delenv("HEATMAP_CDP_HOST", raising=False)
    cfg = EngineConfig.from_env()
    assert cfg.http_base == "http://127.0.0.1:9333"
    assert cfg.target_url == "localhost:3000"
    assert cfg.profile == "safe"
    assert cfg.log_level == "DEBUG"
