from __future__ import annotations

import logging
from typing import Any

import pytest

from heatmapper.controller import MonitorController
from heatmapper.scheduler import Scheduler
from heatmapper.server import CommandResponse, create_default_registry
from heatmapper.settings import MemorySettingsStore


@pytest.fixture
def controller(host, scheduler: Scheduler) -> MonitorController:
    return MonitorController(host, MemorySettingsStore(), scheduler=scheduler)


def test_ping_echoes_request_id(controller: MonitorController) -> None:
    registry = create_default_registry(controller)
    assert registry.dispatch({"action": "ping"}) == {"success": True}
    assert registry.dispatch({"action": "ping", "id": 42}) == {"success": True, "id": 42}


def test_toggle_and_get_status(controller: MonitorController) -> None:
    registry = create_default_registry(controller)
    assert registry.dispatch({"action": "toggle"}) == {"active": True}
    status = registry.dispatch({"action": "getStatus"})
    assert status["active"] is True
    assert status["state"] == "active"
    assert status["profile"] == "real"
    assert status["metrics"]["overlaysActive"] == 0
    assert registry.dispatch({"action": "toggle"}) == {"active": False}


def test_update_config_success_and_errors(controller: MonitorController) -> None:
    registry = create_default_registry(controller)
    assert registry.dispatch({"action": "updateConfig", "config": {"thresholdGood": 10}}) == {"success": True}
    assert controller.config.threshold_good == 10.0

    missing = registry.dispatch({"action": "updateConfig"})
    assert missing["error"] == "missing config"

    not_object = registry.dispatch({"action": "updateConfig", "config": [1, 2]})
    assert not_object["error"] == "config must be an object"

    unknown = registry.dispatch({"action": "updateConfig", "config": {"colour": "red"}, "id": "x"})
    assert unknown["error"] == "unknown config keys: colour"
    assert unknown["action"] == "updateConfig"
    assert unknown["id"] == "x"

    bad_type = registry.dispatch({"action": "updateConfig", "config": {"showTooltips": "yes"}})
    assert bad_type["error"] == "showTooltips: expected boolean"
    assert controller.config.show_tooltips is True


def test_export_data_wraps_payload(controller: MonitorController) -> None:
    registry = create_default_registry(controller)
    out = registry.dispatch({"action": "exportData"})
    assert set(out["data"]) == {"timestamp", "sourceUrl", "summary", "longTasks", "elements"}


def test_unknown_and_malformed_messages(controller: MonitorController) -> None:
    registry = create_default_registry(controller)
    assert registry.dispatch({"action": "selfDestruct"}) == {"error": "Unknown action: selfDestruct"}
    assert registry.dispatch({})["error"] == "Missing action"
    assert registry.dispatch(["ping"])["error"] == "message must be an object"


def test_handler_crash_becomes_error_response(
    controller: MonitorController, caplog: pytest.LogCaptureFixture
) -> None:
    registry = create_default_registry(controller)

    def boom(ctrl: MonitorController, message: dict[str, Any]) -> CommandResponse:
        raise RuntimeError("kaput")

    registry.register("boom", boom)
    with caplog.at_level(logging.ERROR, logger="heatmapper.server"):
        out = registry.dispatch({"action": "boom", "id": 1})
    assert out == {"error": "kaput", "action": "boom", "id": 1}
    assert "command_failed action=boom" in caplog.text


def test_registry_lists_default_actions(controller: MonitorController) -> None:
    registry = create_default_registry(controller)
    assert sorted(registry.actions) == ["exportData", "getStatus", "ping", "toggle", "updateConfig"]
    assert len(registry) == 5
