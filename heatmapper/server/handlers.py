"""Default handlers for the monitor command surface."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from ..errors import CommandError
from .types import CommandResponse

if TYPE_CHECKING:
    from ..controller import MonitorController


def handle_ping(controller: MonitorController, message: dict[str, Any]) -> CommandResponse:
    return CommandResponse.ok()


def handle_toggle(controller: MonitorController, message: dict[str, Any]) -> CommandResponse:
    return CommandResponse.json({"active": controller.toggle()})


def handle_get_status(controller: MonitorController, message: dict[str, Any]) -> CommandResponse:
    return CommandResponse.json(controller.status())


def handle_update_config(controller: MonitorController, message: dict[str, Any]) -> CommandResponse:
    if "config" not in message:
        raise CommandError(action="updateConfig", reason="missing config")
    controller.update_config(message.get("config"))
    return CommandResponse.ok()


def handle_export_data(controller: MonitorController, message: dict[str, Any]) -> CommandResponse:
    return CommandResponse.json({"data": controller.export_data()})


DEFAULT_HANDLERS = {
    "ping": handle_ping,
    "toggle": handle_toggle,
    "getStatus": handle_get_status,
    "updateConfig": handle_update_config,
    "exportData": handle_export_data,
}

__all__ = ["DEFAULT_HANDLERS"]
