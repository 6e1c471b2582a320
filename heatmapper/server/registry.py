"""
Command registry: action name -> handler dispatch table.

Every inbound message gets exactly one response object; nothing raised by a handler
escapes to the channel that delivered the message.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from ..errors import CommandError
from .types import CommandHandler, CommandResponse

if TYPE_CHECKING:
    from ..controller import MonitorController

logger = logging.getLogger("heatmapper.server")


class CommandRegistry:
    def __init__(self, controller: MonitorController) -> None:
        self.controller = controller
        self._handlers: dict[str, CommandHandler] = {}

    def register(self, action: str, handler: CommandHandler) -> None:
        self._handlers[action] = handler

    def register_many(self, handlers: dict[str, CommandHandler]) -> None:
        self._handlers.update(handlers)

    def has(self, action: str) -> bool:
        return action in self._handlers

    @property
    def actions(self) -> list[str]:
        return list(self._handlers)

    def __len__(self) -> int:
        return len(self._handlers)

    def dispatch(self, message: Any) -> dict[str, Any]:
        """Answer one command message with its wire response (request `id` echoed back)."""
        if not isinstance(message, dict):
            return CommandResponse.error("message must be an object").to_dict()
        request_id = message.get("id")
        action = message.get("action")

        try:
            if not isinstance(action, str) or not action:
                result = CommandResponse.error("Missing action")
            elif not self.has(action):
                logger.info("unknown action=%s", action)
                result = CommandResponse.error(f"Unknown action: {action}")
            else:
                logger.debug("command action=%s", action)
                result = self._handlers[action](self.controller, message)
        except CommandError as e:
            logger.info("command_error action=%s reason=%s", e.action, e.reason)
            result = CommandResponse(payload=e.to_dict(), is_error=True)
        except Exception as exc:  # noqa: BLE001
            logger.exception("command_failed action=%s", action)
            result = CommandResponse.error(str(exc) or type(exc).__name__, action=action if isinstance(action, str) else None)

        return result.to_dict(request_id)


def create_default_registry(controller: MonitorController) -> CommandRegistry:
    from .handlers import DEFAULT_HANDLERS

    registry = CommandRegistry(controller)
    registry.register_many(DEFAULT_HANDLERS)
    return registry


__all__ = ["CommandRegistry", "create_default_registry"]
