"""
Type definitions for command responses and handlers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from ..controller import MonitorController


@dataclass(slots=True)
class CommandResponse:
    """Result of one command; `payload` is the wire object sent back to the caller."""

    payload: dict[str, Any] = field(default_factory=dict)
    is_error: bool = False

    @classmethod
    def ok(cls, **fields: Any) -> CommandResponse:
        return cls(payload={"success": True, **fields})

    @classmethod
    def json(cls, data: dict[str, Any]) -> CommandResponse:
        return cls(payload=dict(data))

    @classmethod
    def error(cls, message: str, *, action: str | None = None, details: dict[str, Any] | None = None) -> CommandResponse:
        payload: dict[str, Any] = {"error": message}
        if action:
            payload["action"] = action
        if details:
            payload["details"] = details
        return cls(payload=payload, is_error=True)

    def to_dict(self, request_id: Any = None) -> dict[str, Any]:
        out = dict(self.payload)
        if request_id is not None:
            out["id"] = request_id
        return out


class CommandHandler(Protocol):
    """Protocol for command handler functions."""

    def __call__(self, controller: MonitorController, message: dict[str, Any]) -> CommandResponse: ...


__all__ = ["CommandHandler", "CommandResponse"]
