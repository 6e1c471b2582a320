"""Error taxonomy for the heatmap engine.

- HostCapabilityMissing: the page cannot provide an observation capability; callers degrade.
- CdpError: transport-level failure talking to the browser.
- CommandError: an inbound command could not be honoured; rendered as a structured response.

Transient and repeated operation failures are not modelled as types: they are ordinary
exceptions counted by a CircuitBreaker (see safety.py).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


class HeatmapError(Exception):
    pass


class HostCapabilityMissing(HeatmapError):
    def __init__(self, capability: str, reason: str = "") -> None:
        self.capability = capability
        self.reason = reason
        super().__init__(f"{capability} unavailable" + (f": {reason}" if reason else ""))


class CdpError(HeatmapError):
    pass


@dataclass
class CommandError(HeatmapError):
    """Structured error for the command surface."""

    action: str
    reason: str
    details: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return f"[{self.action}] {self.reason}"

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"error": self.reason, "action": self.action}
        if self.details:
            out["details"] = self.details
        return out


__all__ = ["CdpError", "CommandError", "HeatmapError", "HostCapabilityMissing"]
