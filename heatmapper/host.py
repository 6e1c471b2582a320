"""Boundary between the engine and the page it instruments.

Element handles are plain ints issued by the host; the engine never sees platform objects.
Any handle may become detached at any time: hosts drop it from `get_rects()`/`attached()`
results rather than raising.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any, Protocol

Handle = int


@dataclass(frozen=True, slots=True)
class Rect:
    x: float
    y: float
    width: float
    height: float

    @property
    def left(self) -> float:
        return self.x

    @property
    def top(self) -> float:
        return self.y

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def area(self) -> float:
        return max(0.0, self.width) * max(0.0, self.height)

    @classmethod
    def from_dict(cls, raw: Any) -> Rect | None:
        if not isinstance(raw, dict):
            return None
        try:
            return cls(
                x=float(raw.get("x", raw.get("left", 0.0))),
                y=float(raw.get("y", raw.get("top", 0.0))),
                width=float(raw.get("width", 0.0)),
                height=float(raw.get("height", 0.0)),
            )
        except (TypeError, ValueError):
            return None


@dataclass(frozen=True, slots=True)
class Viewport:
    width: float
    height: float
    scroll_x: float = 0.0
    scroll_y: float = 0.0

    def overlaps(self, rect: Rect) -> bool:
        return (
            rect.bottom >= 0
            and rect.top <= self.height
            and rect.right >= 0
            and rect.left <= self.width
            and rect.width > 0
            and rect.height > 0
        )


@dataclass(frozen=True, slots=True)
class ElementInfo:
    tag: str
    dom_id: str | None = None
    classes: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class LongTaskEntry:
    """Raw long-task notification as delivered by the host."""

    duration: float
    start_time: float
    attribution: str = "unknown"


@dataclass(frozen=True, slots=True)
class VisibilityEntry:
    handle: Handle
    intersecting: bool
    rect: Rect | None = None


@dataclass(frozen=True, slots=True)
class OverlayStyle:
    left: float
    top: float
    width: float
    height: float
    background: str
    border: str
    severity: str
    badge: str | None = None
    tooltip: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "left": self.left,
            "top": self.top,
            "width": self.width,
            "height": self.height,
            "background": self.background,
            "border": self.border,
            "severity": self.severity,
            "badge": self.badge,
            "tooltip": self.tooltip,
        }


class Subscription(Protocol):
    def disconnect(self) -> None: ...


class VisibilityObservation(Protocol):
    def observe(self, handles: Iterable[Handle]) -> None: ...

    def disconnect(self) -> None: ...


LongTaskCallback = Callable[[list[LongTaskEntry]], None]
VisibilityCallback = Callable[[list[VisibilityEntry]], None]


class PageHost(Protocol):
    def url(self) -> str: ...

    def viewport(self) -> Viewport: ...

    def sample_elements(self, selectors: Sequence[str], max_count: int) -> list[Handle]: ...

    def get_rects(self, handles: Iterable[Handle]) -> dict[Handle, Rect]: ...

    def attached(self, handles: Iterable[Handle]) -> set[Handle]: ...

    def describe(self, handles: Iterable[Handle]) -> dict[Handle, ElementInfo]: ...

    def frameworks(self, handles: Iterable[Handle]) -> dict[Handle, str | None]: ...

    def subscribe_long_tasks(self, callback: LongTaskCallback) -> Subscription: ...

    def observe_visibility(self, callback: VisibilityCallback) -> VisibilityObservation: ...

    def create_overlay(self, overlay_id: Handle) -> None: ...

    def update_overlay(self, overlay_id: Handle, style: OverlayStyle) -> None: ...

    def hide_overlay(self, overlay_id: Handle) -> None: ...

    def remove_overlay(self, overlay_id: Handle) -> None: ...

    def remove_all_overlays(self) -> None: ...


__all__ = [
    "ElementInfo",
    "Handle",
    "LongTaskCallback",
    "LongTaskEntry",
    "OverlayStyle",
    "PageHost",
    "Rect",
    "Subscription",
    "Viewport",
    "VisibilityCallback",
    "VisibilityEntry",
    "VisibilityObservation",
]
