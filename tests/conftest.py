from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

import pytest

from heatmapper.errors import HostCapabilityMissing
from heatmapper.host import (
    ElementInfo,
    Handle,
    LongTaskCallback,
    LongTaskEntry,
    OverlayStyle,
    Rect,
    Viewport,
    VisibilityCallback,
    VisibilityEntry,
)
from heatmapper.scheduler import ManualClock, Scheduler


def stride_sample(items: Sequence[Any], max_count: int) -> list[Any]:
    """Evenly spaced document-order sample, as the page agent takes it."""
    if max_count <= 0 or not items:
        return []
    step = max(1, len(items) // max_count)
    return list(items[::step])[:max_count]


@dataclass
class FakeElement:
    rect: Rect
    tag: str = "div"
    dom_id: str | None = None
    classes: tuple[str, ...] = ()
    framework: str | None = None
    attached: bool = True


@dataclass
class _Sub:
    host: FakeHost
    kind: str
    observed: list[Handle] = field(default_factory=list)

    def observe(self, handles: Iterable[Handle]) -> None:
        self.observed.extend(handles)

    def disconnect(self) -> None:
        if self.kind == "longtask":
            self.host.long_task_cb = None
        else:
            self.host.visibility_cb = None


class FakeHost:
    """In-process page: elements are plain records, overlay writes are logged."""

    def __init__(self, *, long_tasks: bool = True, visibility: bool = True) -> None:
        self.elements: dict[Handle, FakeElement] = {}
        self.view = Viewport(width=1280, height=800)
        self.page_url = "https://example.test/app"
        self.supports_long_tasks = long_tasks
        self.supports_visibility = visibility
        self.long_task_cb: LongTaskCallback | None = None
        self.visibility_cb: VisibilityCallback | None = None
        self.visibility_sub: _Sub | None = None
        self.overlays: dict[Handle, dict[str, Any]] = {}
        self.ops: list[tuple[str, Handle | None]] = []
        self.fail_rects = False
        self._next = 1

    def add(self, x: float = 0, y: float = 0, w: float = 100, h: float = 100, **kw: Any) -> Handle:
        handle = self._next
        self._next += 1
        self.elements[handle] = FakeElement(rect=Rect(x, y, w, h), **kw)
        return handle

    def detach(self, handle: Handle) -> None:
        self.elements[handle].attached = False

    def emit_long_tasks(self, *entries: LongTaskEntry) -> None:
        assert self.long_task_cb is not None
        self.long_task_cb(list(entries))

    def emit_visible(self, *handles: Handle) -> None:
        assert self.visibility_cb is not None
        self.visibility_cb([VisibilityEntry(h, True, self.elements[h].rect) for h in handles])

    def _live(self, handles: Iterable[Handle]) -> list[Handle]:
        return [h for h in handles if h in self.elements and self.elements[h].attached]

    # PageHost

    def url(self) -> str:
        return self.page_url

    def viewport(self) -> Viewport:
        return self.view

    def sample_elements(self, selectors: Sequence[str], max_count: int) -> list[Handle]:
        return stride_sample(self._live(self.elements), max_count)

    def get_rects(self, handles: Iterable[Handle]) -> dict[Handle, Rect]:
        if self.fail_rects:
            raise RuntimeError("layout exploded")
        return {h: self.elements[h].rect for h in self._live(handles)}

    def attached(self, handles: Iterable[Handle]) -> set[Handle]:
        return set(self._live(handles))

    def describe(self, handles: Iterable[Handle]) -> dict[Handle, ElementInfo]:
        out = {}
        for h in self._live(handles):
            el = self.elements[h]
            out[h] = ElementInfo(tag=el.tag, dom_id=el.dom_id, classes=el.classes)
        return out

    def frameworks(self, handles: Iterable[Handle]) -> dict[Handle, str | None]:
        return {h: self.elements[h].framework for h in self._live(handles)}

    def subscribe_long_tasks(self, callback: LongTaskCallback) -> _Sub:
        if not self.supports_long_tasks:
            raise HostCapabilityMissing("longtask", "not supported")
        self.long_task_cb = callback
        return _Sub(self, "longtask")

    def observe_visibility(self, callback: VisibilityCallback) -> _Sub:
        if not self.supports_visibility:
            raise HostCapabilityMissing("visibility", "not supported")
        self.visibility_cb = callback
        self.visibility_sub = _Sub(self, "visibility")
        return self.visibility_sub

    def create_overlay(self, overlay_id: Handle) -> None:
        self.ops.append(("create", overlay_id))
        self.overlays[overlay_id] = {"hidden": True, "style": None}

    def update_overlay(self, overlay_id: Handle, style: OverlayStyle) -> None:
        self.ops.append(("update", overlay_id))
        self.overlays[overlay_id] = {"hidden": False, "style": style}

    def hide_overlay(self, overlay_id: Handle) -> None:
        self.ops.append(("hide", overlay_id))
        self.overlays[overlay_id]["hidden"] = True

    def remove_overlay(self, overlay_id: Handle) -> None:
        self.ops.append(("remove", overlay_id))
        self.overlays.pop(overlay_id, None)

    def remove_all_overlays(self) -> None:
        self.ops.append(("remove_all", None))
        self.overlays.clear()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(1_000_000.0)


@pytest.fixture
def scheduler(clock: ManualClock) -> Scheduler:
    return Scheduler(clock)


@pytest.fixture
def host() -> FakeHost:
    return FakeHost()


@pytest.fixture
def tick(clock: ManualClock, scheduler: Scheduler) -> Callable[[float], None]:
    """Move time forward in 100ms steps, draining due callbacks, then flush idle slots."""

    def _tick(ms: float) -> None:
        remaining = float(ms)
        while remaining > 0:
            delta = min(100.0, remaining)
            clock.advance(delta)
            remaining -= delta
            scheduler.run_pending()
        scheduler.run_pending(idle=True)

    return _tick


@pytest.fixture
def make_host() -> Callable[..., FakeHost]:
    return FakeHost
