"""PageHost backed by a live page over CDP.

Queries and overlay writes are `Runtime.evaluate` calls into the page agent. Observer
batches arrive as `Runtime.bindingCalled` events; they are buffered by the connection's
event sink and only dispatched from `pump()`, so engine callbacks never run nested inside
another CDP round-trip.
"""

from __future__ import annotations

import json
import logging
from collections import deque
from collections.abc import Iterable, Sequence
from typing import Any

from ..errors import CdpError, HostCapabilityMissing
from ..host import (
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
from .agent import BINDING_NAME, PAGE_AGENT_SOURCE
from .connection import CdpConnection

logger = logging.getLogger("heatmapper.cdp")

_MISSING = "__heatmapAgentMissing"


class _LongTaskSubscription:
    def __init__(self, host: CdpPageHost) -> None:
        self._host = host

    def disconnect(self) -> None:
        self._host._stop_long_tasks()


class _VisibilityObservation:
    def __init__(self, host: CdpPageHost) -> None:
        self._host = host

    def observe(self, handles: Iterable[Handle]) -> None:
        ids = list(handles)
        if ids:
            self._host.call("visibility.observe", ids)

    def disconnect(self) -> None:
        self._host._stop_visibility()


class CdpPageHost:
    def __init__(self, conn: CdpConnection, *, max_buffered: int = 500) -> None:
        self.conn = conn
        self._batches: deque[dict[str, Any]] = deque(maxlen=max_buffered)
        self._long_task_cb: LongTaskCallback | None = None
        self._visibility_cb: VisibilityCallback | None = None
        self.installs = 0

    # ------------------------------------------------------------------
    # Agent plumbing
    # ------------------------------------------------------------------

    def install(self) -> None:
        """Enable Runtime, register the binding and inject the page agent."""
        self.conn.send("Runtime.enable")
        self.conn.send("Runtime.addBinding", {"name": BINDING_NAME})
        self.conn.set_event_sink(self._on_event)
        res = self.eval_js(PAGE_AGENT_SOURCE)
        self.installs += 1
        logger.info("page agent installed version=%s already=%s", (res or {}).get("version"), (res or {}).get("already"))

    def _reinstall(self) -> None:
        logger.info("page agent missing (navigation?); reinstalling")
        self.eval_js(PAGE_AGENT_SOURCE)
        self.installs += 1
        # Observers lived in the old document; restart the ones the engine still holds.
        if self._long_task_cb is not None:
            self.call("longtasks.start")
        if self._visibility_cb is not None:
            self.call("visibility.start")

    def eval_js(self, expression: str) -> Any:
        result = self.conn.send(
            "Runtime.evaluate",
            {"expression": expression, "returnByValue": True, "awaitPromise": True},
        )
        details = result.get("exceptionDetails")
        if isinstance(details, dict):
            exc = details.get("exception") or {}
            raise CdpError(f"page script failed: {exc.get('description') or details.get('text') or 'error'}")
        value = result.get("result")
        if not isinstance(value, dict):
            return None
        # CDP reports undefined/null as typed objects without "value".
        if value.get("type") == "undefined" or value.get("subtype") == "null":
            return None
        return value.get("value")

    def call(self, path: str, *args: Any) -> Any:
        """Invoke `__heatmapAgent.<path>(*args)`; reinstalls the agent once if the page lost it."""
        encoded = ", ".join(json.dumps(a) for a in args)
        expression = (
            "(() => { const a = globalThis.__heatmapAgent;"
            f" if (!a) return {json.dumps(_MISSING)};"
            f" return a.{path}({encoded}); }})()"
        )
        value = self.eval_js(expression)
        if value == _MISSING:
            self._reinstall()
            value = self.eval_js(expression)
        return value

    def _on_event(self, event: dict[str, Any]) -> None:
        if event.get("method") != "Runtime.bindingCalled":
            return
        params = event.get("params") or {}
        if params.get("name") != BINDING_NAME:
            return
        try:
            batch = json.loads(params.get("payload") or "")
        except ValueError:
            return
        if isinstance(batch, dict):
            self._batches.append(batch)

    def pump(self, max_messages: int = 200) -> int:
        """Read pending CDP events and dispatch observer batches; returns batches dispatched."""
        self.conn.drain_events(max_messages=max_messages)
        dispatched = 0
        while self._batches:
            batch = self._batches.popleft()
            entries = batch.get("entries") if isinstance(batch.get("entries"), list) else []
            kind = batch.get("kind")
            if kind == "longtask" and self._long_task_cb is not None:
                self._long_task_cb([_long_task(e) for e in entries if isinstance(e, dict)])
                dispatched += 1
            elif kind == "visibility" and self._visibility_cb is not None:
                self._visibility_cb([v for v in (_visibility(e) for e in entries) if v is not None])
                dispatched += 1
        return dispatched

    # ------------------------------------------------------------------
    # PageHost
    # ------------------------------------------------------------------

    def url(self) -> str:
        return str(self.eval_js("window.location.href") or "")

    def viewport(self) -> Viewport:
        raw = self.call("viewport") or {}
        return Viewport(
            width=float(raw.get("width") or 0),
            height=float(raw.get("height") or 0),
            scroll_x=float(raw.get("scrollX") or 0),
            scroll_y=float(raw.get("scrollY") or 0),
        )

    def sample_elements(self, selectors: Sequence[str], max_count: int) -> list[Handle]:
        raw = self.call("sample", list(selectors), int(max_count))
        return [int(h) for h in raw or []]

    def get_rects(self, handles: Iterable[Handle]) -> dict[Handle, Rect]:
        ids = list(handles)
        if not ids:
            return {}
        out: dict[Handle, Rect] = {}
        for key, raw in (self.call("rects", ids) or {}).items():
            rect = Rect.from_dict(raw)
            if rect is not None:
                out[int(key)] = rect
        return out

    def attached(self, handles: Iterable[Handle]) -> set[Handle]:
        ids = list(handles)
        if not ids:
            return set()
        return {int(h) for h in self.call("attached", ids) or []}

    def describe(self, handles: Iterable[Handle]) -> dict[Handle, ElementInfo]:
        ids = list(handles)
        if not ids:
            return {}
        out: dict[Handle, ElementInfo] = {}
        for key, raw in (self.call("describe", ids) or {}).items():
            if isinstance(raw, dict):
                out[int(key)] = ElementInfo(
                    tag=str(raw.get("tag") or ""),
                    dom_id=raw.get("id") or None,
                    classes=tuple(str(c) for c in raw.get("classes") or ()),
                )
        return out

    def frameworks(self, handles: Iterable[Handle]) -> dict[Handle, str | None]:
        ids = list(handles)
        if not ids:
            return {}
        return {int(k): v for k, v in (self.call("frameworks", ids) or {}).items()}

    def subscribe_long_tasks(self, callback: LongTaskCallback) -> _LongTaskSubscription:
        res = self.call("longtasks.start") or {}
        if not res.get("ok"):
            raise HostCapabilityMissing("longtask", str(res.get("reason") or ""))
        self._long_task_cb = callback
        return _LongTaskSubscription(self)

    def _stop_long_tasks(self) -> None:
        self._long_task_cb = None
        self.call("longtasks.stop")

    def observe_visibility(self, callback: VisibilityCallback) -> _VisibilityObservation:
        res = self.call("visibility.start") or {}
        if not res.get("ok"):
            raise HostCapabilityMissing("visibility", str(res.get("reason") or ""))
        self._visibility_cb = callback
        return _VisibilityObservation(self)

    def _stop_visibility(self) -> None:
        self._visibility_cb = None
        self.call("visibility.stop")

    def create_overlay(self, overlay_id: Handle) -> None:
        self.call("overlay.create", overlay_id)

    def update_overlay(self, overlay_id: Handle, style: OverlayStyle) -> None:
        self.call("overlay.update", overlay_id, style.to_dict())

    def hide_overlay(self, overlay_id: Handle) -> None:
        self.call("overlay.hide", overlay_id)

    def remove_overlay(self, overlay_id: Handle) -> None:
        self.call("overlay.remove", overlay_id)

    def remove_all_overlays(self) -> None:
        self.call("overlay.removeAll")


def _long_task(raw: dict[str, Any]) -> LongTaskEntry:
    return LongTaskEntry(
        duration=float(raw.get("duration") or 0.0),
        start_time=float(raw.get("startTime") or 0.0),
        attribution=str(raw.get("attribution") or "unknown"),
    )


def _visibility(raw: Any) -> VisibilityEntry | None:
    if not isinstance(raw, dict) or raw.get("id") is None:
        return None
    return VisibilityEntry(
        handle=int(raw["id"]),
        intersecting=bool(raw.get("intersecting")),
        rect=Rect.from_dict(raw.get("rect")),
    )


__all__ = ["CdpPageHost"]
