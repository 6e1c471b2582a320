from __future__ import annotations

import json
from typing import Any

import pytest
import websocket

from heatmapper.cdp.agent import BINDING_NAME, PAGE_AGENT_SOURCE
from heatmapper.cdp.connection import CdpConnection
from heatmapper.cdp.discovery import pick_page_target
from heatmapper.cdp.host import CdpPageHost
from heatmapper.errors import CdpError, HostCapabilityMissing
from heatmapper.host import LongTaskEntry, OverlayStyle, Rect


class DummyWs:
    """websocket-client stand-in: scripted inbound frames, recorded outbound frames."""

    def __init__(self, inbound: list[dict[str, Any]] | None = None) -> None:
        self.inbound = [json.dumps(m) for m in inbound or []]
        self.sent: list[dict[str, Any]] = []

    def settimeout(self, value: float) -> None:
        pass

    def send(self, raw: str) -> None:
        self.sent.append(json.loads(raw))

    def recv(self) -> str:
        if not self.inbound:
            raise websocket.WebSocketTimeoutException("timed out")
        return self.inbound.pop(0)

    def close(self) -> None:
        pass


def test_connection_send_routes_events_seen_while_waiting() -> None:
    ws = DummyWs([{"method": "Runtime.consoleAPICalled", "params": {"type": "log"}}, {"id": 1, "result": {"ok": 1}}])
    conn = CdpConnection("ws://dummy", timeout=0.2, ws=ws)
    seen: list[dict[str, Any]] = []
    conn.set_event_sink(seen.append)
    assert conn.send("Runtime.enable") == {"ok": 1}
    assert ws.sent == [{"id": 1, "method": "Runtime.enable"}]
    assert seen == [{"method": "Runtime.consoleAPICalled", "params": {"type": "log"}}]


def test_connection_error_and_timeout_raise_cdp_error() -> None:
    conn = CdpConnection("ws://dummy", timeout=0.2, ws=DummyWs([{"id": 1, "error": {"message": "nope"}}]))
    with pytest.raises(CdpError, match="nope"):
        conn.send("Runtime.evaluate", {"expression": "1"})
    with pytest.raises(CdpError, match="timed out"):
        conn.send("Runtime.evaluate", {"expression": "1"})


def test_connection_drain_routes_events_to_sink() -> None:
    ws = DummyWs([{"method": "Runtime.bindingCalled", "params": {"name": "x"}}, {"method": "Page.loadEventFired"}])
    conn = CdpConnection("ws://dummy", ws=ws)
    seen: list[str] = []
    conn.set_event_sink(lambda ev: seen.append(ev["method"]))
    assert conn.drain_events() == 2
    assert seen == ["Runtime.bindingCalled", "Page.loadEventFired"]


class DummyConn:
    """Answers Runtime.evaluate by looking up the agent call in `results`."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, Any] | None]] = []
        self.results: dict[str, Any] = {}
        self.agent_present = True
        self.sink = None
        self.events: list[dict[str, Any]] = []

    def set_event_sink(self, sink) -> None:
        self.sink = sink

    def drain_events(self, *, max_messages: int = 50) -> int:
        n = 0
        while self.events and n < max_messages:
            self.sink(self.events.pop(0))
            n += 1
        return n

    def send(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        self.calls.append((method, params))
        if method != "Runtime.evaluate":
            return {}
        expr = (params or {}).get("expression", "")
        if expr == PAGE_AGENT_SOURCE:
            self.agent_present = True
            return {"result": {"type": "object", "value": {"ok": True, "version": "3"}}}
        if expr == "window.location.href":
            return {"result": {"type": "string", "value": "https://example.test/"}}
        if "throw" in expr:
            return {"result": {"type": "object"}, "exceptionDetails": {"text": "Uncaught", "exception": {"description": "Error: boom"}}}
        if not self.agent_present:
            return {"result": {"type": "string", "value": "__heatmapAgentMissing"}}
        for key, value in self.results.items():
            if f"a.{key}(" in expr:
                if value is None:
                    return {"result": {"type": "undefined"}}
                return {"result": {"type": "object", "value": value}}
        return {"result": {"type": "undefined"}}

    def binding(self, kind: str, entries: list[dict[str, Any]]) -> None:
        payload = json.dumps({"kind": kind, "entries": entries})
        self.events.append({"method": "Runtime.bindingCalled", "params": {"name": BINDING_NAME, "payload": payload}})


def test_install_registers_binding_and_injects_agent() -> None:
    conn = DummyConn()
    host = CdpPageHost(conn)
    host.install()
    methods = [m for m, _ in conn.calls]
    assert methods[:2] == ["Runtime.enable", "Runtime.addBinding"]
    assert conn.calls[1][1] == {"name": BINDING_NAME}
    assert conn.sink is not None
    assert host.url() == "https://example.test/"


def test_eval_js_normalizes_undefined_and_raises_on_exceptions() -> None:
    host = CdpPageHost(DummyConn())
    assert host.eval_js("undefined") is None
    with pytest.raises(CdpError, match="Error: boom"):
        host.eval_js("throw new Error('boom')")


def test_queries_convert_wire_shapes() -> None:
    conn = DummyConn()
    conn.results = {
        "rects": {"3": {"x": 1, "y": 2, "width": 30, "height": 40}},
        "attached": [3],
        "describe": {"3": {"tag": "section", "id": "", "classes": ["a"]}},
        "frameworks": {"3": "React"},
        "viewport": {"width": 800, "height": 600, "scrollX": 0, "scrollY": 50},
        "sample": [3, 4],
    }
    host = CdpPageHost(conn)
    assert host.get_rects([3, 4]) == {3: Rect(1, 2, 30, 40)}
    assert host.attached([3, 4]) == {3}
    info = host.describe([3])[3]
    assert (info.tag, info.dom_id, info.classes) == ("section", None, ("a",))
    assert host.frameworks([3]) == {3: "React"}
    assert host.viewport().scroll_y == 50
    assert host.sample_elements(["div"], 20) == [3, 4]
    assert host.get_rects([]) == {}


def test_missing_capability_raises() -> None:
    conn = DummyConn()
    conn.results = {"longtasks.start": {"ok": False, "reason": "no longtask"}}
    host = CdpPageHost(conn)
    with pytest.raises(HostCapabilityMissing, match="no longtask"):
        host.subscribe_long_tasks(lambda entries: None)


def test_pump_dispatches_binding_batches() -> None:
    conn = DummyConn()
    conn.results = {"longtasks.start": {"ok": True}, "visibility.start": {"ok": True}}
    host = CdpPageHost(conn)
    host.install()
    tasks: list[list[LongTaskEntry]] = []
    seen: list[int] = []
    host.subscribe_long_tasks(tasks.append)
    host.observe_visibility(lambda entries: seen.extend(e.handle for e in entries if e.intersecting))

    conn.binding("longtask", [{"duration": 75, "startTime": 10, "attribution": "self"}])
    conn.binding("visibility", [{"id": 9, "intersecting": True, "rect": {"x": 0, "y": 0, "width": 50, "height": 50}}])
    conn.events.append({"method": "Runtime.bindingCalled", "params": {"name": "other", "payload": "{}"}})

    assert host.pump() == 2
    assert tasks == [[LongTaskEntry(75.0, 10.0, "self")]]
    assert seen == [9]


def test_agent_is_reinstalled_after_navigation() -> None:
    conn = DummyConn()
    conn.results = {"overlay.create": True}
    host = CdpPageHost(conn)
    host.install()
    conn.agent_present = False
    host.create_overlay(5)
    assert host.installs == 2
    evals = [p["expression"] for m, p in conn.calls if m == "Runtime.evaluate"]
    assert evals.count(PAGE_AGENT_SOURCE) == 2
    assert "a.overlay.create(5)" in evals[-1]


def test_overlay_update_sends_style() -> None:
    conn = DummyConn()
    host = CdpPageHost(conn)
    style = OverlayStyle(1, 2, 3, 4, "rgba(0, 0, 0, 0.4)", "rgba(0, 0, 0, 0.8)", "bad", "120ms", None)
    host.update_overlay(7, style)
    expr = conn.calls[-1][1]["expression"]
    assert "a.overlay.update(7, " in expr
    assert '"badge": "120ms"' in expr


def test_pick_page_target_filters_by_url() -> None:
    targets = [
        {"type": "service_worker", "url": "https://a.test/sw.js", "webSocketDebuggerUrl": "ws://sw"},
        {"type": "page", "url": "https://a.test/", "webSocketDebuggerUrl": "ws://a"},
        {"type": "page", "url": "http://localhost:3000/", "webSocketDebuggerUrl": "ws://b"},
    ]
    assert pick_page_target(targets)["webSocketDebuggerUrl"] == "ws://a"
    assert pick_page_target(targets, "localhost:3000")["webSocketDebuggerUrl"] == "ws://b"
    with pytest.raises(CdpError):
        pick_page_target(targets, "nowhere")
