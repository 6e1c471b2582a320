"""Raw CDP WebSocket connection (websocket-client)."""

from __future__ import annotations

import json
import logging
import socket
import time
from collections.abc import Callable
from contextlib import suppress
from typing import Any

import websocket

from ..errors import CdpError

logger = logging.getLogger("heatmapper.cdp")


def _is_timeout(exc: Exception) -> bool:
    if isinstance(exc, (TimeoutError, socket.timeout, websocket.WebSocketTimeoutException)):
        return True
    msg = str(exc).lower()
    return "timed out" in msg or "would block" in msg


class CdpConnection:
    """Low-level CDP connection: request/response plus an event sink."""

    def __init__(self, ws_url: str, timeout: float = 5.0, *, ws: Any = None) -> None:
        self.ws = ws if ws is not None else websocket.create_connection(ws_url, timeout=timeout)
        self.ws_url = ws_url
        self.timeout = timeout
        self._next_id = 1
        self._event_sink: Callable[[dict[str, Any]], None] | None = None

    def set_event_sink(self, sink: Callable[[dict[str, Any]], None] | None) -> None:
        """Route events to `sink`, including ones read while waiting for a response.

        Without a sink events are discarded. Sink errors are logged, not raised.
        """
        self._event_sink = sink

    def _push_event(self, event: dict[str, Any]) -> None:
        if not isinstance(event, dict) or not isinstance(event.get("method"), str):
            return
        sink = self._event_sink
        if sink is None:
            return
        try:
            sink(event)
        except Exception as exc:  # noqa: BLE001
            logger.warning("event sink failed method=%s: %s", event.get("method"), exc)

    def drain_events(self, *, max_messages: int = 50) -> int:
        """Read already-buffered events without blocking; returns how many were read."""
        drained = 0
        for _ in range(max(0, int(max_messages))):
            try:
                self.ws.settimeout(0.0)
                raw = self.ws.recv()
            except Exception as exc:  # noqa: BLE001
                if _is_timeout(exc):
                    break
                raise CdpError(str(exc)) from exc
            try:
                data = json.loads(raw)
            except (TypeError, ValueError):
                continue
            if isinstance(data, dict) and isinstance(data.get("method"), str) and "id" not in data:
                self._push_event(data)
                drained += 1
                continue
            # Stray response to a command nobody is waiting for.
            logger.debug("dropping unexpected message id=%s", data.get("id") if isinstance(data, dict) else None)
        return drained

    def send(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        """Send a CDP command and wait for its response."""
        msg_id = self._next_id
        self._next_id += 1
        msg: dict[str, Any] = {"id": msg_id, "method": method}
        if params:
            msg["params"] = params
        try:
            with suppress(Exception):
                self.ws.settimeout(min(2.0, max(0.5, float(self.timeout))))
            self.ws.send(json.dumps(msg))
        except Exception as exc:  # noqa: BLE001
            raise CdpError(f"{method}: {exc}") from exc
        return self._recv_until(msg_id, method)

    def _recv_until(self, expected_id: int, method: str) -> dict[str, Any]:
        deadline = time.monotonic() + self.timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise CdpError(f"{method}: CDP response timed out")
            try:
                self.ws.settimeout(min(0.5, remaining))
                raw = self.ws.recv()
            except Exception as exc:  # noqa: BLE001
                if _is_timeout(exc):
                    continue
                raise CdpError(str(exc)) from exc
            try:
                data = json.loads(raw)
            except (TypeError, ValueError):
                continue
            if not isinstance(data, dict):
                continue
            if isinstance(data.get("method"), str) and "id" not in data:
                self._push_event(data)
                continue
            if data.get("id") == expected_id:
                if "error" in data:
                    raise CdpError(f"{method}: {data['error']}")
                result = data.get("result")
                return result if isinstance(result, dict) else {}

    def close(self) -> None:
        with suppress(Exception):
            self.ws.close()


__all__ = ["CdpConnection"]
