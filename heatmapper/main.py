"""
Performance heatmapper entry point.

Attaches to a page over CDP, runs the monitor on this thread, and answers JSON-lines
commands (`{"action": ...}`) from stdin on stdout. Logs go to stderr.
"""

from __future__ import annotations

import json
import logging
import queue
import sys
import threading
import time
from typing import Any

from .cdp import CdpConnection, CdpPageHost, discover_ws_url
from .config import EngineConfig, get_profile
from .controller import MonitorController
from .errors import HeatmapError
from .scheduler import Scheduler
from .server import CommandRegistry, create_default_registry
from .settings import JsonSettingsStore

logger = logging.getLogger("heatmapper")

_EOF = object()


def _write_message(payload: dict[str, Any]) -> None:
    """Write one JSON response line to stdout."""
    line = (json.dumps(payload, ensure_ascii=False) + "\n").encode()
    sys.stdout.buffer.write(line)
    sys.stdout.buffer.flush()


def _read_message(raw: bytes) -> Any:
    line = raw.strip()
    if not line:
        return None
    return json.loads(line.decode())


def _reader(inbox: queue.Queue[Any]) -> None:
    """Feed stdin lines into `inbox`; the monitor thread does all the work."""
    for raw in iter(sys.stdin.buffer.readline, b""):
        try:
            message = _read_message(raw)
        except ValueError as exc:
            inbox.put({"__invalid__": str(exc)})
            continue
        if message is not None:
            inbox.put(message)
    inbox.put(_EOF)


def _answer(registry: CommandRegistry, message: Any) -> None:
    if isinstance(message, dict) and "__invalid__" in message:
        _write_message({"error": f"invalid JSON: {message['__invalid__']}"})
        return
    _write_message(registry.dispatch(message))


def run(config: EngineConfig) -> int:
    profile = get_profile(config.profile)
    ws_url = discover_ws_url(config)
    conn = CdpConnection(ws_url, timeout=config.cdp_timeout)
    host = CdpPageHost(conn)
    host.install()

    scheduler = Scheduler()
    controller = MonitorController(host, JsonSettingsStore(config.settings_path), profile=profile, scheduler=scheduler)
    registry = create_default_registry(controller)
    controller.init()
    logger.info("monitor ready profile=%s mode=%s", profile.name, profile.mode)

    inbox: queue.Queue[Any] = queue.Queue()
    threading.Thread(target=_reader, args=(inbox,), name="heatmapper-stdin", daemon=True).start()

    try:
        while True:
            busy = host.pump() > 0
            busy = scheduler.run_pending() > 0 or busy
            while True:
                try:
                    message = inbox.get_nowait()
                except queue.Empty:
                    break
                if message is _EOF:
                    logger.info("stdin closed; shutting down")
                    return 0
                _answer(registry, message)
                busy = True
            if not busy:
                scheduler.run_pending(idle=True)
                time.sleep(config.poll_interval)
    finally:
        try:
            controller.dispose()
        except HeatmapError as exc:
            logger.warning("dispose failed: %s", exc)
        conn.close()


def main() -> None:
    config = EngineConfig.from_env()
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        stream=sys.stderr,
    )
    try:
        code = run(config)
    except (HeatmapError, ValueError) as exc:
        logger.error("heatmapper failed: %s", exc)
        code = 1
    except KeyboardInterrupt:
        code = 0
    sys.exit(code)


if __name__ == "__main__":
    main()
