"""Page target discovery via the DevTools HTTP endpoint (`/json/list`)."""

from __future__ import annotations

import json
import logging
from typing import Any
from urllib.error import URLError
from urllib.request import Request, urlopen

from ..config import EngineConfig
from ..errors import CdpError

logger = logging.getLogger("heatmapper.cdp")


def list_targets(config: EngineConfig) -> list[dict[str, Any]]:
    req = Request(f"{config.http_base}/json/list", headers={"User-Agent": "perf-heatmapper/0.3"})
    try:
        with urlopen(req, timeout=config.cdp_timeout) as resp:
            body = resp.read().decode(errors="replace")
    except (TimeoutError, URLError, OSError) as exc:
        raise CdpError(f"DevTools endpoint not reachable at {config.http_base}: {exc}") from exc
    try:
        data = json.loads(body)
    except ValueError as exc:
        raise CdpError(f"Invalid /json/list response: {exc}") from exc
    return [t for t in data if isinstance(t, dict)] if isinstance(data, list) else []


def pick_page_target(targets: list[dict[str, Any]], url_filter: str = "") -> dict[str, Any]:
    """First debuggable page target, optionally the first whose URL contains `url_filter`."""
    pages = [t for t in targets if t.get("type") == "page" and t.get("webSocketDebuggerUrl")]
    if url_filter:
        pages = [t for t in pages if url_filter in str(t.get("url") or "")]
    if not pages:
        suffix = f" matching {url_filter!r}" if url_filter else ""
        raise CdpError(f"No debuggable page target{suffix}")
    target = pages[0]
    logger.info("attaching to target id=%s url=%s", target.get("id"), target.get("url"))
    return target


def discover_ws_url(config: EngineConfig) -> str:
    return str(pick_page_target(list_targets(config), config.target_url)["webSocketDebuggerUrl"])


__all__ = ["discover_ws_url", "list_targets", "pick_page_target"]
