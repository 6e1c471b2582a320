"""Chrome DevTools Protocol hosting: transport, target discovery, page agent, PageHost."""

from .connection import CdpConnection
from .discovery import discover_ws_url
from .host import CdpPageHost

__all__ = ["CdpConnection", "CdpPageHost", "discover_ws_url"]
