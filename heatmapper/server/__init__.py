"""Command surface: ping, toggle, getStatus, updateConfig, exportData."""

from .registry import CommandRegistry, create_default_registry
from .types import CommandResponse

__all__ = ["CommandRegistry", "CommandResponse", "create_default_registry"]
