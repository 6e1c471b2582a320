"""Performance heatmapper: attributes main-thread stalls to page regions and paints them."""

from .config import HeatmapConfig, Profile, get_profile
from .controller import MonitorController, MonitorState

__all__ = ["HeatmapConfig", "MonitorController", "MonitorState", "Profile", "get_profile"]

__version__ = "0.3.0"
