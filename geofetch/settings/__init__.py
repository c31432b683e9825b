"""Environment settings loading."""

from .app import GeofetchSettings, get_settings


__all__ = ["GeofetchSettings", "get_settings"]
