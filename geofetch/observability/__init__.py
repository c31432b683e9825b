"""Observability module for structured logging."""

from geofetch.observability.logging import configure_logging, parse_log_level


__all__ = [
    "configure_logging",
    "parse_log_level",
]
