"""Shared fixtures for geofetch tests."""

import logging
from collections.abc import Generator

import pytest
import structlog

from geofetch.api import set_default_loader
from geofetch.fetch.metrics import GeographyFetchMetrics


@pytest.fixture(autouse=True)
def reset_process_state() -> Generator[None, None, None]:
    """Give every test fresh metrics, default loader, and logging config."""
    GeographyFetchMetrics.reset()
    set_default_loader(None)
    yield
    GeographyFetchMetrics.reset()
    set_default_loader(None)
    structlog.reset_defaults()
    logging.getLogger().handlers.clear()
