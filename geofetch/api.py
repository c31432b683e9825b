"""Process-wide geography loading surface.

Most applications need one loader configured from the environment. The
functions here operate on a lazily created default loader; pass a loader
to ``set_default_loader`` to replace it (tests, embedding applications).
"""

import threading
from typing import Any

from geofetch.fetch.config import SecurityConfig
from geofetch.fetch.document import GeographyDocument
from geofetch.fetch.integrity import SRIPolicy, SRIRecord
from geofetch.fetch.loader import GeographyLoader
from geofetch.fetch.validator import ValidatedUrl


_default_loader: GeographyLoader | None = None
_default_lock = threading.Lock()


def get_default_loader() -> GeographyLoader:
    """Get the default loader, building it from settings on first use."""
    global _default_loader  # noqa: PLW0603
    with _default_lock:
        if _default_loader is None:
            _default_loader = GeographyLoader.from_settings()
        return _default_loader


def set_default_loader(loader: GeographyLoader | None) -> None:
    """Replace the default loader (None rebuilds it from settings on next use)."""
    global _default_loader  # noqa: PLW0603
    with _default_lock:
        _default_loader = loader


async def get_or_fetch(url: str) -> GeographyDocument:
    """Load a geography document through the default loader."""
    return await get_default_loader().get_or_fetch(url)


def validate_url(url: object) -> ValidatedUrl:
    """Validate a URL against the default loader's security policy."""
    return get_default_loader().validate_url(url)


def configure_security(**overrides: Any) -> SecurityConfig:
    """Activate the default security config with a partial override."""
    return get_default_loader().configure_security(**overrides)


def enable_development_mode(allow_http_localhost: bool = True) -> SecurityConfig:
    """Relax HTTPS/localhost restrictions (refused in production)."""
    return get_default_loader().enable_development_mode(
        allow_http_localhost=allow_http_localhost
    )


def add_custom_sri(url: str, record: SRIRecord) -> None:
    """Register an SRI record with the default loader."""
    get_default_loader().add_custom_sri(url, record)


def enable_strict_sri() -> SRIPolicy:
    """Require an SRI record for every URL the default loader fetches."""
    return get_default_loader().enable_strict_sri()


def disable_sri() -> SRIPolicy:
    """Turn off SRI enforcement on the default loader."""
    return get_default_loader().disable_sri()
