"""Secure loading of untrusted geography URLs (TopoJSON and GeoJSON)."""

__version__ = "0.1.0"

from geofetch.api import (  # noqa: E402
    add_custom_sri,
    configure_security,
    disable_sri,
    enable_development_mode,
    enable_strict_sri,
    get_default_loader,
    get_or_fetch,
    set_default_loader,
    validate_url,
)
from geofetch.fetch import (  # noqa: E402
    FeatureCollection,
    GeographyErrorKind,
    GeographyFetchError,
    GeographyLoader,
    RuntimeMode,
    SRIRecord,
    Topology,
)


__all__ = [
    "__version__",
    "FeatureCollection",
    "GeographyErrorKind",
    "GeographyFetchError",
    "GeographyLoader",
    "RuntimeMode",
    "SRIRecord",
    "Topology",
    "add_custom_sri",
    "configure_security",
    "disable_sri",
    "enable_development_mode",
    "enable_strict_sri",
    "get_default_loader",
    "get_or_fetch",
    "set_default_loader",
    "validate_url",
]
