"""Secure geography fetch pipeline.

This module turns untrusted URLs into validated geography documents with:
- SSRF-safe URL validation, re-applied on every redirect hop
- Streaming response size enforcement
- Content-type gating
- Subresource Integrity verification
- Single-flight memoization
"""

from geofetch.fetch.cache import GeographyCache
from geofetch.fetch.config import (
    DEFAULT_SECURITY_CONFIG,
    DEVELOPMENT_SECURITY_CONFIG,
    RuntimeMode,
    SecurityConfig,
    SecurityConfigStore,
    build_security_config,
)
from geofetch.fetch.document import (
    FeatureCollection,
    GeographyDocument,
    Topology,
    parse_geography,
)
from geofetch.fetch.errors import (
    ConfigurationError,
    ErrorRecord,
    GeographyErrorKind,
    GeographyFetchError,
    GeographyValidationError,
    IntegrityError,
    LoadError,
    ParseError,
    SecurityPolicyError,
    SecurityViolation,
)
from geofetch.fetch.integrity import (
    DEFAULT_SRI_POLICY,
    IntegrityRegistry,
    SRIAlgorithm,
    SRIPolicy,
    SRIRecord,
    canonicalize_url,
    generate_integrity,
    load_sri_records,
    verify_integrity,
)
from geofetch.fetch.known_sources import KNOWN_GEOGRAPHY_SRI
from geofetch.fetch.loader import FetchedPayload, GeographyLoader
from geofetch.fetch.metrics import GeographyFetchMetrics
from geofetch.fetch.redact import redact_headers, redact_url_credentials
from geofetch.fetch.redirect import RedirectHop, open_validated_response
from geofetch.fetch.validator import ValidatedUrl, is_url_allowed, validate_url


__all__ = [
    # Loader
    "GeographyLoader",
    "FetchedPayload",
    # Cache
    "GeographyCache",
    # Config
    "RuntimeMode",
    "SecurityConfig",
    "SecurityConfigStore",
    "DEFAULT_SECURITY_CONFIG",
    "DEVELOPMENT_SECURITY_CONFIG",
    "build_security_config",
    # Validation
    "ValidatedUrl",
    "validate_url",
    "is_url_allowed",
    # Redirects
    "RedirectHop",
    "open_validated_response",
    # Documents
    "GeographyDocument",
    "Topology",
    "FeatureCollection",
    "parse_geography",
    # Integrity
    "SRIAlgorithm",
    "SRIRecord",
    "SRIPolicy",
    "DEFAULT_SRI_POLICY",
    "IntegrityRegistry",
    "KNOWN_GEOGRAPHY_SRI",
    "canonicalize_url",
    "generate_integrity",
    "load_sri_records",
    "verify_integrity",
    # Errors
    "GeographyErrorKind",
    "SecurityViolation",
    "GeographyFetchError",
    "LoadError",
    "ParseError",
    "GeographyValidationError",
    "SecurityPolicyError",
    "IntegrityError",
    "ConfigurationError",
    "ErrorRecord",
    # Metrics
    "GeographyFetchMetrics",
    # Redaction
    "redact_headers",
    "redact_url_credentials",
]
