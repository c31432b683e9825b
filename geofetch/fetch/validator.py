"""URL security validation (SSRF defense).

Every URL the pipeline touches, including each redirect target, passes
through ``validate_url`` before any network activity. The function is safe
to call with attacker-controlled input: every failure path ends in a typed
``GeographyFetchError``.
"""

import re

import httpx
import structlog
from pydantic import BaseModel, ConfigDict

from geofetch.fetch.addresses import (
    normalize_hostname,
    parse_ip_literal,
    private_address_label,
)
from geofetch.fetch.config import RuntimeMode, SecurityConfig
from geofetch.fetch.constants import COMPONENT_FETCH, LOCALHOST_HOSTNAMES
from geofetch.fetch.errors import (
    GeographyValidationError,
    SecurityPolicyError,
    SecurityViolation,
)
from geofetch.fetch.redact import redact_url_credentials


logger = structlog.get_logger()

MAX_PORT = 65535

# Dotted LDH labels (underscore tolerated), optional root dot; IDNs arrive as xn--
_HOSTNAME_PATTERN = re.compile(r"^[a-z0-9_-]+(\.[a-z0-9_-]+)*\.?$")


class ValidatedUrl(BaseModel):
    """A URL that passed the security policy."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    url: str
    scheme: str
    host: str
    port: int | None = None

    @property
    def is_localhost(self) -> bool:
        """Check if the URL targets the local machine."""
        return self.host in LOCALHOST_HOSTNAMES


def _parse_absolute_url(url: str) -> tuple[httpx.URL, str]:
    # Same parser as the transport, so the validated host is the host dialed.
    try:
        parsed = httpx.URL(url)
        host = normalize_hostname(parsed.host)
    except (httpx.InvalidURL, ValueError, UnicodeError) as e:
        msg = f"Invalid URL format: {redact_url_credentials(url)}"
        raise GeographyValidationError(msg, source_url=url, cause=e) from e

    if not parsed.scheme:
        msg = f"Invalid URL format: {redact_url_credentials(url)} is not absolute"
        raise GeographyValidationError(msg, source_url=url)
    return parsed, host


def _check_host_and_port(url: str, parsed: httpx.URL, host: str) -> None:
    if parse_ip_literal(host) is None:
        raw_host = parsed.raw_host.decode("ascii").lower()
        if not _HOSTNAME_PATTERN.match(raw_host):
            redacted = redact_url_credentials(url)
            msg = f"Invalid URL format: {redacted} has an invalid host"
            raise GeographyValidationError(msg, source_url=url)

    port = parsed.port
    if port is not None and not 1 <= port <= MAX_PORT:
        msg = f"Invalid URL format: port {port} is out of range"
        raise GeographyValidationError(msg, source_url=url, details={"port": port})


def _check_protocol(
    url: str,
    scheme: str,
    host: str,
    config: SecurityConfig,
    runtime_mode: RuntimeMode,
) -> None:
    if config.strict_https_only:
        if scheme != "https":
            msg = (
                f"Strict HTTPS-only mode: {scheme}: is not allowed. "
                "Only HTTPS is permitted."
            )
            raise SecurityPolicyError(
                SecurityViolation.PROTOCOL, msg, source_url=url
            )
        return

    if scheme not in config.allowed_protocols:
        allowed = ", ".join(f"{p}:" for p in config.allowed_protocols)
        msg = f"Unsupported protocol: {scheme}:. Only {allowed} are allowed."
        raise SecurityPolicyError(SecurityViolation.PROTOCOL, msg, source_url=url)

    if scheme != "http":
        return

    if not config.allow_http_localhost:
        msg = (
            "HTTP protocol is disabled for security. "
            "Use HTTPS or enable development mode explicitly."
        )
        raise SecurityPolicyError(SecurityViolation.PROTOCOL, msg, source_url=url)

    if host not in LOCALHOST_HOSTNAMES:
        msg = "HTTP protocol is only allowed for localhost. Use HTTPS for remote URLs."
        raise SecurityPolicyError(SecurityViolation.PROTOCOL, msg, source_url=url)

    if runtime_mode.is_production:
        msg = "HTTP localhost access is not allowed in production"
        raise SecurityPolicyError(SecurityViolation.LOCALHOST, msg, source_url=url)

    logger.warning(
        "http_localhost_in_use",
        component=COMPONENT_FETCH,
        url=redact_url_credentials(url),
        runtime_mode=runtime_mode.value,
    )


def validate_url(
    url: object,
    config: SecurityConfig,
    runtime_mode: RuntimeMode,
) -> ValidatedUrl:
    """Validate a geography URL against the security policy.

    Args:
        url: Untrusted URL supplied by the caller or a redirect.
        config: Security configuration snapshot.
        runtime_mode: Runtime mode the process was started in.

    Returns:
        The validated URL with its normalized host.

    Raises:
        GeographyValidationError: If the URL is empty or malformed.
        SecurityPolicyError: If the URL violates the security policy.
    """
    if not isinstance(url, str) or not url.strip():
        msg = "URL must be a non-empty string"
        raise GeographyValidationError(msg)

    candidate = url.strip()
    parsed, host = _parse_absolute_url(candidate)
    scheme = parsed.scheme.lower()

    _check_protocol(candidate, scheme, host, config, runtime_mode)

    if not host:
        msg = f"Invalid URL format: {redact_url_credentials(candidate)} has no host"
        raise GeographyValidationError(msg, source_url=candidate)

    _check_host_and_port(candidate, parsed, host)

    if parsed.userinfo:
        msg = "URLs carrying credentials are not allowed"
        raise SecurityPolicyError(
            SecurityViolation.CREDENTIALS, msg, source_url=candidate
        )

    if host in LOCALHOST_HOSTNAMES and runtime_mode.is_production:
        msg = "Localhost access is not allowed in production"
        raise SecurityPolicyError(
            SecurityViolation.LOCALHOST, msg, source_url=candidate
        )

    label = private_address_label(host)
    if label is not None:
        msg = f"Access to private IP address {host} ({label}) is not allowed"
        raise SecurityPolicyError(
            SecurityViolation.PRIVATE_ADDRESS,
            msg,
            source_url=candidate,
            details={"range": label},
        )

    return ValidatedUrl(url=candidate, scheme=scheme, host=host, port=parsed.port)


def is_url_allowed(
    url: object,
    config: SecurityConfig,
    runtime_mode: RuntimeMode,
) -> bool:
    """Check a URL against the policy without raising.

    Args:
        url: Untrusted URL.
        config: Security configuration snapshot.
        runtime_mode: Runtime mode the process was started in.

    Returns:
        True if the URL passes validation.
    """
    try:
        validate_url(url, config, runtime_mode)
    except (GeographyValidationError, SecurityPolicyError) as e:
        logger.debug(
            "url_rejected",
            component=COMPONENT_FETCH,
            error_kind=e.error_kind.value,
            reason=e.message,
        )
        return False
    return True
