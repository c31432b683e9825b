"""Subresource Integrity (SRI) verification for geography payloads.

Digests are computed over the exact bytes received and compared against a
registered ``alg-base64digest`` record. The registry holds the active
enforcement policy as an immutable snapshot, like the security config.
"""

import base64
import binascii
import hashlib
import hmac
import threading
from collections.abc import Mapping
from enum import Enum
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit, urlunsplit

import structlog
import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    model_validator,
)

from geofetch.fetch.config import RuntimeMode
from geofetch.fetch.constants import COMPONENT_FETCH
from geofetch.fetch.errors import (
    ConfigurationError,
    IntegrityError,
    SecurityPolicyError,
    SecurityViolation,
)
from geofetch.fetch.metrics import GeographyFetchMetrics
from geofetch.fetch.redact import redact_url_credentials


logger = structlog.get_logger()

_DEFAULT_PORTS = {"http": 80, "https": 443}


class SRIAlgorithm(str, Enum):
    """Digest algorithms permitted in integrity strings."""

    SHA256 = "sha256"
    SHA384 = "sha384"
    SHA512 = "sha512"

    @property
    def digest_size(self) -> int:
        """Raw digest length in bytes."""
        return hashlib.new(self.value).digest_size


class SRIRecord(BaseModel):
    """Expected digest for one resource.

    ``digest`` is accepted with or without its ``alg-`` prefix and is
    stored without it.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    algorithm: SRIAlgorithm
    digest: str = Field(min_length=1)
    enforce: bool = True

    @model_validator(mode="before")
    @classmethod
    def split_prefixed_digest(cls, data: Any) -> Any:
        """Move an ``alg-`` prefix out of the digest."""
        if not isinstance(data, dict) or not isinstance(data.get("digest"), str):
            return data
        prefix, sep, rest = data["digest"].strip().partition("-")
        if not sep:
            return {**data, "digest": data["digest"].strip()}

        prefix = prefix.lower()
        declared = data.get("algorithm")
        if isinstance(declared, SRIAlgorithm):
            declared = declared.value
        if declared is not None and str(declared).lower() != prefix:
            msg = f"Digest prefix {prefix} does not match algorithm {declared}"
            raise ValueError(msg)
        return {**data, "algorithm": prefix, "digest": rest}

    @model_validator(mode="after")
    def check_digest_length(self) -> "SRIRecord":
        """Ensure the digest is base64 of the algorithm's output size."""
        try:
            raw = base64.b64decode(self.digest, validate=True)
        except binascii.Error as e:
            msg = "Digest is not valid base64"
            raise ValueError(msg) from e
        if len(raw) != self.algorithm.digest_size:
            msg = (
                f"{self.algorithm.value} digest must be "
                f"{self.algorithm.digest_size} bytes, got {len(raw)}"
            )
            raise ValueError(msg)
        return self

    @property
    def integrity(self) -> str:
        """SRI integrity string (``alg-digest``)."""
        return f"{self.algorithm.value}-{self.digest}"

    @classmethod
    def from_integrity(cls, integrity: str, enforce: bool = True) -> "SRIRecord":
        """Build a record from an ``alg-digest`` integrity string.

        Args:
            integrity: Integrity string such as ``sha384-...``.
            enforce: Whether the digest is verified.

        Returns:
            SRIRecord instance.

        Raises:
            ValueError: If the string is not a valid integrity string.
        """
        prefix, sep, _ = integrity.strip().partition("-")
        if not sep:
            msg = f"Integrity string must look like alg-digest: {integrity!r}"
            raise ValueError(msg)
        return cls(algorithm=prefix.lower(), digest=integrity, enforce=enforce)


class SRIPolicy(BaseModel):
    """SRI enforcement policy.

    With ``enforce_all`` set and ``allow_unknown`` cleared, every fetched URL
    must resolve to a record or the fetch fails.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    enforce_known: bool = True
    enforce_all: bool = False
    allow_unknown: bool = True
    custom_map: dict[str, SRIRecord] = Field(default_factory=dict)

    @property
    def requires_record(self) -> bool:
        """Check if URLs without a record are rejected."""
        return self.enforce_all and not self.allow_unknown


DEFAULT_SRI_POLICY = SRIPolicy()


def canonicalize_url(url: str) -> str:
    """Canonicalize a URL for SRI lookup.

    Canonicalization includes:
    - Removing the fragment
    - Lowercasing the scheme and host
    - Dropping the scheme's default port
    - Removing trailing slashes (except for root path)

    The query string is preserved. Unparseable input is returned unchanged.

    Args:
        url: The URL to canonicalize.

    Returns:
        Canonicalized URL string.
    """
    try:
        parsed = urlsplit(url.strip())
        port = parsed.port
    except ValueError:
        return url

    hostname = parsed.hostname
    if not parsed.scheme or not hostname:
        return url

    scheme = parsed.scheme.lower()
    netloc = f"[{hostname}]" if ":" in hostname else hostname
    if port is not None and _DEFAULT_PORTS.get(scheme) != port:
        netloc = f"{netloc}:{port}"
    if parsed.username is not None:
        userinfo = parsed.netloc.rpartition("@")[0]
        netloc = f"{userinfo}@{netloc}"

    path = parsed.path.rstrip("/") or "/"
    return urlunsplit((scheme, netloc, path, parsed.query, ""))


def compute_digest(body: bytes, algorithm: SRIAlgorithm) -> str:
    """Compute the base64 digest of a payload.

    Args:
        body: Exact payload bytes.
        algorithm: Digest algorithm.

    Returns:
        Base64-encoded digest.
    """
    raw = hashlib.new(algorithm.value, body).digest()
    return base64.b64encode(raw).decode("ascii")


def generate_integrity(
    body: bytes, algorithm: SRIAlgorithm = SRIAlgorithm.SHA384
) -> str:
    """Generate an SRI integrity string for a payload."""
    return f"{algorithm.value}-{compute_digest(body, algorithm)}"


def verify_integrity(body: bytes, record: SRIRecord, url: str) -> None:
    """Verify a payload against its SRI record.

    Args:
        body: Exact payload bytes as received.
        record: Expected digest.
        url: URL of the resource.

    Raises:
        IntegrityError: If the digest does not match.
    """
    if not record.enforce:
        logger.debug(
            "integrity_not_enforced",
            component=COMPONENT_FETCH,
            url=redact_url_credentials(url),
        )
        return

    computed = compute_digest(body, record.algorithm)
    passed = hmac.compare_digest(computed, record.digest)
    GeographyFetchMetrics.get_instance().record_integrity_check(passed)
    if passed:
        return

    algorithm = record.algorithm.value
    msg = (
        f"Subresource Integrity check failed for {redact_url_credentials(url)}. "
        f"Expected {record.integrity}, got {algorithm}-{computed}"
    )
    raise IntegrityError(
        msg,
        algorithm=algorithm,
        expected_digest=record.integrity,
        computed_digest=f"{algorithm}-{computed}",
        source_url=url,
    )


def load_sri_records(path: Path) -> dict[str, SRIRecord]:
    """Load SRI records from a YAML registry file.

    Expected layout::

        sources:
          https://example.com/world.json:
            integrity: sha384-...
            enforce: true

    Args:
        path: Path to the YAML file.

    Returns:
        Mapping of canonical URL to record.

    Raises:
        ConfigurationError: If the file is missing or malformed.
    """
    try:
        parsed = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as e:
        msg = f"Cannot read SRI registry {path}: {e}"
        raise ConfigurationError(msg, cause=e, details={"path": str(path)}) from e

    sources = parsed.get("sources") if isinstance(parsed, dict) else None
    if not isinstance(sources, dict):
        msg = f"SRI registry {path} must contain a 'sources' mapping"
        raise ConfigurationError(msg, details={"path": str(path)})

    records: dict[str, SRIRecord] = {}
    for url, entry in sources.items():
        try:
            if isinstance(entry, str):
                record = SRIRecord.from_integrity(entry)
            elif isinstance(entry, dict):
                record = SRIRecord.from_integrity(
                    str(entry.get("integrity", "")),
                    enforce=bool(entry.get("enforce", True)),
                )
            else:
                msg = "entry must be an integrity string or mapping"
                raise ValueError(msg)
        except ValueError as e:
            msg = f"Invalid SRI entry for {url} in {path}: {e}"
            raise ConfigurationError(
                msg, cause=e, details={"path": str(path), "url": str(url)}
            ) from e
        records[canonicalize_url(str(url))] = record

    logger.info(
        "sri_registry_loaded",
        component=COMPONENT_FETCH,
        path=str(path),
        record_count=len(records),
    )
    return records


class IntegrityRegistry:
    """Resolves URLs to SRI records under the active enforcement policy."""

    def __init__(
        self,
        policy: SRIPolicy | None = None,
        known_sources: Mapping[str, SRIRecord] | None = None,
    ) -> None:
        """Initialize the registry.

        Args:
            policy: Starting policy (defaults to DEFAULT_SRI_POLICY).
            known_sources: Pinned records consulted when enforce_known is set.
        """
        if known_sources is None:
            from geofetch.fetch.known_sources import KNOWN_GEOGRAPHY_SRI

            known_sources = KNOWN_GEOGRAPHY_SRI
        self._known = known_sources
        self._lock = threading.Lock()
        self._policy = policy or DEFAULT_SRI_POLICY
        self._log = logger.bind(component=COMPONENT_FETCH, subsystem="sri")

    @property
    def policy(self) -> SRIPolicy:
        """Get the current policy snapshot."""
        return self._policy

    def lookup(self, url: str) -> SRIRecord | None:
        """Find the SRI record that applies to a URL.

        Args:
            url: URL of the resource.

        Returns:
            The record, or None if the URL need not be verified.

        Raises:
            SecurityPolicyError: If the policy requires a record and none exists.
        """
        policy = self._policy
        canonical = canonicalize_url(url)

        record = policy.custom_map.get(canonical) or policy.custom_map.get(url)
        if record is not None:
            return record

        if policy.enforce_known:
            record = self._known.get(canonical) or self._known.get(url)
            if record is not None:
                return record

        if policy.requires_record:
            msg = (
                "SRI enforcement is enabled but no integrity hash is available "
                f"for {redact_url_credentials(url)}"
            )
            raise SecurityPolicyError(
                SecurityViolation.INTEGRITY_UNAVAILABLE, msg, source_url=url
            )
        return None

    def _swap(self, policy: SRIPolicy, event: str) -> SRIPolicy:
        with self._lock:
            self._policy = policy
        self._log.info(
            event,
            enforce_known=policy.enforce_known,
            enforce_all=policy.enforce_all,
            allow_unknown=policy.allow_unknown,
            custom_records=len(policy.custom_map),
        )
        return policy

    def add_custom_record(self, url: str, record: SRIRecord) -> None:
        """Register an SRI record for a URL under its canonical form."""
        with self._lock:
            current = self._policy
            custom_map = {**current.custom_map, canonicalize_url(url): record}
            self._policy = current.model_copy(update={"custom_map": custom_map})
        self._log.info(
            "sri_record_added",
            url=redact_url_credentials(url),
            algorithm=record.algorithm.value,
            enforce=record.enforce,
        )

    def configure(self, **overrides: Any) -> SRIPolicy:
        """Activate the default policy with a partial override applied.

        Args:
            **overrides: SRIPolicy field values.

        Returns:
            The activated policy.

        Raises:
            ConfigurationError: If an override is unknown or invalid.
        """
        try:
            policy = SRIPolicy.model_validate(
                {**DEFAULT_SRI_POLICY.model_dump(), **overrides}
            )
        except ValidationError as e:
            msg = f"Invalid SRI policy: {e.error_count()} error(s)"
            raise ConfigurationError(msg, cause=e) from e
        return self._swap(policy, "sri_policy_configured")

    def enable_strict(self) -> SRIPolicy:
        """Require a verified record for every fetched URL."""
        policy = self._policy.model_copy(
            update={"enforce_known": True, "enforce_all": True, "allow_unknown": False}
        )
        return self._swap(policy, "sri_strict_enabled")

    def disable(self, runtime_mode: RuntimeMode) -> SRIPolicy:
        """Turn off SRI enforcement for all sources.

        Custom records stay registered and are still verified.

        Args:
            runtime_mode: Runtime mode the process was started in.

        Returns:
            The activated policy.
        """
        if runtime_mode.is_production:
            self._log.error(
                "sri_disabled_in_production",
                runtime_mode=runtime_mode.value,
                security_downgrade=True,
            )
        else:
            self._log.warning(
                "sri_disabled",
                runtime_mode=runtime_mode.value,
                security_downgrade=True,
            )
        policy = self._policy.model_copy(
            update={
                "enforce_known": False,
                "enforce_all": False,
                "allow_unknown": True,
            }
        )
        return self._swap(policy, "sri_policy_disabled")
