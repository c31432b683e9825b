"""Secure geography loading pipeline.

Ties the stages together for one fetch: URL validation, the
redirect-validating request, status and content-type gates, the
size-bounded read, SRI verification, and parsing. Results are memoized
through the single-flight cache.
"""

import asyncio
import time
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, Field

from geofetch.fetch.cache import GeographyCache
from geofetch.fetch.config import RuntimeMode, SecurityConfig, SecurityConfigStore
from geofetch.fetch.constants import COMPONENT_FETCH
from geofetch.fetch.document import GeographyDocument, parse_geography
from geofetch.fetch.errors import GeographyFetchError, LoadError
from geofetch.fetch.integrity import (
    IntegrityRegistry,
    SRIAlgorithm,
    SRIPolicy,
    SRIRecord,
    compute_digest,
    load_sri_records,
    verify_integrity,
)
from geofetch.fetch.metrics import GeographyFetchMetrics
from geofetch.fetch.reader import (
    check_content_encoding,
    check_content_type,
    check_declared_length,
    ensure_success_status,
    read_bounded,
)
from geofetch.fetch.redact import redact_url_credentials
from geofetch.fetch.redirect import RedirectHop, open_validated_response
from geofetch.fetch.validator import ValidatedUrl, is_url_allowed, validate_url


if TYPE_CHECKING:
    from geofetch.settings.app import GeofetchSettings

logger = structlog.get_logger()


class FetchedPayload(BaseModel):
    """Raw body of a completed fetch, before parsing."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    requested_url: str
    final_url: str
    status_code: int
    content_type: str
    body_bytes: bytes
    redirects: list[RedirectHop] = Field(default_factory=list)

    @property
    def body_size(self) -> int:
        """Get body size in bytes."""
        return len(self.body_bytes)


def _wrap_unexpected_error(
    error: Exception, url: object, config: SecurityConfig
) -> LoadError:
    source_url = url if isinstance(url, str) else None
    if isinstance(error, (TimeoutError, httpx.TimeoutException)):
        timeout_ms = int(config.timeout_seconds * 1000)
        msg = f"Request timeout after {timeout_ms}ms"
    elif isinstance(error, httpx.HTTPError):
        msg = f"Network error: {type(error).__name__}"
    else:
        msg = f"Unexpected error: {type(error).__name__}"
    return LoadError(msg, source_url=source_url, cause=error)


class GeographyLoader:
    """Fetches untrusted geography URLs through the security pipeline.

    Holds the security configuration store, the SRI registry, and the
    document cache. Each fetch reads one configuration snapshot and uses it
    for every redirect hop, so reconfiguration never affects a fetch that
    is already running.
    """

    def __init__(
        self,
        *,
        runtime_mode: RuntimeMode,
        security: SecurityConfigStore | None = None,
        integrity: IntegrityRegistry | None = None,
        cache: GeographyCache | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the loader.

        Args:
            runtime_mode: Runtime mode the process was started in.
            security: Security configuration store.
            integrity: SRI registry.
            cache: Document cache.
            transport: HTTP transport override (tests, custom TLS).
        """
        self._runtime_mode = runtime_mode
        self._security = security or SecurityConfigStore()
        self._integrity = integrity or IntegrityRegistry()
        self._cache = cache or GeographyCache()
        self._transport = transport
        self._metrics = GeographyFetchMetrics.get_instance()
        self._log = logger.bind(
            component=COMPONENT_FETCH,
            runtime_mode=runtime_mode.value,
        )

    @classmethod
    def from_settings(
        cls,
        settings: "GeofetchSettings | None" = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "GeographyLoader":
        """Build a loader from environment settings.

        Args:
            settings: Settings to use (loaded from the environment if None).
            transport: HTTP transport override.

        Returns:
            Configured loader.

        Raises:
            ConfigurationError: If the settings or SRI registry are invalid.
        """
        from geofetch.settings.app import get_settings

        settings = settings or get_settings()
        integrity = IntegrityRegistry()
        if settings.sri_registry_path is not None:
            for url, record in load_sri_records(settings.sri_registry_path).items():
                integrity.add_custom_record(url, record)
        if settings.strict_sri:
            integrity.enable_strict()

        return cls(
            runtime_mode=settings.runtime_mode,
            security=SecurityConfigStore(settings.security_config()),
            integrity=integrity,
            cache=GeographyCache(
                max_entries=settings.cache_max_entries,
                ttl_seconds=settings.cache_ttl_seconds,
            ),
            transport=transport,
        )

    @property
    def runtime_mode(self) -> RuntimeMode:
        """Get the runtime mode."""
        return self._runtime_mode

    @property
    def security(self) -> SecurityConfigStore:
        """Get the security configuration store."""
        return self._security

    @property
    def integrity(self) -> IntegrityRegistry:
        """Get the SRI registry."""
        return self._integrity

    @property
    def cache(self) -> GeographyCache:
        """Get the document cache."""
        return self._cache

    def validate_url(self, url: object) -> ValidatedUrl:
        """Validate a URL against the active security configuration."""
        return validate_url(url, self._security.snapshot(), self._runtime_mode)

    def is_url_allowed(self, url: object) -> bool:
        """Check a URL against the active security configuration without raising."""
        return is_url_allowed(url, self._security.snapshot(), self._runtime_mode)

    async def get_or_fetch(self, url: str) -> GeographyDocument:
        """Load a geography document, memoized per URL.

        Args:
            url: Untrusted URL.

        Returns:
            Parsed Topology or FeatureCollection.

        Raises:
            GeographyFetchError: On any validation, security, network, or
                parse failure. Failures are not cached.
        """
        return await self._cache.get_or_fetch(url, self._load)

    async def _load(self, url: str) -> GeographyDocument:
        payload = await self.fetch_payload(url)
        try:
            return parse_geography(payload.body_bytes, source_url=url)
        except GeographyFetchError as e:
            self._record_failure(e)
            raise

    def _record_failure(self, error: GeographyFetchError) -> None:
        self._metrics.record_failure(error.error_kind)
        self._log.warning(
            "geography_fetch_failed",
            url=redact_url_credentials(error.source_url or ""),
            error_kind=error.error_kind.value,
            violation=error.details.get("violation"),
            message=error.message,
        )

    async def fetch_payload(
        self, url: str, check_integrity: bool = True
    ) -> FetchedPayload:
        """Fetch a URL through the pipeline and return the verified body.

        The whole fetch, including every redirect hop and the body read, is
        bounded by one timeout.

        Args:
            url: Untrusted URL.
            check_integrity: Whether to look up and verify an SRI record.

        Returns:
            FetchedPayload with the unparsed body.

        Raises:
            GeographyFetchError: On any validation, security, or network
                failure. Transport exceptions are wrapped as LoadError.
        """
        config = self._security.snapshot()
        start_time_ns = time.perf_counter_ns()

        try:
            async with asyncio.timeout(config.timeout_seconds):
                payload = await self._fetch(url, config, check_integrity)
        except GeographyFetchError as e:
            self._record_failure(e)
            raise
        except Exception as e:  # noqa: BLE001
            error = _wrap_unexpected_error(e, url, config)
            self._record_failure(error)
            raise error from e

        duration_ms = (time.perf_counter_ns() - start_time_ns) / 1_000_000
        self._metrics.record_request(payload.status_code, payload.body_size)
        self._metrics.record_duration(duration_ms)
        self._log.info(
            "geography_fetched",
            url=redact_url_credentials(url),
            final_url=redact_url_credentials(payload.final_url),
            status_code=payload.status_code,
            bytes=payload.body_size,
            redirects=len(payload.redirects),
            duration_ms=round(duration_ms, 2),
        )
        return payload

    async def _fetch(
        self, url: str, config: SecurityConfig, check_integrity: bool
    ) -> FetchedPayload:
        max_bytes = config.max_response_size_bytes
        async with (
            httpx.AsyncClient(
                transport=self._transport,
                follow_redirects=False,
                trust_env=False,
                timeout=config.timeout_seconds,
            ) as client,
            open_validated_response(
                client, url, config=config, runtime_mode=self._runtime_mode
            ) as validated,
        ):
            response = validated.response
            ensure_success_status(response, url)
            content_type = check_content_type(
                response, config.allowed_content_types, url
            )
            check_content_encoding(response, url)
            check_declared_length(response, max_bytes, url)
            body = await read_bounded(response, max_bytes, url)
            status_code = response.status_code

        if check_integrity:
            record = self._integrity.lookup(url)
            if record is not None:
                verify_integrity(body, record, url)

        return FetchedPayload(
            requested_url=url,
            final_url=validated.final_url,
            status_code=status_code,
            content_type=content_type,
            body_bytes=body,
            redirects=list(validated.hops),
        )

    async def prefetch(self, urls: Iterable[str]) -> dict[str, GeographyFetchError]:
        """Warm the cache for several URLs concurrently.

        URLs that fail preflight validation are never requested. Failures are
        logged and returned, not raised.

        Args:
            urls: URLs to load.

        Returns:
            Mapping of URL to the error it failed with.
        """
        unique = list(dict.fromkeys(urls))
        failures: dict[str, GeographyFetchError] = {}
        allowed: list[str] = []
        for url in unique:
            try:
                self.validate_url(url)
            except GeographyFetchError as e:
                failures[url] = e
                continue
            allowed.append(url)

        results = await asyncio.gather(
            *(self.get_or_fetch(url) for url in allowed), return_exceptions=True
        )
        for url, result in zip(allowed, results, strict=True):
            if isinstance(result, GeographyFetchError):
                failures[url] = result
            elif isinstance(result, BaseException):
                raise result

        for url, error in failures.items():
            self._log.warning(
                "prefetch_failed",
                url=redact_url_credentials(url),
                error_kind=error.error_kind.value,
                message=error.message,
            )
        self._log.info(
            "prefetch_complete",
            requested=len(unique),
            loaded=len(unique) - len(failures),
            failed=len(failures),
            avg_duration_ms=round(self._metrics.avg_duration_ms, 2),
            metrics=self._metrics.to_dict(),
        )
        return failures

    async def generate_sri_records(
        self,
        urls: Iterable[str],
        algorithm: SRIAlgorithm = SRIAlgorithm.SHA384,
    ) -> dict[str, SRIRecord]:
        """Compute SRI records for URLs fetched through the secure pipeline.

        Integrity checking is skipped for these fetches. URLs that fail are
        logged and left out of the result.

        Args:
            urls: URLs to hash.
            algorithm: Digest algorithm.

        Returns:
            Mapping of URL to its generated record.
        """
        records: dict[str, SRIRecord] = {}
        for url in urls:
            try:
                payload = await self.fetch_payload(url, check_integrity=False)
            except GeographyFetchError as e:
                self._log.warning(
                    "sri_generation_failed",
                    url=redact_url_credentials(url),
                    error_kind=e.error_kind.value,
                    message=e.message,
                )
                continue
            records[url] = SRIRecord(
                algorithm=algorithm,
                digest=compute_digest(payload.body_bytes, algorithm),
            )
        return records

    def configure_security(self, **overrides: Any) -> SecurityConfig:
        """Activate the default security config with a partial override."""
        return self._security.configure(**overrides)

    def enable_development_mode(
        self, allow_http_localhost: bool = True
    ) -> SecurityConfig:
        """Relax HTTPS/localhost restrictions (refused in production)."""
        return self._security.enable_development_mode(
            self._runtime_mode, allow_http_localhost=allow_http_localhost
        )

    def add_custom_sri(self, url: str, record: SRIRecord) -> None:
        """Register an SRI record for a URL."""
        self._integrity.add_custom_record(url, record)

    def configure_sri(self, **overrides: Any) -> SRIPolicy:
        """Activate the default SRI policy with a partial override."""
        return self._integrity.configure(**overrides)

    def enable_strict_sri(self) -> SRIPolicy:
        """Require an SRI record for every fetched URL."""
        return self._integrity.enable_strict()

    def disable_sri(self) -> SRIPolicy:
        """Turn off SRI enforcement (logged as a security downgrade)."""
        return self._integrity.disable(self._runtime_mode)
