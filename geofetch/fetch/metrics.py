"""In-process counters for the geography fetch pipeline."""

from collections import Counter
from dataclasses import dataclass, field, fields
from typing import Any, ClassVar

from geofetch.fetch.errors import GeographyErrorKind


@dataclass
class GeographyFetchMetrics:
    """Process-wide fetch counters.

    One shared instance per process; ``reset()`` starts a fresh one.
    Completed fetches, redirect hops, failures by error kind, cache
    outcomes and SRI checks are counted separately.
    """

    http_requests_total: Counter[int] = field(default_factory=Counter)
    http_bytes_total: int = 0
    http_redirects_total: int = 0
    http_duration_ms_total: float = 0.0
    http_request_count: int = 0
    failures_total: Counter[str] = field(default_factory=Counter)
    cache_hits_total: int = 0
    cache_misses_total: int = 0
    cache_coalesced_total: int = 0
    integrity_checks_total: int = 0
    integrity_failures_total: int = 0

    _instance: ClassVar["GeographyFetchMetrics | None"] = None

    @classmethod
    def get_instance(cls) -> "GeographyFetchMetrics":
        """Get the shared instance, creating it on first use."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        """Drop the shared instance."""
        cls._instance = None

    def record_request(self, status_code: int, bytes_received: int) -> None:
        """Count a completed fetch by its final status and body size."""
        self.http_requests_total[status_code] += 1
        self.http_bytes_total += bytes_received
        self.http_request_count += 1

    def record_redirect(self) -> None:
        self.http_redirects_total += 1

    def record_failure(self, error_kind: GeographyErrorKind) -> None:
        self.failures_total[error_kind.value] += 1

    def record_duration(self, duration_ms: float) -> None:
        """Add the wall time of one fetch, all hops and the body read included."""
        self.http_duration_ms_total += duration_ms

    def record_cache_hit(self) -> None:
        self.cache_hits_total += 1

    def record_cache_miss(self) -> None:
        self.cache_misses_total += 1

    def record_cache_coalesced(self) -> None:
        """Count a caller that joined a fetch already in flight."""
        self.cache_coalesced_total += 1

    def record_integrity_check(self, passed: bool) -> None:
        self.integrity_checks_total += 1
        if not passed:
            self.integrity_failures_total += 1

    @property
    def avg_duration_ms(self) -> float:
        """Mean fetch duration in milliseconds (0.0 before the first fetch)."""
        if not self.http_request_count:
            return 0.0
        return self.http_duration_ms_total / self.http_request_count

    def to_dict(self) -> dict[str, Any]:
        """Snapshot every counter as plain dicts and numbers."""
        snapshot: dict[str, Any] = {}
        for item in fields(self):
            value = getattr(self, item.name)
            snapshot[item.name] = dict(value) if isinstance(value, Counter) else value
        return snapshot
