"""Single-flight memoization cache for geography documents."""

import asyncio
import time
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import structlog

from geofetch.fetch.constants import COMPONENT_FETCH
from geofetch.fetch.document import GeographyDocument
from geofetch.fetch.metrics import GeographyFetchMetrics
from geofetch.fetch.redact import redact_url_credentials


logger = structlog.get_logger()

FetchFn = Callable[[str], Awaitable[GeographyDocument]]


@dataclass(frozen=True)
class _CacheEntry:
    document: GeographyDocument
    stored_at: float


def _retrieve_exception(task: "asyncio.Task[GeographyDocument]") -> None:
    # Waiters may all have been cancelled; mark the outcome as observed
    if not task.cancelled():
        task.exception()


class GeographyCache:
    """Memoizes documents by exact URL string with request deduplication.

    Concurrent callers for the same URL share one in-flight fetch, and a
    caller being cancelled does not cancel the shared fetch. Failures are
    never stored, so the next call after an error fetches again.

    Entries live for the lifetime of the cache unless ``max_entries``
    (least-recently-used eviction) or ``ttl_seconds`` is set.
    """

    def __init__(
        self,
        max_entries: int | None = None,
        ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the cache.

        Args:
            max_entries: Capacity before LRU eviction (None for unbounded).
            ttl_seconds: Entry lifetime (None for no expiry).
            clock: Monotonic time source.

        Raises:
            ValueError: If a bound is not positive.
        """
        if max_entries is not None and max_entries <= 0:
            msg = "max_entries must be positive"
            raise ValueError(msg)
        if ttl_seconds is not None and ttl_seconds <= 0:
            msg = "ttl_seconds must be positive"
            raise ValueError(msg)

        self._max_entries = max_entries
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: OrderedDict[str, _CacheEntry] = OrderedDict()
        self._in_flight: dict[str, asyncio.Task[GeographyDocument]] = {}
        self._metrics = GeographyFetchMetrics.get_instance()
        self._log = logger.bind(component=COMPONENT_FETCH, subsystem="cache")

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, url: object) -> bool:
        if not isinstance(url, str):
            return False
        entry = self._entries.get(url)
        return entry is not None and not self._is_expired(entry)

    @property
    def in_flight_count(self) -> int:
        """Number of fetches currently shared by waiters."""
        return len(self._in_flight)

    def _is_expired(self, entry: _CacheEntry) -> bool:
        if self._ttl_seconds is None:
            return False
        return self._clock() - entry.stored_at >= self._ttl_seconds

    def _lookup(self, url: str) -> GeographyDocument | None:
        entry = self._entries.get(url)
        if entry is None:
            return None
        if self._is_expired(entry):
            del self._entries[url]
            self._log.debug("cache_entry_expired", url=redact_url_credentials(url))
            return None
        self._entries.move_to_end(url)
        return entry.document

    def _store(self, url: str, document: GeographyDocument) -> None:
        self._entries[url] = _CacheEntry(document=document, stored_at=self._clock())
        self._entries.move_to_end(url)
        if self._max_entries is None:
            return
        while len(self._entries) > self._max_entries:
            evicted, _ = self._entries.popitem(last=False)
            self._log.debug("cache_entry_evicted", url=redact_url_credentials(evicted))

    async def _run(self, url: str, fetch: FetchFn) -> GeographyDocument:
        task = asyncio.current_task()
        try:
            document = await fetch(url)
        finally:
            # clear() or invalidate() while in flight disowns this fetch
            owned = self._in_flight.get(url) is task
            if owned:
                del self._in_flight[url]
        if owned:
            self._store(url, document)
        return document

    async def get_or_fetch(self, url: str, fetch: FetchFn) -> GeographyDocument:
        """Return the cached document for a URL, fetching it at most once.

        Args:
            url: Cache key; the exact URL string.
            fetch: Coroutine function producing the document for the URL.

        Returns:
            The cached or freshly fetched document.

        Raises:
            GeographyFetchError: Whatever the shared fetch raised.
        """
        document = self._lookup(url)
        if document is not None:
            self._metrics.record_cache_hit()
            return document

        task = self._in_flight.get(url)
        if task is None:
            self._metrics.record_cache_miss()
            task = asyncio.create_task(self._run(url, fetch))
            task.add_done_callback(_retrieve_exception)
            self._in_flight[url] = task
        else:
            self._metrics.record_cache_coalesced()
            self._log.debug("cache_request_coalesced", url=redact_url_credentials(url))

        return await asyncio.shield(task)

    def invalidate(self, url: str) -> bool:
        """Drop a URL from the cache.

        A fetch already in flight for the URL still completes for its
        waiters but its result is not stored.

        Returns:
            True if anything was dropped.
        """
        removed = self._entries.pop(url, None) is not None
        removed = self._in_flight.pop(url, None) is not None or removed
        return removed

    def clear(self) -> None:
        """Drop every entry and disown in-flight fetches."""
        self._entries.clear()
        self._in_flight.clear()
