"""Unit tests for the single-flight document cache."""

import asyncio

import pytest

from geofetch.fetch.cache import GeographyCache
from geofetch.fetch.document import GeographyDocument, Topology
from geofetch.fetch.errors import LoadError
from geofetch.fetch.metrics import GeographyFetchMetrics


URL = "https://maps.example.com/world.json"


def make_document() -> Topology:
    return Topology(type="Topology", objects={}, arcs=[])


class CountingFetcher:
    """Fetch function that counts calls and can block or fail."""

    def __init__(self, fail_times: int = 0) -> None:
        self.calls = 0
        self.fail_times = fail_times
        self.release = asyncio.Event()
        self.release.set()

    async def __call__(self, url: str) -> GeographyDocument:
        self.calls += 1
        await self.release.wait()
        if self.calls <= self.fail_times:
            msg = "Network error: ConnectError"
            raise LoadError(msg, source_url=url)
        return make_document()


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestGeographyCache:
    """Tests for memoization."""

    @pytest.mark.asyncio
    async def test_second_call_is_cached(self) -> None:
        """Test that a stored document is returned without fetching."""
        cache = GeographyCache()
        fetcher = CountingFetcher()

        first = await cache.get_or_fetch(URL, fetcher)
        second = await cache.get_or_fetch(URL, fetcher)

        assert first is second
        assert fetcher.calls == 1
        assert URL in cache
        assert len(cache) == 1
        metrics = GeographyFetchMetrics.get_instance()
        assert metrics.cache_misses_total == 1
        assert metrics.cache_hits_total == 1

    @pytest.mark.asyncio
    async def test_key_is_exact_url(self) -> None:
        """Test that URL variants are separate entries."""
        cache = GeographyCache()
        fetcher = CountingFetcher()

        await cache.get_or_fetch(URL, fetcher)
        await cache.get_or_fetch(f"{URL}#fragment", fetcher)

        assert fetcher.calls == 2

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_fetch(self) -> None:
        """Test that simultaneous callers are deduplicated."""
        cache = GeographyCache()
        fetcher = CountingFetcher()
        fetcher.release.clear()

        waiters = [
            asyncio.create_task(cache.get_or_fetch(URL, fetcher)) for _ in range(5)
        ]
        await asyncio.sleep(0)
        assert cache.in_flight_count == 1
        fetcher.release.set()
        results = await asyncio.gather(*waiters)

        assert fetcher.calls == 1
        assert all(result is results[0] for result in results)
        assert cache.in_flight_count == 0
        assert GeographyFetchMetrics.get_instance().cache_coalesced_total == 4

    @pytest.mark.asyncio
    async def test_failure_shared_and_not_cached(self) -> None:
        """Test that waiters see the error and the next call refetches."""
        cache = GeographyCache()
        fetcher = CountingFetcher(fail_times=1)
        fetcher.release.clear()

        waiters = [
            asyncio.create_task(cache.get_or_fetch(URL, fetcher)) for _ in range(3)
        ]
        await asyncio.sleep(0)
        fetcher.release.set()
        results = await asyncio.gather(*waiters, return_exceptions=True)

        assert all(isinstance(result, LoadError) for result in results)
        assert URL not in cache

        document = await cache.get_or_fetch(URL, fetcher)

        assert isinstance(document, Topology)
        assert fetcher.calls == 2

    @pytest.mark.asyncio
    async def test_cancelled_waiter_does_not_cancel_fetch(self) -> None:
        """Test that one caller giving up leaves the shared fetch running."""
        cache = GeographyCache()
        fetcher = CountingFetcher()
        fetcher.release.clear()

        impatient = asyncio.create_task(cache.get_or_fetch(URL, fetcher))
        patient = asyncio.create_task(cache.get_or_fetch(URL, fetcher))
        await asyncio.sleep(0)
        impatient.cancel()
        await asyncio.sleep(0)
        fetcher.release.set()

        document = await patient

        assert impatient.cancelled()
        assert isinstance(document, Topology)
        assert fetcher.calls == 1
        assert URL in cache

    @pytest.mark.asyncio
    async def test_lru_eviction(self) -> None:
        """Test that the least recently used entry is evicted at capacity."""
        cache = GeographyCache(max_entries=2)
        fetcher = CountingFetcher()

        await cache.get_or_fetch("https://a.example.com/1.json", fetcher)
        await cache.get_or_fetch("https://a.example.com/2.json", fetcher)
        await cache.get_or_fetch("https://a.example.com/1.json", fetcher)
        await cache.get_or_fetch("https://a.example.com/3.json", fetcher)

        assert "https://a.example.com/1.json" in cache
        assert "https://a.example.com/2.json" not in cache
        assert len(cache) == 2

    @pytest.mark.asyncio
    async def test_ttl_expiry(self) -> None:
        """Test that expired entries are refetched."""
        clock = FakeClock()
        cache = GeographyCache(ttl_seconds=60.0, clock=clock)
        fetcher = CountingFetcher()

        await cache.get_or_fetch(URL, fetcher)
        clock.now = 59.0
        await cache.get_or_fetch(URL, fetcher)
        assert fetcher.calls == 1

        clock.now = 60.0
        assert URL not in cache
        await cache.get_or_fetch(URL, fetcher)

        assert fetcher.calls == 2

    @pytest.mark.asyncio
    async def test_invalidate_and_clear(self) -> None:
        """Test explicit removal."""
        cache = GeographyCache()
        fetcher = CountingFetcher()
        await cache.get_or_fetch(URL, fetcher)

        assert cache.invalidate(URL) is True
        assert cache.invalidate(URL) is False

        await cache.get_or_fetch(URL, fetcher)
        cache.clear()

        assert len(cache) == 0
        assert fetcher.calls == 2

    @pytest.mark.asyncio
    async def test_clear_disowns_in_flight_fetch(self) -> None:
        """Test that a fetch started before clear() is not stored."""
        cache = GeographyCache()
        fetcher = CountingFetcher()
        fetcher.release.clear()

        waiter = asyncio.create_task(cache.get_or_fetch(URL, fetcher))
        await asyncio.sleep(0)
        cache.clear()
        fetcher.release.set()
        await waiter

        assert URL not in cache

    @pytest.mark.parametrize(
        ("max_entries", "ttl_seconds"), [(0, None), (None, 0.0), (-1, None)]
    )
    def test_rejects_non_positive_bounds(
        self, max_entries: int | None, ttl_seconds: float | None
    ) -> None:
        """Test constructor validation."""
        with pytest.raises(ValueError):
            GeographyCache(max_entries=max_entries, ttl_seconds=ttl_seconds)
