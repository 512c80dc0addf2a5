"""
Unit Tests for StaleWhileRevalidateCache

Time is driven by the fake store's clock: advancing it expires the fresh
copy while the stale copy survives.
"""

import pytest

from practice_cache.infrastructure.cache.stale_while_revalidate import (
    StaleWhileRevalidateCache,
    fresh_key,
    stale_key,
)


class CountingFetcher:
    def __init__(self, *values):
        self.values = list(values)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        value = self.values[min(self.calls, len(self.values)) - 1]
        if isinstance(value, Exception):
            raise value
        return value


@pytest.fixture
def swr(cache_manager, test_settings):
    return StaleWhileRevalidateCache(cache_manager, test_settings)


@pytest.mark.unit
class TestStaleWhileRevalidate:
    """Test the fresh / stale / miss state machine."""

    @pytest.mark.asyncio
    async def test_full_miss_fetches_and_writes_both_copies(self, swr, cache_manager):
        fetcher = CountingFetcher({"total": 10})

        assert await swr.get("dashboard:c1", fetcher, ttl=60) == {"total": 10}

        assert fetcher.calls == 1
        assert await cache_manager.ttl(fresh_key("dashboard:c1")) == 60
        assert await cache_manager.ttl(stale_key("dashboard:c1")) == 86400

    @pytest.mark.asyncio
    async def test_fresh_hit_does_not_refresh(self, swr):
        fetcher = CountingFetcher("v1", "v2")
        await swr.get("k", fetcher, ttl=60)

        assert await swr.get("k", fetcher, ttl=60) == "v1"
        await swr.drain()
        assert fetcher.calls == 1

    @pytest.mark.asyncio
    async def test_fresh_hit_near_expiry_refreshes_in_background(self, swr, clock):
        fetcher = CountingFetcher("v1", "v2")
        await swr.get("k", fetcher, ttl=60)

        clock.advance(55)
        assert await swr.get("k", fetcher, ttl=60) == "v1"
        await swr.drain()

        assert fetcher.calls == 2
        assert await swr.get("k", fetcher, ttl=60) == "v2"

    @pytest.mark.asyncio
    async def test_stale_hit_returns_immediately_and_refreshes_once(self, swr, clock):
        fetcher = CountingFetcher("v1", "v2")
        await swr.get("k", fetcher, ttl=60)
        clock.advance(61)

        first = await swr.get("k", fetcher, ttl=60)
        second = await swr.get("k", fetcher, ttl=60)

        assert first == second == "v1"
        assert swr.refreshing("k") is True

        await swr.drain()

        assert fetcher.calls == 2
        assert swr.refreshing("k") is False
        assert await swr.get("k", fetcher, ttl=60) == "v2"

    @pytest.mark.asyncio
    async def test_failed_refresh_keeps_stale_copy(self, swr, clock):
        fetcher = CountingFetcher("v1", RuntimeError("db down"))
        await swr.get("k", fetcher, ttl=60)
        clock.advance(61)

        assert await swr.get("k", fetcher, ttl=60) == "v1"
        await swr.drain()

        assert await swr.get("k", fetcher, ttl=60) == "v1"
        await swr.drain()

    @pytest.mark.asyncio
    async def test_full_miss_error_propagates(self, swr):
        fetcher = CountingFetcher(LookupError("nothing to show"))

        with pytest.raises(LookupError):
            await swr.get("k", fetcher, ttl=60)

    @pytest.mark.asyncio
    async def test_invalidate_drops_both_copies(self, swr, fake_redis):
        await swr.get("k", CountingFetcher("v1"), ttl=60)

        assert await swr.invalidate("k") == 2
        assert fake_redis.data == {}
