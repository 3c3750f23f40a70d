"""Tests for the TTL token cache."""

import asyncio

from agents_hosting.memory_cache import MemoryCache


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestMemoryCache:
    """Test MemoryCache expiry and sweeping."""

    def test_get_before_and_after_expiry(self):
        clock = FakeClock()
        cache = MemoryCache(clock=clock)
        cache.set("token", "abc", ttl_seconds=60)

        assert cache.get("token") == "abc"
        assert "token" in cache

        clock.now += 60
        assert cache.get("token") is None
        assert len(cache) == 0

    def test_set_without_running_loop_does_not_sweep(self):
        cache = MemoryCache()
        cache.set("token", "abc", ttl_seconds=60)

        assert cache.sweeping is False
        assert cache.get("token") == "abc"

    def test_purge_counts_expired_entries(self):
        clock = FakeClock()
        cache = MemoryCache(clock=clock)
        cache.set("a", "1", ttl_seconds=10)
        cache.set("b", "2", ttl_seconds=100)

        clock.now += 50

        assert cache.purge() == 1
        assert cache.get("b") == "2"

    def test_delete_and_clear(self):
        cache = MemoryCache()
        cache.set("a", "1", ttl_seconds=10)
        cache.set("b", "2", ttl_seconds=10)

        cache.delete("a")
        assert cache.get("a") is None

        cache.clear()
        assert len(cache) == 0

    async def test_background_sweep_removes_expired_entries(self):
        clock = FakeClock()
        cache = MemoryCache(sweep_interval=0.01, clock=clock)
        cache.set("token", "abc", ttl_seconds=5)
        assert cache.sweeping is True

        clock.now += 10
        await asyncio.sleep(0.05)

        assert len(cache) == 0
        await cache.close()
        assert cache.sweeping is False

    async def test_close_without_sweeper(self):
        cache = MemoryCache()

        await cache.close()

        assert cache.sweeping is False
