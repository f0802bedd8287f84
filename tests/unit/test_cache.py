"""
Unit tests for the memory cache.
"""

import pytest

from inferloop_mcp_server.utils.cache import MemoryCache


class TestMemoryCache:
    async def test_set_and_get(self):
        cache = MemoryCache()

        await cache.set("list_datasets", ["ds-1"], limit=10)

        assert await cache.get("list_datasets", limit=10) == ["ds-1"]
        assert await cache.get("list_datasets", limit=20) is None

        stats = await cache.get_stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1

    async def test_key_ignores_parameter_order(self):
        cache = MemoryCache()

        await cache.set("op", "value", arguments={"a": 1, "b": 2})

        assert await cache.get("op", arguments={"b": 2, "a": 1}) == "value"

    async def test_expired_items_are_misses(self):
        cache = MemoryCache()

        await cache.set("op", "value", ttl_seconds=-1)

        assert await cache.get("op") is None
        assert (await cache.get_stats())["total_items"] == 0

    async def test_lru_eviction(self):
        cache = MemoryCache(max_size=2)
        await cache.set("op", 1, n=1)
        await cache.set("op", 2, n=2)

        # Reading n=1 makes n=2 the least recently used
        await cache.get("op", n=1)
        await cache.set("op", 3, n=3)

        assert await cache.get("op", n=1) == 1
        assert await cache.get("op", n=2) is None
        assert await cache.get("op", n=3) == 3

    async def test_invalidate(self):
        cache = MemoryCache()
        await cache.set("op", 1, n=1)

        assert await cache.invalidate("op", n=1)
        assert not await cache.invalidate("op", n=1)

    async def test_invalidate_operation(self):
        cache = MemoryCache()
        await cache.set("a", 1, n=1)
        await cache.set("a", 2, n=2)
        await cache.set("b", 3)

        assert await cache.invalidate_operation("a") == 2
        assert await cache.get("b") == 3

    async def test_cleanup_expired_and_clear(self):
        cache = MemoryCache()
        await cache.set("old", 1, ttl_seconds=-1)
        await cache.set("new", 2)

        assert await cache.cleanup_expired() == 1
        await cache.clear()
        assert (await cache.get_stats())["total_items"] == 0

    def test_rejects_empty_capacity(self):
        with pytest.raises(ValueError):
            MemoryCache(max_size=0)
