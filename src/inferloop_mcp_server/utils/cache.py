"""
Caching utilities for Inferloop MCP Server.

Provides a TTL/LRU result cache used by the context manager to avoid
repeating idempotent calls against the Inferloop Cloud Platform.
"""

import asyncio
import hashlib
import json
import time
from collections import OrderedDict
from typing import Any, Dict, Optional

import structlog

logger = structlog.get_logger(__name__)


class CacheItem:
    """Individual cache item with expiration."""

    def __init__(self, operation: str, value: Any, ttl_seconds: float):
        self.operation = operation
        self.value = value
        self.created_at = time.monotonic()
        self.ttl_seconds = ttl_seconds

    @property
    def is_expired(self) -> bool:
        """Check if cache item has expired."""
        return self.age_seconds > self.ttl_seconds

    @property
    def age_seconds(self) -> float:
        """Get age of cache item in seconds."""
        return time.monotonic() - self.created_at


class MemoryCache:
    """
    In-memory cache with TTL support and LRU eviction.

    Keys are derived from an operation name plus its parameters, so callers
    never build keys themselves.
    """

    def __init__(self, default_ttl_seconds: float = 300, max_size: int = 1000):
        """
        Initialize memory cache.

        Args:
            default_ttl_seconds: Default TTL for cache items
            max_size: Maximum number of items in cache
        """
        if max_size < 1:
            raise ValueError("max_size must be at least 1")

        self.default_ttl_seconds = default_ttl_seconds
        self.max_size = max_size
        self._cache: "OrderedDict[str, CacheItem]" = OrderedDict()
        self._lock = asyncio.Lock()
        self._hits = 0
        self._misses = 0

    def _generate_key(self, operation: str, **kwargs: Any) -> str:
        """
        Generate cache key from operation and parameters.

        Args:
            operation: Operation name (e.g., 'list_generators')
            **kwargs: Operation parameters

        Returns:
            Cache key string
        """
        params_str = json.dumps(kwargs, sort_keys=True, default=str)
        key_content = f"{operation}:{params_str}"
        return hashlib.sha256(key_content.encode()).hexdigest()[:32]

    async def get(self, operation: str, **kwargs: Any) -> Optional[Any]:
        """
        Get cached value for operation.

        Returns:
            Cached value or None if not found/expired
        """
        key = self._generate_key(operation, **kwargs)

        async with self._lock:
            item = self._cache.get(key)
            if item is None:
                self._misses += 1
                return None

            if item.is_expired:
                logger.debug("Cache item expired", key=key, age=item.age_seconds)
                del self._cache[key]
                self._misses += 1
                return None

            self._cache.move_to_end(key)
            self._hits += 1

            logger.debug("Cache hit", key=key, operation=operation, age=item.age_seconds)
            return item.value

    async def set(
        self,
        operation: str,
        value: Any,
        ttl_seconds: Optional[float] = None,
        **kwargs: Any,
    ) -> None:
        """
        Set cached value for operation.

        Args:
            operation: Operation name
            value: Value to cache
            ttl_seconds: TTL override (uses default if None)
            **kwargs: Operation parameters
        """
        key = self._generate_key(operation, **kwargs)
        ttl = ttl_seconds if ttl_seconds is not None else self.default_ttl_seconds

        async with self._lock:
            if key not in self._cache and len(self._cache) >= self.max_size:
                self._evict_lru()

            self._cache[key] = CacheItem(operation, value, ttl)
            self._cache.move_to_end(key)

            logger.debug(
                "Cache set",
                key=key,
                operation=operation,
                ttl=ttl,
                cache_size=len(self._cache),
            )

    async def invalidate(self, operation: str, **kwargs: Any) -> bool:
        """
        Invalidate cached value for operation.

        Returns:
            True if item was found and removed
        """
        key = self._generate_key(operation, **kwargs)

        async with self._lock:
            if key in self._cache:
                del self._cache[key]
                logger.debug("Cache invalidated", key=key, operation=operation)
                return True
            return False

    async def invalidate_operation(self, operation: str) -> int:
        """Drop every entry cached for an operation, whatever its parameters."""
        async with self._lock:
            keys = [key for key, item in self._cache.items() if item.operation == operation]
            for key in keys:
                del self._cache[key]

        if keys:
            logger.debug("Cache operation invalidated", operation=operation, removed=len(keys))
        return len(keys)

    async def clear(self) -> None:
        """Clear all cached items."""
        async with self._lock:
            self._cache.clear()
            logger.info("Cache cleared")

    async def cleanup_expired(self) -> int:
        """
        Remove expired items from cache.

        Returns:
            Number of items removed
        """
        async with self._lock:
            expired_keys = [key for key, item in self._cache.items() if item.is_expired]
            for key in expired_keys:
                del self._cache[key]

        if expired_keys:
            logger.debug(
                "Cleaned up expired cache items",
                removed_count=len(expired_keys),
                remaining_count=len(self._cache),
            )
        return len(expired_keys)

    def _evict_lru(self) -> None:
        """Evict least recently used item. Caller holds the lock."""
        if not self._cache:
            return

        lru_key, _ = self._cache.popitem(last=False)
        logger.debug("Evicted LRU cache item", key=lru_key)

    async def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        async with self._lock:
            total_items = len(self._cache)
            expired_items = sum(1 for item in self._cache.values() if item.is_expired)

            return {
                "total_items": total_items,
                "expired_items": expired_items,
                "active_items": total_items - expired_items,
                "max_size": self.max_size,
                "default_ttl_seconds": self.default_ttl_seconds,
                "hits": self._hits,
                "misses": self._misses,
            }
