"""
Caching utilities for the webhook receiver.

Holds process-wide values such as resolved parameters so warm
invocations skip the round trip to the parameter store.
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, Optional

import structlog

logger = structlog.get_logger(__name__)


class CacheItem:
    """Individual cache item with expiration."""

    def __init__(self, value: Any, ttl_seconds: float):
        self.value = value
        self.created_at = time.monotonic()
        self.ttl_seconds = ttl_seconds

    @property
    def is_expired(self) -> bool:
        """Check if cache item has expired."""
        return time.monotonic() - self.created_at >= self.ttl_seconds

    @property
    def age_seconds(self) -> float:
        """Get age of cache item in seconds."""
        return time.monotonic() - self.created_at


class TTLCache:
    """
    In-memory cache with a fixed TTL and single-flight loading.

    Entries are never invalidated explicitly on a timer; they simply
    stop being served once older than the TTL and are reloaded on the
    next access.
    """

    def __init__(self, default_ttl_seconds: float = 300, max_size: int = 1000):
        """
        Initialize the cache.

        Args:
            default_ttl_seconds: Default TTL for cache items
            max_size: Maximum number of items in cache
        """
        self.default_ttl_seconds = default_ttl_seconds
        self.max_size = max_size
        self._cache: Dict[str, CacheItem] = {}
        self._lock = asyncio.Lock()
        self._load_locks: Dict[str, asyncio.Lock] = {}

    async def get(self, key: str) -> Optional[Any]:
        """
        Get a cached value.

        Returns:
            Cached value or None if not found/expired
        """
        async with self._lock:
            return self._get_unlocked(key)

    def _get_unlocked(self, key: str) -> Optional[Any]:
        item = self._cache.get(key)
        if item is None:
            return None

        if item.is_expired:
            logger.debug("Cache item expired", key=key, age=item.age_seconds)
            del self._cache[key]
            return None

        logger.debug("Cache hit", key=key, age=item.age_seconds)
        return item.value

    async def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        """
        Set a cached value.

        Args:
            key: Cache key
            value: Value to cache
            ttl_seconds: TTL override (uses default if None)
        """
        ttl = ttl_seconds or self.default_ttl_seconds

        async with self._lock:
            if len(self._cache) >= self.max_size and key not in self._cache:
                self._evict_oldest()

            self._cache[key] = CacheItem(value, ttl)
            logger.debug("Cache set", key=key, ttl=ttl, cache_size=len(self._cache))

    async def get_or_load(
        self,
        key: str,
        loader: Callable[[], Awaitable[Any]],
        ttl_seconds: Optional[float] = None,
    ) -> Any:
        """
        Return the cached value for key, loading it once if absent.

        Concurrent callers for the same key wait on a single loader call
        and all observe its result. A failing loader caches nothing.

        Args:
            key: Cache key
            loader: Coroutine factory producing the value
            ttl_seconds: TTL override (uses default if None)

        Returns:
            Cached or freshly loaded value
        """
        async with self._lock:
            value = self._get_unlocked(key)
            if value is not None:
                return value
            load_lock = self._load_locks.setdefault(key, asyncio.Lock())

        async with load_lock:
            # Another caller may have loaded it while we waited
            value = await self.get(key)
            if value is not None:
                return value

            value = await loader()
            await self.set(key, value, ttl_seconds)
            return value

    async def invalidate(self, key: str) -> bool:
        """
        Invalidate a cached value.

        Returns:
            True if item was found and removed
        """
        async with self._lock:
            if key in self._cache:
                del self._cache[key]
                logger.debug("Cache invalidated", key=key)
                return True
            return False

    async def invalidate_prefix(self, prefix: str) -> int:
        """Invalidate all keys starting with prefix; returns the count removed."""
        async with self._lock:
            keys = [key for key in self._cache if key.startswith(prefix)]
            for key in keys:
                del self._cache[key]
            return len(keys)

    async def clear(self) -> None:
        """Clear all cached items."""
        async with self._lock:
            self._cache.clear()
            logger.info("Cache cleared")

    def _evict_oldest(self) -> None:
        if not self._cache:
            return
        oldest_key = min(self._cache, key=lambda k: self._cache[k].created_at)
        del self._cache[oldest_key]
        logger.debug("Evicted oldest cache item", key=oldest_key)

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
            }
