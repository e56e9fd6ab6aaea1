"""
Shared cache for Date Consensus.

Provides cache backends for the derived aggregate:
- LocalCache: In-memory cache for single-instance deployments
- RedisCache: Distributed cache using Redis for multi-instance

Usage:
    from scaling import get_cache

    cache = get_cache()

    cache.set("stats:latest", {"median_date": "2026-11-19"}, ttl=300)
    value = cache.get("stats:latest")
    cache.delete("stats:latest")
"""

import json
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any


class CacheError(Exception):
    """Raised when the cache backend cannot be reached."""
    pass


@dataclass
class CacheEntry:
    """A cache entry with value and expiration."""
    value: Any
    expires_at: float | None = None

    def is_expired(self, now: float) -> bool:
        """Check if entry has expired."""
        if self.expires_at is None:
            return False
        return now >= self.expires_at


class Cache(ABC):
    """
    Abstract base class for cache backends.

    All cache implementations must provide get/set/delete operations
    with optional TTL support.
    """

    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a value from the cache.

        Args:
            key: Cache key
            default: Value to return if key not found

        Returns:
            Cached value or default
        """
        pass

    @abstractmethod
    def set(self, key: str, value: Any, ttl: float | None = None) -> bool:
        """
        Set a value in the cache.

        Args:
            key: Cache key
            value: Value to cache (must be JSON-serializable)
            ttl: Time-to-live in seconds (None = no expiration)

        Returns:
            True if successful
        """
        pass

    @abstractmethod
    def delete(self, key: str) -> bool:
        """
        Delete a value from the cache.

        Returns:
            True if key existed and was deleted
        """
        pass

    @abstractmethod
    def exists(self, key: str) -> bool:
        """Check if a key exists in the cache."""
        pass

    def delete_many(self, keys: list[str]) -> int:
        """
        Delete multiple keys from the cache.

        Returns:
            Number of keys deleted
        """
        return sum(1 for k in keys if self.delete(k))

    def clear(self) -> None:
        """Clear all cached values."""
        pass

    def get_stats(self) -> dict[str, Any]:
        """Get cache statistics."""
        return {}


class LocalCache(Cache):
    """
    In-memory cache for single-instance deployments.

    Thread-safe with automatic expiration cleanup.
    """

    def __init__(
        self,
        max_size: int = 1000,
        cleanup_interval: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize local cache.

        Args:
            max_size: Maximum number of entries
            cleanup_interval: Seconds between cleanup runs
            clock: Monotonic time source in seconds
        """
        self._cache: dict[str, CacheEntry] = {}
        self._lock = threading.RLock()
        self._max_size = max_size
        self._hits = 0
        self._misses = 0
        self._clock = clock
        self._cleanup_interval = cleanup_interval
        self._last_cleanup = clock()

    def _maybe_cleanup(self, now: float) -> None:
        """Periodically remove expired entries."""
        if now - self._last_cleanup < self._cleanup_interval:
            return

        self._last_cleanup = now
        expired = [k for k, v in self._cache.items() if v.is_expired(now)]
        for key in expired:
            self._cache.pop(key, None)

    def _evict_if_needed(self, key: str) -> None:
        """Evict oldest entries if cache is full."""
        if key in self._cache or len(self._cache) < self._max_size:
            return

        self._maybe_cleanup(self._clock())

        # FIFO
        while len(self._cache) >= self._max_size:
            oldest = next(iter(self._cache))
            del self._cache[oldest]

    def get(self, key: str, default: Any = None) -> Any:
        """Get a value from the cache."""
        with self._lock:
            now = self._clock()
            self._maybe_cleanup(now)
            entry = self._cache.get(key)

            if entry is None:
                self._misses += 1
                return default

            if entry.is_expired(now):
                del self._cache[key]
                self._misses += 1
                return default

            self._hits += 1
            return entry.value

    def set(self, key: str, value: Any, ttl: float | None = None) -> bool:
        """Set a value in the cache."""
        with self._lock:
            self._evict_if_needed(key)

            expires_at = None
            if ttl is not None:
                expires_at = self._clock() + ttl

            self._cache[key] = CacheEntry(value=value, expires_at=expires_at)
            return True

    def delete(self, key: str) -> bool:
        """Delete a value from the cache."""
        with self._lock:
            return self._cache.pop(key, None) is not None

    def exists(self, key: str) -> bool:
        """Check if a key exists."""
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                return False
            if entry.is_expired(self._clock()):
                del self._cache[key]
                return False
            return True

    def clear(self) -> None:
        """Clear all cached values."""
        with self._lock:
            self._cache.clear()

    def get_stats(self) -> dict[str, Any]:
        """Get cache statistics."""
        with self._lock:
            total = self._hits + self._misses
            return {
                "type": "LocalCache",
                "size": len(self._cache),
                "max_size": self._max_size,
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": self._hits / total if total > 0 else 0,
            }


class RedisCache(Cache):
    """
    Distributed cache using Redis.

    Provides a shared aggregate across multiple API instances. Connection
    failures surface as CacheError so callers can fall back to recomputing.
    Requires redis package: pip install redis
    """

    def __init__(
        self,
        redis_url: str,
        key_prefix: str = "dateconsensus:cache:",
        default_ttl: float = 300.0,
    ):
        """
        Initialize Redis cache.

        Args:
            redis_url: Redis connection URL
            key_prefix: Prefix for cache keys
            default_ttl: Default TTL for entries without explicit TTL
        """
        try:
            import redis
        except ImportError:
            raise ImportError("redis package required: pip install redis")

        self._redis = redis.from_url(redis_url)
        self._redis_error = redis.RedisError
        self._key_prefix = key_prefix
        self._default_ttl = default_ttl

    def _key(self, key: str) -> str:
        """Get Redis key with prefix."""
        return f"{self._key_prefix}{key}"

    def _deserialize(self, data: bytes | str | None) -> Any:
        """Deserialize value from JSON string."""
        if data is None:
            return None
        if isinstance(data, bytes):
            data = data.decode("utf-8")
        return json.loads(data)

    def get(self, key: str, default: Any = None) -> Any:
        """Get a value from Redis."""
        try:
            data = self._redis.get(self._key(key))
        except self._redis_error as e:
            raise CacheError(f"Redis get failed: {e}") from e
        if data is None:
            return default
        try:
            return self._deserialize(data)
        except (json.JSONDecodeError, TypeError, UnicodeDecodeError):
            return default

    def set(self, key: str, value: Any, ttl: float | None = None) -> bool:
        """Set a value in Redis."""
        try:
            data = json.dumps(value)
        except (TypeError, ValueError):
            return False

        if ttl is None:
            ttl = self._default_ttl
        try:
            if ttl:
                # Redis needs whole seconds; never round a positive TTL to 0
                self._redis.setex(self._key(key), max(1, int(ttl)), data)
            else:
                self._redis.set(self._key(key), data)
        except self._redis_error as e:
            raise CacheError(f"Redis set failed: {e}") from e
        return True

    def delete(self, key: str) -> bool:
        """Delete a value from Redis."""
        try:
            return self._redis.delete(self._key(key)) > 0
        except self._redis_error as e:
            raise CacheError(f"Redis delete failed: {e}") from e

    def exists(self, key: str) -> bool:
        """Check if a key exists in Redis."""
        try:
            return self._redis.exists(self._key(key)) > 0
        except self._redis_error as e:
            raise CacheError(f"Redis exists failed: {e}") from e

    def delete_many(self, keys: list[str]) -> int:
        """Delete multiple keys from Redis."""
        if not keys:
            return 0
        try:
            return self._redis.delete(*[self._key(k) for k in keys])
        except self._redis_error as e:
            raise CacheError(f"Redis delete failed: {e}") from e

    def clear(self) -> None:
        """Clear all cached values with our prefix."""
        pattern = f"{self._key_prefix}*"
        cursor = 0
        try:
            while True:
                cursor, keys = self._redis.scan(cursor, match=pattern, count=100)
                if keys:
                    self._redis.delete(*keys)
                if cursor == 0:
                    break
        except self._redis_error as e:
            raise CacheError(f"Redis clear failed: {e}") from e

    def get_stats(self) -> dict[str, Any]:
        """Get cache statistics."""
        try:
            info = self._redis.info("stats")
            connected = self._redis.ping()
        except self._redis_error as e:
            return {"type": "RedisCache", "connected": False, "error": str(e)}
        return {
            "type": "RedisCache",
            "hits": info.get("keyspace_hits", 0),
            "misses": info.get("keyspace_misses", 0),
            "connected": connected,
        }

    def close(self):
        """Close the Redis connection."""
        self._redis.close()
