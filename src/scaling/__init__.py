"""
Horizontal scaling infrastructure for Date Consensus.

Several API instances can share one ledger (PostgreSQL) and one cached
aggregate (Redis). This package provides the cache abstraction:

Usage:
    from scaling import get_cache

    cache = get_cache()
    cache.set("stats:latest", value, ttl=300)
"""

import logging
import os
from typing import TYPE_CHECKING

from scaling.cache import Cache, CacheError, LocalCache

if TYPE_CHECKING:
    from scaling.cache import RedisCache

logger = logging.getLogger(__name__)

__all__ = [
    "Cache",
    "CacheError",
    "LocalCache",
    "get_cache",
    "reset_cache",
]

# Singleton instance
_cache: Cache | None = None


def get_cache() -> Cache:
    """
    Get the configured cache backend.

    Uses Redis if REDIS_URL is set, otherwise uses local in-memory cache.
    """
    global _cache
    if _cache is None:
        redis_url = os.getenv("REDIS_URL")
        if redis_url:
            try:
                from scaling.cache import RedisCache
                _cache = RedisCache(redis_url)
            except ImportError:
                logger.warning("REDIS_URL set but redis is not installed; using local cache")
                _cache = LocalCache()
        else:
            _cache = LocalCache()
    return _cache


def reset_cache() -> None:
    """Drop the singleton so the next get_cache() re-reads the environment."""
    global _cache
    _cache = None
