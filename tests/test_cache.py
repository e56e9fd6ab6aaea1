"""
Tests for the cache backends.
"""

import os
import sys
from unittest.mock import patch

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from scaling import get_cache, reset_cache
from scaling.cache import CacheError, LocalCache


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TestLocalCache:
    def test_get_set(self):
        cache = LocalCache()
        assert cache.get("k") is None
        assert cache.get("k", "fallback") == "fallback"

        cache.set("k", {"a": 1})
        assert cache.get("k") == {"a": 1}
        assert cache.exists("k")

    def test_ttl_expiry(self):
        clock = FakeClock()
        cache = LocalCache(clock=clock)
        cache.set("k", "v", ttl=300)

        clock.advance(299)
        assert cache.get("k") == "v"

        clock.advance(1)
        assert cache.get("k") is None
        assert not cache.exists("k")

    def test_no_ttl_never_expires(self):
        clock = FakeClock()
        cache = LocalCache(clock=clock)
        cache.set("k", "v")
        clock.advance(10**9)
        assert cache.get("k") == "v"

    def test_delete_and_delete_many(self):
        cache = LocalCache()
        cache.set("a", 1)
        cache.set("b", 2)

        assert cache.delete("a")
        assert not cache.delete("a")
        assert cache.delete_many(["b", "c"]) == 1

    def test_fifo_eviction(self):
        cache = LocalCache(max_size=2)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("c", 3)

        assert cache.get("a") is None
        assert cache.get("b") == 2
        assert cache.get("c") == 3

    def test_overwrite_does_not_evict(self):
        cache = LocalCache(max_size=2)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("a", 10)
        assert cache.get("a") == 10
        assert cache.get("b") == 2

    def test_periodic_cleanup(self):
        clock = FakeClock()
        cache = LocalCache(cleanup_interval=60, clock=clock)
        cache.set("short", 1, ttl=10)
        cache.set("long", 2, ttl=1000)

        clock.advance(61)
        cache.get("long")
        assert cache.get_stats()["size"] == 1

    def test_stats(self):
        cache = LocalCache()
        cache.set("k", 1)
        cache.get("k")
        cache.get("missing")

        stats = cache.get_stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["hit_rate"] == 0.5

    def test_clear(self):
        cache = LocalCache()
        cache.set("k", 1)
        cache.clear()
        assert not cache.exists("k")


class TestRedisCache:
    @pytest.fixture
    def redis_mod(self):
        return pytest.importorskip("redis")

    @pytest.fixture
    def client(self, redis_mod):
        with patch("redis.from_url") as from_url:
            from scaling.cache import RedisCache

            yield RedisCache("redis://localhost:6379/0"), from_url.return_value

    def test_set_uses_prefix_and_whole_seconds(self, client):
        cache, redis_client = client
        cache.set("stats:latest", {"total_count": 3}, ttl=0.5)

        redis_client.setex.assert_called_once_with(
            "dateconsensus:cache:stats:latest", 1, '{"total_count": 3}'
        )

    def test_get_deserializes(self, client):
        cache, redis_client = client
        redis_client.get.return_value = b'{"total_count": 3}'
        assert cache.get("stats:latest") == {"total_count": 3}

    def test_get_missing_and_corrupt(self, client):
        cache, redis_client = client
        redis_client.get.return_value = None
        assert cache.get("k", "d") == "d"

        redis_client.get.return_value = b"{not json"
        assert cache.get("k") is None

    def test_errors_become_cache_error(self, client, redis_mod):
        cache, redis_client = client
        redis_client.get.side_effect = redis_mod.ConnectionError("down")
        redis_client.setex.side_effect = redis_mod.ConnectionError("down")
        redis_client.delete.side_effect = redis_mod.ConnectionError("down")

        with pytest.raises(CacheError):
            cache.get("k")
        with pytest.raises(CacheError):
            cache.set("k", 1, ttl=10)
        with pytest.raises(CacheError):
            cache.delete_many(["a", "b"])

    def test_stats_when_disconnected(self, client, redis_mod):
        cache, redis_client = client
        redis_client.info.side_effect = redis_mod.ConnectionError("down")
        assert cache.get_stats()["connected"] is False


class TestGetCache:
    def setup_method(self):
        reset_cache()

    def teardown_method(self):
        reset_cache()

    def test_local_by_default(self, monkeypatch):
        monkeypatch.delenv("REDIS_URL", raising=False)
        cache = get_cache()
        assert isinstance(cache, LocalCache)
        assert get_cache() is cache

    def test_reset(self, monkeypatch):
        monkeypatch.delenv("REDIS_URL", raising=False)
        first = get_cache()
        reset_cache()
        assert get_cache() is not first
