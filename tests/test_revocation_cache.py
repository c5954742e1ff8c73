"""Tests for the access-token revocation caches."""

from unittest.mock import MagicMock

from emovers.storage.redis_cache import MemoryRevocationCache, SyncRedisCache, _denylist_key


class TestMemoryRevocationCache:
    async def test_set_and_get(self):
        cache = MemoryRevocationCache()
        await cache.set("k", "v", 60)
        assert await cache.get("k") == "v"
        assert await cache.get("missing") is None

    async def test_entries_expire(self):
        cache = MemoryRevocationCache()
        clock = [1000.0]
        cache._clock = lambda: clock[0]
        await cache.set("k", "v", 10)
        clock[0] += 9
        assert await cache.get("k") == "v"
        clock[0] += 2
        assert await cache.get("k") is None

    async def test_denylist_round_trip(self):
        cache = MemoryRevocationCache()
        assert await cache.is_access_token_denylisted("tok") is False
        await cache.denylist_access_token("tok", 30)
        assert await cache.is_access_token_denylisted("tok") is True
        assert await cache.is_access_token_denylisted("other") is False

    async def test_zero_ttl_is_not_written(self):
        cache = MemoryRevocationCache()
        await cache.denylist_access_token("tok", 0)
        assert await cache.is_access_token_denylisted("tok") is False


class TestSyncRedisCache:
    def _cache(self):
        cache = SyncRedisCache.__new__(SyncRedisCache)
        cache.redis_url = "redis://localhost:6379/1"
        cache._sync_client = MagicMock()
        return cache

    async def test_denylist_writes_with_ttl(self):
        cache = self._cache()
        await cache.denylist_access_token("tok", 120)
        cache._sync_client.set.assert_called_once_with(_denylist_key("tok"), "1", ex=120)

    async def test_denylist_skips_zero_ttl(self):
        cache = self._cache()
        await cache.denylist_access_token("tok", 0)
        cache._sync_client.set.assert_not_called()

    async def test_denylist_lookup(self):
        cache = self._cache()
        cache._sync_client.exists.return_value = 1
        assert await cache.is_access_token_denylisted("tok") is True
        cache._sync_client.exists.assert_called_once_with(_denylist_key("tok"))


def test_denylist_key_hides_raw_token():
    key = _denylist_key("header.payload.signature")
    assert key.startswith("auth:access:denylist:")
    assert "payload" not in key
    assert key == _denylist_key("header.payload.signature")
