from __future__ import annotations

import hashlib
import threading
import time
from typing import Dict, Optional, Tuple

import redis.asyncio as aioredis
from redis import Redis


def _denylist_key(token: str) -> str:
    # Raw tokens are long and carry claims; key on a digest instead
    digest = hashlib.sha256(token.encode()).hexdigest()
    return f"auth:access:denylist:{digest}"


class RedisCache:
    """Thin Redis wrapper holding the access-token revocation list."""

    DEFAULT_OPERATION_TIMEOUT = 5.0

    def __init__(self, redis_url: str, *, socket_timeout: float = DEFAULT_OPERATION_TIMEOUT):
        self.redis_url = redis_url
        self.client = aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    def verify_connection(self) -> None:
        """Assert Redis connectivity before enabling dependent features."""
        # Short-lived sync client so the async one is not bound to a temporary loop
        sync_client = Redis.from_url(self.redis_url, decode_responses=True)
        try:
            sync_client.ping()
        finally:
            sync_client.close()

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        await self.client.set(key, value, ex=ttl_seconds)

    async def get(self, key: str) -> Optional[str]:
        return await self.client.get(key)

    async def denylist_access_token(self, token: str, ttl_seconds: int) -> None:
        """Revoke an access token until it would have expired anyway."""
        if ttl_seconds > 0:
            await self.set(_denylist_key(token), "1", ttl_seconds)

    async def is_access_token_denylisted(self, token: str) -> bool:
        return bool(await self.client.exists(_denylist_key(token)))

    async def close(self) -> None:
        """Close Redis connection pool. Call when shutting down or resetting runtime."""
        await self.client.close()
        await self.client.connection_pool.disconnect()


class SyncRedisCache:
    """Synchronous Redis wrapper for use in tests.

    Uses a synchronous client internally to avoid event loop binding issues
    in pytest, but exposes async methods so it can be awaited like
    ``RedisCache``.
    """

    def __init__(self, redis_url: str, *, socket_timeout: float = RedisCache.DEFAULT_OPERATION_TIMEOUT):
        self.redis_url = redis_url
        self._sync_client = Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    def verify_connection(self) -> None:
        self._sync_client.ping()

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._sync_client.set(key, value, ex=ttl_seconds)

    async def get(self, key: str) -> Optional[str]:
        return self._sync_client.get(key)

    async def denylist_access_token(self, token: str, ttl_seconds: int) -> None:
        if ttl_seconds > 0:
            self._sync_client.set(_denylist_key(token), "1", ex=ttl_seconds)

    async def is_access_token_denylisted(self, token: str) -> bool:
        return bool(self._sync_client.exists(_denylist_key(token)))

    async def close(self) -> None:
        self._sync_client.close()


class MemoryRevocationCache:
    """Process-local TTL cache with the ``RedisCache`` surface.

    Only valid for a single process; revocations are invisible to other
    workers. Selected in test mode or with the explicit dev fallback flag.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, Tuple[str, float]] = {}
        self._lock = threading.Lock()

    def _clock(self) -> float:
        return time.monotonic()

    def verify_connection(self) -> None:
        return None

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        with self._lock:
            self._entries[key] = (value, self._clock() + ttl_seconds)

    async def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._entries.get(key)
            if not entry:
                return None
            value, expires_at = entry
            if expires_at <= self._clock():
                self._entries.pop(key, None)
                return None
            return value

    async def denylist_access_token(self, token: str, ttl_seconds: int) -> None:
        if ttl_seconds > 0:
            await self.set(_denylist_key(token), "1", ttl_seconds)

    async def is_access_token_denylisted(self, token: str) -> bool:
        return await self.get(_denylist_key(token)) is not None

    async def close(self) -> None:
        with self._lock:
            self._entries.clear()
