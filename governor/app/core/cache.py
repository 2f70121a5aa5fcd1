"""Durable cache tier backends.

Provides a pluggable store with in-memory and Redis implementations. The
tiered cache keeps its fast map in process and writes through to one of
these backends.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
import asyncio
import time
from typing import Optional

import redis.asyncio as aioredis

from governor.app.core.logging import get_logger

logger = get_logger(__name__)


@dataclass
class _StoredValue:
    """Internal stored value with TTL tracking."""

    value: bytes
    expires_at: float | None = None

    def is_expired(self) -> bool:
        """Check if the value has expired."""
        if self.expires_at is None:
            return False
        return time.time() > self.expires_at


class CacheBackend(ABC):
    """Abstract base class for durable cache backends.

    All backends must inherit from this class and implement the abstract
    methods. Keys are the caller's keys; backends apply their own namespace.
    """

    @abstractmethod
    async def get(self, key: str) -> bytes | None:
        """Retrieve a value from the store.

        Args:
            key: The cache key to look up.

        Returns:
            The stored value as bytes, or None if not found or expired.
        """
        pass

    @abstractmethod
    async def set(self, key: str, value: bytes, ttl: int) -> None:
        """Store a value.

        Args:
            key: The cache key.
            value: The value to store (as bytes).
            ttl: Time-to-live in seconds; 0 or less stores without expiry.
        """
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove a value from the store."""
        pass

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Check if a key exists and is not expired."""
        pass

    @abstractmethod
    async def keys(self) -> list[str]:
        """List the keys currently held by this backend."""
        pass

    @abstractmethod
    async def clear(self) -> None:
        """Clear all entries owned by this backend."""
        pass

    async def close(self) -> None:
        """Release any connection held by the backend."""
        return None


class InMemoryCache(CacheBackend):
    """In-memory durable tier with TTL support.

    Stores data in a Python dictionary for the lifetime of the process.
    Useful when no external store is configured and in tests.
    """

    def __init__(self) -> None:
        self._data: dict[str, _StoredValue] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> bytes | None:
        async with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            if entry.is_expired():
                del self._data[key]
                return None
            return entry.value

    async def set(self, key: str, value: bytes, ttl: int) -> None:
        async with self._lock:
            expires_at = time.time() + ttl if ttl > 0 else None
            self._data[key] = _StoredValue(value=value, expires_at=expires_at)

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._data.pop(key, None)

    async def exists(self, key: str) -> bool:
        return await self.get(key) is not None

    async def keys(self) -> list[str]:
        async with self._lock:
            return [key for key, entry in self._data.items() if not entry.is_expired()]

    async def clear(self) -> None:
        async with self._lock:
            self._data.clear()


class RedisCache(CacheBackend):
    """Redis-based durable tier.

    All keys live under a single namespace prefix so that ``clear()`` and
    ``keys()`` only touch entries written by this layer.

    Example:
        >>> cache = RedisCache("redis://localhost:6379/0", namespace="governor:cache")
        >>> await cache.set("cards:42", b"{...}", ttl=300)
    """

    def __init__(
        self,
        redis_url: str,
        namespace: str = "governor:cache",
        client: Optional[aioredis.Redis] = None,
    ) -> None:
        self._redis_url = redis_url
        self._namespace = namespace
        self._redis: aioredis.Redis | None = client

    def _get_client(self) -> aioredis.Redis:
        """Get or create the Redis client connection."""
        if self._redis is None:
            self._redis = aioredis.from_url(self._redis_url)
        return self._redis

    def _make_key(self, key: str) -> str:
        return f"{self._namespace}:{key}"

    async def get(self, key: str) -> bytes | None:
        client = self._get_client()
        return await client.get(self._make_key(key))

    async def set(self, key: str, value: bytes, ttl: int) -> None:
        client = self._get_client()
        if ttl > 0:
            await client.setex(self._make_key(key), ttl, value)
        else:
            await client.set(self._make_key(key), value)

    async def delete(self, key: str) -> None:
        client = self._get_client()
        await client.delete(self._make_key(key))

    async def exists(self, key: str) -> bool:
        client = self._get_client()
        return await client.exists(self._make_key(key)) > 0

    async def keys(self) -> list[str]:
        client = self._get_client()
        prefix = f"{self._namespace}:"
        found = []
        async for raw in client.scan_iter(match=f"{prefix}*"):
            name = raw.decode("utf-8") if isinstance(raw, bytes) else raw
            found.append(name[len(prefix):])
        return found

    async def clear(self) -> None:
        """Delete every key under this backend's namespace.

        Unlike FLUSHDB this leaves other users of a shared Redis alone.
        """
        client = self._get_client()
        batch = []
        async for raw in client.scan_iter(match=f"{self._namespace}:*"):
            batch.append(raw)
            if len(batch) >= 500:
                await client.delete(*batch)
                batch = []
        if batch:
            await client.delete(*batch)

    async def close(self) -> None:
        """Close the Redis connection."""
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


def create_cache_backend(
    backend: str | None = None,
    redis_url: str | None = None,
    namespace: str | None = None,
) -> CacheBackend | None:
    """Create the durable tier backend selected by configuration.

    Args:
        backend: 'memory', 'redis' or 'none'. Defaults to settings.
        redis_url: Redis connection URL. Defaults to settings.redis_url.
        namespace: Key namespace for Redis. Defaults to settings.

    Returns:
        A CacheBackend instance, or None when the durable tier is disabled.
    """
    from governor.app.core.config import settings

    backend = (backend or settings.durable_cache_backend).lower()

    if backend == "none":
        logger.info("Durable cache tier disabled")
        return None

    if backend == "redis":
        logger.info("Using Redis durable cache backend")
        return RedisCache(
            redis_url or settings.redis_url,
            namespace=namespace or settings.durable_cache_namespace,
        )

    if backend != "memory":
        logger.warning(f"Unknown durable cache backend '{backend}', using in-memory")
    return InMemoryCache()

