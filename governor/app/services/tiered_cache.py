"""Two-tier read cache with write-through.

A fast in-process map answers repeated reads without any await; a slower
durable backend (in-memory or Redis) survives across fast-tier evictions
and, with Redis, across processes. Durable-tier failures are logged and
treated as misses or no-op writes; the fast tier alone is enough for
correctness within a session.
"""

import asyncio
import itertools
import json
import math
import re
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Optional

from governor.app.core.cache import CacheBackend
from governor.app.core.config import settings
from governor.app.core.logging import get_log_context, get_logger
from governor.app.core.utils import Clock, now_ms
from governor.app.exceptions import DurableCacheError

logger = get_logger(__name__)


@dataclass
class CacheEntry:
    """A cached payload.

    Attributes:
        key: Cache key
        data: Opaque payload; must be JSON-serializable to reach the durable tier
        timestamp: Epoch milliseconds when the data was produced
        ttl_ms: Lifetime in milliseconds
        version: Optional caller-defined version tag
    """

    key: str
    data: Any
    timestamp: float
    ttl_ms: int
    version: Optional[str] = None

    def is_valid(self, now: float) -> bool:
        """An entry is valid iff now - timestamp < ttl_ms."""
        return now - self.timestamp < self.ttl_ms

    def remaining_ms(self, now: float) -> float:
        return self.ttl_ms - (now - self.timestamp)

    def to_dict(self) -> dict:
        """Durable-tier value shape: {data, timestamp, version?}."""
        stored = {"data": self.data, "timestamp": self.timestamp}
        if self.version is not None:
            stored["version"] = self.version
        return stored

    @classmethod
    def from_dict(cls, key: str, data: dict, ttl_ms: int) -> "CacheEntry":
        return cls(
            key=key,
            data=data["data"],
            timestamp=data["timestamp"],
            ttl_ms=ttl_ms,
            version=data.get("version"),
        )


class TieredCache:
    """Fast map in front of a durable backend.

    Provides:
    - Synchronous fast-tier hits (``get_fast``), no await on the instant path
    - Durable-tier lookup with promotion into the fast tier
    - Write-through: fast tier synchronously, durable tier detached
    - Lazy expiry: invalid entries read as absent, they are not purged
    - LRU bound on the fast tier

    TTL is fixed per cache instance, not per entry write.
    """

    def __init__(
        self,
        durable: Optional[CacheBackend] = None,
        ttl_ms: Optional[int] = None,
        max_entries: Optional[int] = None,
        clock: Clock = now_ms,
    ) -> None:
        """Initialize the cache.

        Args:
            durable: Durable tier backend; None runs fast-tier only
            ttl_ms: Entry lifetime (defaults to settings.cache_ttl_ms)
            max_entries: Fast tier bound (defaults to settings.cache_max_entries)
            clock: Returns the current time in epoch milliseconds
        """
        self._durable = durable
        self.ttl_ms = ttl_ms if ttl_ms is not None else settings.cache_ttl_ms
        self.max_entries = max_entries if max_entries is not None else settings.cache_max_entries
        self._clock = clock
        self._fast: OrderedDict[str, CacheEntry] = OrderedDict()

        # Durable write ordering: per-key sequence numbers and locks
        self._sequence = itertools.count(1)
        self._write_seq: dict[str, int] = {}
        self._write_locks: dict[str, asyncio.Lock] = {}
        self._generation = 0
        self._pending: set[asyncio.Task] = set()
        self._clearing: Optional[asyncio.Event] = None
        self._durable_healthy = durable is not None

        self._hits = 0
        self._durable_hits = 0
        self._requests = 0
        self._evictions = 0

    @property
    def durable(self) -> Optional[CacheBackend]:
        return self._durable

    def _lookup_fast(self, key: str) -> Optional[CacheEntry]:
        entry = self._fast.get(key)
        if entry is None or not entry.is_valid(self._clock()):
            return None
        self._fast.move_to_end(key)
        return entry

    def get_fast(self, key: str) -> Optional[CacheEntry]:
        """Look up the fast tier only; never touches the durable tier.

        This is the instant path: it completes without awaiting anything.
        Pair a miss with ``get_durable`` to finish the lookup.
        """
        self._requests += 1
        entry = self._lookup_fast(key)
        if entry is not None:
            self._hits += 1
            logger.debug(f"Cache hit for key: {key}", extra=get_log_context(cache_key=key))
        return entry

    async def get_durable(self, key: str) -> Optional[CacheEntry]:
        """Look up the durable tier and promote a valid entry into the fast tier."""
        entry = await self._read_durable(key)
        if entry is None:
            logger.debug(f"Cache miss for key: {key}", extra=get_log_context(cache_key=key))
            return None

        self._hits += 1
        self._durable_hits += 1
        self._store_fast(entry)
        logger.debug(
            f"Durable cache hit for key: {key}, promoted to fast tier",
            extra=get_log_context(cache_key=key),
        )
        return entry

    async def get(self, key: str) -> Optional[CacheEntry]:
        """Look up a key, fast tier first, then the durable tier.

        Returns:
            The valid entry, or None when absent or expired in both tiers
        """
        entry = self.get_fast(key)
        if entry is not None:
            return entry
        return await self.get_durable(key)

    async def _read_durable(self, key: str) -> Optional[CacheEntry]:
        if self._durable is None:
            return None
        try:
            raw = await self._durable.get(key)
            self._durable_healthy = True
        except Exception as e:
            self._durable_healthy = False
            logger.warning(f"Durable cache get failed: {e}", extra=get_log_context(cache_key=key))
            return None
        if raw is None:
            return None
        try:
            entry = CacheEntry.from_dict(key, json.loads(raw), self.ttl_ms)
        except (json.JSONDecodeError, KeyError, TypeError, UnicodeDecodeError):
            logger.debug(f"Invalid durable cache data for key: {key}")
            return None
        if not entry.is_valid(self._clock()):
            return None
        return entry

    def set(
        self,
        key: str,
        data: Any,
        timestamp: Optional[float] = None,
        version: Optional[str] = None,
    ) -> CacheEntry:
        """Store data in the fast tier now and the durable tier in the background.

        Durable write failures are logged and never raised. Concurrent sets
        of the same key are last-write-wins in call order.

        Args:
            key: Cache key
            data: Payload to cache
            timestamp: Epoch ms the data was produced (defaults to now)
            version: Optional version tag stored with the data

        Returns:
            The entry now held by the fast tier
        """
        entry = CacheEntry(
            key=key,
            data=data,
            timestamp=timestamp if timestamp is not None else self._clock(),
            ttl_ms=self.ttl_ms,
            version=version,
        )
        self._store_fast(entry)

        if self._durable is not None:
            seq = next(self._sequence)
            self._write_seq[key] = seq
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                logger.debug(f"No running event loop, durable write skipped for {key}")
                return entry
            task = loop.create_task(self._persist(entry, seq, self._generation))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
            # The returned DurableCacheError, if any, is dropped here on
            # purpose: the fast tier already holds the entry.
        return entry

    def _store_fast(self, entry: CacheEntry) -> None:
        self._fast[entry.key] = entry
        self._fast.move_to_end(entry.key)
        while len(self._fast) > self.max_entries:
            evicted, _ = self._fast.popitem(last=False)
            self._evictions += 1
            logger.debug(f"Evicted LRU cache item: {evicted}")

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._write_locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._write_locks[key] = lock
        return lock

    async def _persist(
        self, entry: CacheEntry, seq: int, generation: int
    ) -> Optional[DurableCacheError]:
        """Write one entry to the durable tier.

        Returns:
            None on success or when superseded, the error otherwise
        """
        key = entry.key
        clearing = self._clearing
        if clearing is not None and generation == self._generation:
            # Started during a clear; writes from before it are skipped below.
            await clearing.wait()
        try:
            async with self._lock_for(key):
                if self._write_seq.get(key) != seq or generation != self._generation:
                    return None
                ttl_seconds = math.ceil(entry.remaining_ms(self._clock()) / 1000)
                if ttl_seconds <= 0:
                    return None
                payload = json.dumps(entry.to_dict(), ensure_ascii=False).encode("utf-8")
                await self._durable.set(key, payload, ttl=ttl_seconds)
                self._durable_healthy = True
            return None
        except Exception as e:
            self._durable_healthy = False
            error = DurableCacheError(key, str(e))
            logger.warning(f"Durable cache set failed: {e}", extra=get_log_context(cache_key=key))
            return error
        finally:
            if self._write_seq.get(key) == seq:
                self._write_seq.pop(key, None)
                self._write_locks.pop(key, None)

    async def delete(self, key: str) -> bool:
        """Remove a key from both tiers.

        Returns:
            True if the fast tier held the key
        """
        removed = self._fast.pop(key, None) is not None
        if self._durable is None:
            return removed

        seq = next(self._sequence)
        self._write_seq[key] = seq
        try:
            async with self._lock_for(key):
                await self._durable.delete(key)
        except Exception as e:
            logger.warning(f"Durable cache delete failed: {e}", extra=get_log_context(cache_key=key))
        finally:
            if self._write_seq.get(key) == seq:
                self._write_seq.pop(key, None)
                self._write_locks.pop(key, None)
        if removed:
            logger.debug(f"Cache item deleted for key: {key}")
        return removed

    async def clear(self) -> None:
        """Remove every entry from both tiers.

        Rate limit and queue state are untouched. Durable writes started
        while the clear runs are held back until it finishes.
        """
        size = len(self._fast)
        stale = list(self._pending)
        barrier = asyncio.Event()
        self._clearing = barrier
        self._generation += 1
        self._fast.clear()
        try:
            if stale:
                await asyncio.gather(*stale, return_exceptions=True)
            if self._durable is not None:
                try:
                    await self._durable.clear()
                except Exception as e:
                    logger.warning(f"Durable cache clear failed: {e}")
        finally:
            if self._clearing is barrier:
                self._clearing = None
            barrier.set()
        logger.info(f"Cache cleared, removed {size} items")

    async def invalidate_pattern(self, pattern: str) -> int:
        """Remove every key matching a regular expression from both tiers.

        Returns:
            Number of keys removed
        """
        regex = re.compile(pattern)
        keys = set(self._fast)
        if self._durable is not None:
            try:
                keys.update(await self._durable.keys())
            except Exception as e:
                logger.warning(f"Durable cache key listing failed: {e}")

        matched = sorted(key for key in keys if regex.search(key))
        for key in matched:
            await self.delete(key)
        logger.info(f"Invalidated {len(matched)} cache items matching pattern: {pattern}")
        return len(matched)

    def size(self) -> int:
        """Number of valid entries in the fast tier."""
        now = self._clock()
        return sum(1 for entry in self._fast.values() if entry.is_valid(now))

    def keys(self) -> list[str]:
        """Keys currently held by the fast tier, least recently used first."""
        return list(self._fast)

    async def flush(self) -> None:
        """Wait for every pending durable write to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def close(self) -> None:
        """Flush pending writes and release the durable backend."""
        await self.flush()
        if self._durable is not None:
            await self._durable.close()

    def get_stats(self) -> dict:
        """Get cache statistics."""
        hit_rate = (self._hits / self._requests * 100) if self._requests else 0
        return {
            "size": self.size(),
            "max_size": self.max_entries,
            "hits": self._hits,
            "durable_hits": self._durable_hits,
            "requests": self._requests,
            "hit_rate": round(hit_rate, 2),
            "evictions": self._evictions,
            "pending_writes": len(self._pending),
            "durable_enabled": self._durable is not None,
            "durable_healthy": self._durable_healthy,
        }
