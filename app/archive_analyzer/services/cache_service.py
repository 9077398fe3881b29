"""
In-memory cache engine with per-entry TTL and batched LRU eviction.

A single CacheEngine is created at startup and handed to every service that
caches reads (analyses, documents, entities, file listings). Caching is
purely an optimization: storage faults are logged and degrade to a miss or
a no-op, they never reach the caller.
"""

import asyncio
import contextlib
import inspect
import json
import logging
import re
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any

from pydantic import BaseModel

from ..models import CacheItemInfo, CacheStats

logger = logging.getLogger(__name__)


class CacheKey(str, Enum):
    """Key prefixes, one per cached read path."""

    DOCUMENT = "doc"
    ANALYSIS = "analysis"
    SEARCH = "search"
    STATS = "stats"
    DIRECTORY = "dir_content"
    ENTITY = "entity"

    def key(self, *parts: Any) -> str:
        """Build a key such as ``analysis_<file_id>``."""
        return "_".join([self.value, *(str(p) for p in parts)])


class CacheTTL(IntEnum):
    """TTL tiers in seconds."""

    SHORT = 300
    MEDIUM = 1800
    LONG = 3600
    VERY_LONG = 86400


# Share of entries dropped per eviction pass
EVICTION_FRACTION = 0.1

_MISSING = object()


@dataclass
class CacheEntry:
    """A stored value with its expiry and access bookkeeping."""

    key: str
    value: Any
    created_at: float
    ttl: float
    access_count: int = 0
    last_accessed_at: float = 0.0

    def is_expired(self, now: float) -> bool:
        return now - self.created_at > self.ttl


def _estimate_size(value: Any) -> int:
    """Approximate serialized size of a cached value in bytes."""
    try:
        if isinstance(value, BaseModel):
            return len(value.model_dump_json().encode("utf-8"))
        return len(json.dumps(value, default=str).encode("utf-8"))
    except (TypeError, ValueError):
        return 100


class CacheEngine:
    """
    Bounded, expiring key-value store shared by all callers.

    Entries expire ``ttl`` seconds after they were written. When an insert
    would exceed ``max_size``, the least recently accessed 10% of entries
    (at least one) are evicted in a single pass. A background task started
    with :meth:`start` removes expired entries every ``sweep_interval``
    seconds, independent of read traffic.
    """

    def __init__(
        self,
        max_size: int = 1000,
        default_ttl: float = CacheTTL.LONG,
        sweep_interval: float = 300.0,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the cache engine.

        Args:
            max_size: Maximum number of entries held at once.
            default_ttl: TTL in seconds used when ``set`` is given none.
            sweep_interval: Seconds between background expiry sweeps.
            clock: Time source returning epoch seconds (injectable for tests).
        """
        if max_size < 1:
            raise ValueError("max_size must be at least 1")

        self.max_size = max_size
        self.default_ttl = float(default_ttl)
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._pending: dict[str, asyncio.Future] = {}
        self._sweep_task: asyncio.Task | None = None
        self._stats = {"hits": 0, "misses": 0, "sets": 0, "deletes": 0}

        logger.info("Cache engine initialized with max size: %d", max_size)

    def __len__(self) -> int:
        return len(self._entries)

    # =========================================================================
    # Core operations
    # =========================================================================

    def set(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        """
        Insert or overwrite an entry.

        Args:
            key: Cache key.
            value: Value to store.
            ttl_seconds: Lifetime of the entry. Defaults to ``default_ttl``.
        """
        try:
            ttl = self.default_ttl if ttl_seconds is None else float(ttl_seconds)
            now = self._clock()

            if key not in self._entries and len(self._entries) >= self.max_size:
                self._evict_lru()

            self._entries[key] = CacheEntry(
                key=key,
                value=value,
                created_at=now,
                ttl=ttl,
                last_accessed_at=now,
            )
            self._stats["sets"] += 1
            logger.debug("Cache set: %s (TTL: %ss)", key, ttl)
        except Exception:
            logger.exception("Failed to set cache key %s", key)

    def get(self, key: str, default: Any = None) -> Any:
        """
        Return the cached value, or ``default`` on a miss.

        Expired entries are removed and reported as misses. Access
        statistics are only updated on a hit.
        """
        value = self._lookup(key)
        return default if value is _MISSING else value

    def _lookup(self, key: str) -> Any:
        try:
            entry = self._entries.get(key)
            if entry is None:
                self._stats["misses"] += 1
                logger.debug("Cache miss: %s", key)
                return _MISSING

            now = self._clock()
            if entry.is_expired(now):
                del self._entries[key]
                self._stats["misses"] += 1
                logger.debug("Cache expired: %s", key)
                return _MISSING

            entry.access_count += 1
            entry.last_accessed_at = now
            self._stats["hits"] += 1
            logger.debug("Cache hit: %s", key)
            return entry.value
        except Exception:
            logger.exception("Failed to get cache key %s", key)
            self._stats["misses"] += 1
            return _MISSING

    def has(self, key: str) -> bool:
        """Check presence honoring TTL, without touching access statistics."""
        entry = self._entries.get(key)
        if entry is None:
            return False

        if entry.is_expired(self._clock()):
            del self._entries[key]
            return False

        return True

    def delete(self, key: str) -> bool:
        """
        Remove a single entry.

        Returns:
            True if the key existed.
        """
        if self._entries.pop(key, None) is None:
            return False

        self._stats["deletes"] += 1
        logger.debug("Cache deleted: %s", key)
        return True

    def clear(self) -> None:
        """Remove every entry."""
        size = len(self._entries)
        self._entries.clear()
        self._stats["deletes"] += size
        logger.info("Cache cleared: %d items removed", size)

    def get_keys(self, pattern: str | None = None) -> list[str]:
        """
        List keys, optionally filtered by a ``*`` wildcard pattern.

        The pattern must match the whole key, so ``"doc_*"`` selects every
        key starting with ``doc_``.
        """
        keys = list(self._entries)
        if not pattern:
            return keys

        regex = re.compile(".*".join(re.escape(part) for part in pattern.split("*")))
        return [key for key in keys if regex.fullmatch(key)]

    def delete_pattern(self, pattern: str) -> int:
        """Delete every key matching ``pattern``; returns the number removed."""
        removed = sum(1 for key in self.get_keys(pattern) if self.delete(key))
        if removed:
            logger.debug("Cache pattern delete %s: %d items removed", pattern, removed)
        return removed

    async def get_or_set(
        self,
        key: str,
        compute: Callable[[], Any | Awaitable[Any]],
        ttl_seconds: float | None = None,
    ) -> Any:
        """
        Return the cached value, computing and storing it on a miss.

        ``compute`` may be a plain or a coroutine function. Concurrent misses
        for the same key share one in-flight computation. If ``compute``
        raises, nothing is cached and the error propagates to every waiter.
        """
        value = self._lookup(key)
        if value is not _MISSING:
            return value

        async def compute_and_store() -> Any:
            result = compute()
            if inspect.isawaitable(result):
                result = await result
            self.set(key, result, ttl_seconds)
            return result

        return await self.coalesce(key, compute_and_store)

    async def coalesce(self, key: str, compute: Callable[[], Any | Awaitable[Any]]) -> Any:
        """
        Run ``compute`` once for all concurrent callers of the same key.

        Nothing is read from or written to the cache here. The first caller
        runs ``compute`` and later callers await its outcome. If the running
        caller is cancelled, a waiter that was not cancelled itself takes
        over and runs ``compute`` again.
        """
        while True:
            pending = self._pending.get(key)
            if pending is None:
                break

            logger.debug("Cache wait: %s (computation in flight)", key)
            try:
                return await asyncio.shield(pending)
            except asyncio.CancelledError:
                task = asyncio.current_task()
                if pending.cancelled() and task is not None and not task.cancelling():
                    logger.debug("Cache wait: %s (computation cancelled, retrying)", key)
                    continue
                raise

        future = asyncio.get_running_loop().create_future()
        self._pending[key] = future
        try:
            result = compute()
            if inspect.isawaitable(result):
                result = await result
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            logger.error("Failed to compute value for cache key %s: %s", key, e)
            future.set_exception(e)
            # Mark the exception retrieved when nobody was waiting
            future.exception()
            raise
        else:
            future.set_result(result)
            return result
        finally:
            if self._pending.get(key) is future:
                del self._pending[key]

    def refresh(self, key: str, ttl_seconds: float | None = None) -> bool:
        """Restart an entry's lifetime, optionally with a new TTL."""
        entry = self._entries.get(key)
        if entry is None:
            return False

        now = self._clock()
        if entry.is_expired(now):
            del self._entries[key]
            return False

        entry.created_at = now
        if ttl_seconds is not None:
            entry.ttl = float(ttl_seconds)
        return True

    def set_many(self, items: dict[str, Any], ttl_seconds: float | None = None) -> None:
        """Store several values with the same TTL."""
        for key, value in items.items():
            self.set(key, value, ttl_seconds)

    def get_many(self, keys: Iterable[str]) -> dict[str, Any]:
        """Look up several keys; misses map to None."""
        return {key: self.get(key) for key in keys}

    # =========================================================================
    # Maintenance
    # =========================================================================

    def _evict_lru(self) -> None:
        """Drop the least recently accessed share of entries."""
        ranked = sorted(self._entries.values(), key=lambda e: e.last_accessed_at)
        to_remove = max(1, int(len(ranked) * EVICTION_FRACTION))

        for entry in ranked[:to_remove]:
            del self._entries[entry.key]

        logger.debug("Cache LRU eviction: %d items removed", to_remove)

    def sweep(self) -> int:
        """Remove every expired entry; returns the number removed."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]

        if expired:
            logger.debug("Cache cleanup: %d expired items removed", len(expired))
        return len(expired)

    @property
    def running(self) -> bool:
        """Whether the background sweep task is active."""
        return self._sweep_task is not None and not self._sweep_task.done()

    def start(self) -> None:
        """Start the periodic sweep on the running event loop."""
        if self.running:
            return

        self._sweep_task = asyncio.get_running_loop().create_task(
            self._sweep_loop(), name="cache-sweep"
        )
        logger.info("Cache sweep started (interval: %ss)", self.sweep_interval)

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                self.sweep()
            except Exception:
                logger.exception("Cache sweep failed")

    async def stop(self) -> None:
        """Stop the sweep task and drop all entries."""
        task, self._sweep_task = self._sweep_task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        self.clear()
        logger.info("Cache engine stopped")

    # =========================================================================
    # Statistics
    # =========================================================================

    def get_stats(self) -> CacheStats:
        """Return counters, hit/miss rates and approximate size."""
        hits = self._stats["hits"]
        misses = self._stats["misses"]
        total_requests = hits + misses
        total_size = sum(
            len(key) + _estimate_size(entry.value) + 64
            for key, entry in self._entries.items()
        )

        return CacheStats(
            total_items=len(self._entries),
            total_size=total_size,
            hits=hits,
            misses=misses,
            sets=self._stats["sets"],
            deletes=self._stats["deletes"],
            hit_rate=hits / total_requests if total_requests else 0.0,
            miss_rate=misses / total_requests if total_requests else 0.0,
        )

    def get_detailed_info(self) -> list[CacheItemInfo]:
        """Per-entry view, most accessed first."""
        now = self._clock()
        items = [
            CacheItemInfo(
                key=key,
                size=_estimate_size(entry.value),
                ttl=max(0, round(entry.ttl - (now - entry.created_at))),
                age=round(now - entry.created_at),
                access_count=entry.access_count,
                last_accessed=datetime.fromtimestamp(entry.last_accessed_at, tz=timezone.utc),
            )
            for key, entry in self._entries.items()
        ]
        return sorted(items, key=lambda item: item.access_count, reverse=True)

    def reset_stats(self) -> None:
        """Zero the hit/miss/set/delete counters."""
        self._stats = {"hits": 0, "misses": 0, "sets": 0, "deletes": 0}
        logger.info("Cache statistics reset")
