"""Bounded in-memory cache with TTL expiry, LRU eviction, and memory accounting.

Each consumer (search results, embedding vectors) owns its own `BoundedCache`
instance with an independently sized budget. Entries are kept in an
`OrderedDict` in access order, so the least recently used entry is always the
first one; `has()` reads without touching that order.

Lifecycle:
    >>> async with BoundedCache(CacheConfig(max_entries=100)) as cache:
    ...     cache.set("k", "v")
    ...     cache.get("k")
    'v'
"""

from __future__ import annotations

import asyncio
import contextlib
import re
import time
from collections import OrderedDict
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

import pydantic_core
from loguru import logger
from pydantic import BaseModel, Field

V = TypeVar("V")

_MISSING: Any = object()

DEFAULT_SIZE_ESTIMATE = 1024


class CacheConfig(BaseModel):
    """Configuration for a bounded cache.

    Attributes:
        max_entries: Maximum number of live entries
        max_memory_bytes: Approximate memory budget in bytes
        default_ttl: Default time-to-live in seconds
        sweep_interval: Seconds between background sweeps (None disables the task)
        enable_stats: Debug-log every access
    """

    max_entries: int = Field(default=1000, ge=1)
    max_memory_bytes: int = Field(default=100 * 1024 * 1024, ge=1)
    default_ttl: float = Field(default=30 * 60.0, gt=0)
    sweep_interval: float | None = Field(default=5 * 60.0, gt=0)
    enable_stats: bool = False


class CacheStats(BaseModel):
    hit_rate: float
    miss_rate: float
    total_hits: int
    total_misses: int
    evictions: int
    expirations: int
    entry_count: int
    memory_usage: int
    oldest_entry: float | None = None
    newest_entry: float | None = None


@dataclass
class CacheEntry(Generic[V]):
    key: str
    value: V
    created_at: float
    ttl: float
    size: int
    access_count: int = 0
    last_accessed: float = 0.0

    def is_expired(self, now: float) -> bool:
        return now - self.created_at > self.ttl


def estimate_size(value: Any) -> int:
    """Approximate the memory footprint of a value in bytes.

    Text counts two bytes per character; structured values are measured by
    their JSON serialization. Values that cannot be serialized fall back to a
    fixed estimate instead of raising.
    """
    if value is None:
        return 8
    if isinstance(value, bool):
        return 4
    if isinstance(value, (int, float)):
        return 8
    if isinstance(value, str):
        return len(value) * 2
    if isinstance(value, (bytes, bytearray)):
        return len(value)
    try:
        return len(pydantic_core.to_json(value)) * 2
    except (pydantic_core.PydanticSerializationError, TypeError, ValueError) as e:
        logger.debug(f"Size estimation failed for {type(value).__name__}: {e}")
        return DEFAULT_SIZE_ESTIMATE


class BoundedCache(Generic[V]):
    """String-keyed cache bounded by entry count and approximate memory."""

    def __init__(
        self,
        config: CacheConfig | None = None,
        *,
        name: str = "cache",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or CacheConfig()
        self.name = name
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry[V]] = OrderedDict()
        self._inflight: dict[str, asyncio.Task[V]] = {}
        self._memory_usage = 0
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0
        self._sweep_task: asyncio.Task[None] | None = None

        logger.info(
            f"Cache '{name}' initialized (max_entries={self.config.max_entries}, "
            f"max_memory={self.config.max_memory_bytes}, ttl={self.config.default_ttl}s)"
        )

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.has(key)

    @property
    def memory_usage(self) -> int:
        """Approximate bytes held by live entries."""
        return self._memory_usage

    def get(self, key: str, default: V | None = None) -> V | None:
        """Return the cached value, or `default` when missing or expired.

        Expired entries are deleted as a side effect of being read.
        """
        value = self._lookup(key)
        return default if value is _MISSING else value

    def _lookup(self, key: str) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            self._trace(key, "miss")
            return _MISSING

        now = self._clock()
        # Expire on read so stale values are never returned between sweeps
        if entry.is_expired(now):
            self._remove(key)
            self._expirations += 1
            self._misses += 1
            self._trace(key, "expired")
            return _MISSING

        entry.access_count += 1
        entry.last_accessed = now
        self._entries.move_to_end(key)  # Most recently used goes last
        self._hits += 1
        self._trace(key, "hit")
        return entry.value

    def set(self, key: str, value: V, ttl: float | None = None) -> bool:
        """Store a value, evicting least recently used entries as needed.

        Returns:
            False if the value alone exceeds the memory budget and was not stored.
        """
        size = estimate_size(value)
        # Replacing a key must release its old size before eviction runs
        self._remove(key)

        if size > self.config.max_memory_bytes:
            logger.warning(
                f"Cache '{self.name}': value for {key!r} ({size} bytes) exceeds "
                f"memory budget ({self.config.max_memory_bytes} bytes); not cached"
            )
            return False

        self._evict_for(size)

        now = self._clock()
        entry_ttl = ttl if ttl is not None else self.config.default_ttl
        self._entries[key] = CacheEntry(
            key=key,
            value=value,
            created_at=now,
            ttl=entry_ttl,
            size=size,
            last_accessed=now,
        )
        self._memory_usage += size
        logger.debug(
            f"Cache '{self.name}' set {key!r} (size={size}, ttl={entry_ttl}s, "
            f"entries={len(self._entries)}, memory={self._memory_usage})"
        )
        return True

    def has(self, key: str) -> bool:
        """Existence check honoring TTL without updating access stats or LRU order."""
        entry = self._entries.get(key)
        return entry is not None and not entry.is_expired(self._clock())

    def delete(self, key: str) -> bool:
        """Remove an entry; returns True if it existed."""
        removed = self._remove(key)
        if removed:
            logger.debug(f"Cache '{self.name}' deleted {key!r}")
        return removed

    def clear(self) -> None:
        """Drop every entry. Statistics counters are kept."""
        count, memory = len(self._entries), self._memory_usage
        self._entries.clear()
        self._memory_usage = 0
        logger.info(f"Cache '{self.name}' cleared ({count} entries, {memory} bytes freed)")

    def get_many(self, keys: Iterable[str]) -> dict[str, V | None]:
        """Look up several keys; missing or expired keys map to None."""
        return {key: self.get(key) for key in keys}

    def set_many(self, items: Mapping[str, V], ttl: float | None = None) -> None:
        for key, value in items.items():
            self.set(key, value, ttl)

    async def get_or_set(
        self, key: str, loader: Callable[[], Awaitable[V]], ttl: float | None = None
    ) -> V:
        """Return the cached value or load, store, and return it.

        Concurrent callers for the same missing key share one in-flight load.
        The load runs in its own task, so cancelling one caller never cancels
        the load the others are waiting on. A loader error reaches every
        waiter and nothing is cached.

        Args:
            key: Cache key
            loader: Zero-argument coroutine factory producing the value
            ttl: Time-to-live in seconds (None uses the configured default)

        Returns:
            The cached or freshly loaded value
        """
        value = self._lookup(key)
        if value is not _MISSING:
            return value

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.get_running_loop().create_task(
                self._load(key, loader, ttl), name=f"{self.name}-load"
            )
            # Mark the exception retrieved when every caller has gone away.
            task.add_done_callback(lambda t: t.cancelled() or t.exception())
            self._inflight[key] = task
        return await asyncio.shield(task)

    async def _load(
        self, key: str, loader: Callable[[], Awaitable[V]], ttl: float | None
    ) -> V:
        try:
            value = await loader()
            self.set(key, value, ttl)
            return value
        finally:
            self._inflight.pop(key, None)

    def invalidate_pattern(self, pattern: str | re.Pattern[str]) -> int:
        """Delete every key containing a substring or matching a regular expression.

        Returns:
            Number of entries removed
        """
        if isinstance(pattern, re.Pattern):
            matched = [key for key in self._entries if pattern.search(key)]
        else:
            matched = [key for key in self._entries if pattern in key]

        for key in matched:
            self._remove(key)

        logger.debug(
            f"Cache '{self.name}' invalidated {len(matched)} keys matching {pattern!r}"
        )
        return len(matched)

    def sweep(self) -> int:
        """Remove all expired entries; returns the number removed."""
        now = self._clock()
        # Collect first; the dict cannot change size while iterating
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            self._remove(key)
        self._expirations += len(expired)
        if expired:
            logger.debug(f"Cache '{self.name}' sweep removed {len(expired)} expired entries")
        return len(expired)

    def stats(self) -> CacheStats:
        """Snapshot of hit/miss counters, evictions, expirations, and occupancy.

        Returns:
            CacheStats with rates in [0, 1]; oldest/newest are clock readings
        """
        total = self._hits + self._misses
        created = [entry.created_at for entry in self._entries.values()]
        return CacheStats(
            hit_rate=self._hits / total if total else 0.0,
            miss_rate=self._misses / total if total else 0.0,
            total_hits=self._hits,
            total_misses=self._misses,
            evictions=self._evictions,
            expirations=self._expirations,
            entry_count=len(self._entries),
            memory_usage=self._memory_usage,
            oldest_entry=min(created) if created else None,
            newest_entry=max(created) if created else None,
        )

    def start(self) -> None:
        """Start the background sweep task on the running event loop."""
        if self.config.sweep_interval is None or self.is_running:
            return
        self._sweep_task = asyncio.get_running_loop().create_task(
            self._sweep_loop(self.config.sweep_interval), name=f"{self.name}-sweep"
        )

    @property
    def is_running(self) -> bool:
        return self._sweep_task is not None and not self._sweep_task.done()

    async def stop(self) -> None:
        """Cancel the background sweep task and wait for it to finish."""
        task, self._sweep_task = self._sweep_task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def close(self) -> None:
        """Stop the sweep task and drop every entry."""
        await self.stop()
        self.clear()

    async def __aenter__(self) -> BoundedCache[V]:
        self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def _sweep_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            self.sweep()

    def _evict_for(self, size: int) -> None:
        while self._entries and (
            len(self._entries) >= self.config.max_entries
            or self._memory_usage + size > self.config.max_memory_bytes
        ):
            # First item is the least recently used
            key, entry = next(iter(self._entries.items()))
            self._remove(key)
            self._evictions += 1
            logger.debug(
                f"Cache '{self.name}' evicted LRU entry {key!r} "
                f"(last_accessed={entry.last_accessed:.3f}, evictions={self._evictions})"
            )

    def _remove(self, key: str) -> bool:
        entry = self._entries.pop(key, None)
        if entry is None:
            return False
        self._memory_usage -= entry.size
        return True

    def _trace(self, key: str, result: str) -> None:
        if self.config.enable_stats:
            logger.debug(f"Cache '{self.name}' access {key!r}: {result}")
