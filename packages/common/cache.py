"""In-process TTL cache with per-entry expiry.

Entries are stored as `{data, timestamp, ttl}` in a `cachetools.TLRUCache`:
- reads lazily evict an entry once its TTL has elapsed;
- a background sweeper task purges stale entries on a fixed interval;
- `maxsize` bounds memory (least recently used entries go first).

The cache is per process and never a source of truth; a miss only costs one
extra read of the backing store.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from cachetools import TLRUCache

from .metrics import cache_hits, cache_misses

T = TypeVar("T")

log = logging.getLogger(__name__)

DEFAULT_SWEEP_INTERVAL_S = 600.0


@dataclass(frozen=True)
class _Entry:
    data: Any
    timestamp: float
    ttl: float


def _expires_at(_key: str, entry: _Entry, _now: float) -> float:
    return entry.timestamp + entry.ttl


class TTLCache:
    """String-keyed cache where every entry carries its own TTL (seconds)."""

    def __init__(
        self,
        name: str = "default",
        maxsize: int = 10_000,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL_S,
        timer: Callable[[], float] = time.monotonic,
    ) -> None:
        """Create an empty cache.

        Args:
            name: Label used in logs and metrics.
            maxsize: Maximum number of live entries.
            sweep_interval: Seconds between proactive sweeps once `start()` is called.
            timer: Monotonic clock; injectable for tests.
        """
        self.name = name
        self._timer = timer
        self._sweep_interval = sweep_interval
        self._entries: TLRUCache = TLRUCache(maxsize=maxsize, ttu=_expires_at, timer=timer)
        self._sweeper: Optional[asyncio.Task] = None

    def get(self, key: str) -> Any | None:
        """Return the cached value, or None when absent or expired."""
        try:
            entry = self._entries[key]
        except KeyError:
            self._evict(key)
            cache_misses.labels(self.name).inc()
            return None
        cache_hits.labels(self.name).inc()
        return entry.data

    def set(self, key: str, value: Any, ttl: float) -> None:
        """Store `value` under `key` for `ttl` seconds."""
        self._entries[key] = _Entry(data=value, timestamp=self._timer(), ttl=float(ttl))

    def delete(self, key: str) -> None:
        """Drop `key` if present."""
        self._evict(key)

    def clear(self) -> None:
        """Drop every entry."""
        self._entries.clear()

    def sweep(self) -> int:
        """Purge expired entries and return how many were removed."""
        before = self._entries.currsize
        self._entries.expire()
        return before - self._entries.currsize

    async def get_or_load(
        self,
        key: str,
        loader: Callable[[], Awaitable[Optional[T]]],
        ttl: float,
    ) -> Optional[T]:
        """Read-through helper: return the cached value or load, store and return it.

        `None` results are not cached so a later read retries the loader.
        """
        cached = self.get(key)
        if cached is not None:
            return cached
        value = await loader()
        if value is not None:
            self.set(key, value, ttl)
        return value

    def stats(self) -> Dict[str, Any]:
        """Return size information for diagnostics."""
        return {
            "name": self.name,
            "entries": self._entries.currsize,
            "maxsize": self._entries.maxsize,
            "sweep_interval_s": self._sweep_interval,
        }

    # ---- Background sweep ----

    def start(self) -> None:
        """Start the periodic sweeper on the running event loop (idempotent)."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_loop(), name=f"cache-sweep:{self.name}")

    async def stop(self) -> None:
        """Cancel the sweeper task and wait for it to finish."""
        task, self._sweeper = self._sweeper, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            try:
                purged = self.sweep()
            except Exception:
                log.exception("Cache sweep failed cache=%s", self.name)
                continue
            if purged:
                log.debug("Cache sweep cache=%s purged=%d", self.name, purged)

    def _evict(self, key: str) -> None:
        # TLRUCache deletes expired items but still signals KeyError for them.
        try:
            del self._entries[key]
        except KeyError:
            pass
