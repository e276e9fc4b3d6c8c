"""
Label Cache

In-memory TTL cache of resolved label sets keyed by image reference, with
request coalescing: concurrent misses for one key share a single fetch and
all receive its result or its exception.

The lock guards only the entry and in-flight maps. Fetches run in their own
task outside the lock, so a slow registry for one image never holds up
lookups or fetches for another.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Generic, Optional, TypeVar

from utils.tasks import log_task_exception

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TTL_SECONDS = 300.0


@dataclass
class CacheEntry(Generic[T]):
    key: str
    value: T
    inserted_at: float
    expires_at: float


class LabelCache:
    """
    TTL cache with per-key request coalescing.

    Failed fetches are not cached; the next call for the key fetches again.
    """

    MAX_CACHE_SIZE = 1000  # Prevent unbounded growth

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_entries: int = MAX_CACHE_SIZE,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._inflight: Dict[str, asyncio.Task] = {}
        self._lock = asyncio.Lock()

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    async def resolve(self, key: str, fetch: Callable[[], Awaitable[T]]) -> T:
        """
        Return the cached value for key, or run fetch() once to produce it.

        Callers arriving while a fetch is in flight await that same fetch.
        Cancelling one caller does not cancel the shared fetch.
        """
        async with self._lock:
            entry = self._entries.get(key)
            if entry is not None and self._clock() < entry.expires_at:
                logger.debug(f"Cache hit for {key}")
                return entry.value

            task = self._inflight.get(key)
            if task is None:
                logger.debug(f"Cache miss for {key}, fetching")
                task = asyncio.create_task(self._fetch_and_store(key, fetch))
                task.add_done_callback(log_task_exception)
                self._inflight[key] = task

        return await asyncio.shield(task)

    async def _fetch_and_store(self, key: str, fetch: Callable[[], Awaitable[T]]) -> T:
        stored = False
        value = None
        try:
            value = await fetch()
            stored = True
            return value
        finally:
            async with self._lock:
                self._inflight.pop(key, None)
                if stored:
                    self._store(key, value)

    def _store(self, key: str, value):
        """Insert an entry. Caller holds the lock."""
        if key not in self._entries and len(self._entries) >= self._max_entries:
            self._cleanup_expired()

            # If still over limit after TTL cleanup, remove oldest entries
            if len(self._entries) >= self._max_entries:
                oldest = sorted(self._entries.values(), key=lambda e: e.inserted_at)
                to_remove = oldest[:max(self._max_entries // 10, 1)]
                for entry in to_remove:
                    del self._entries[entry.key]
                logger.warning(f"Label cache exceeded limit, removed {len(to_remove)} oldest entries")

        now = self._clock()
        self._entries[key] = CacheEntry(key=key, value=value, inserted_at=now, expires_at=now + self._ttl)

    def _cleanup_expired(self) -> int:
        """Remove all expired entries. Caller holds the lock."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug(f"Cleaned up {len(expired)} expired cache entries")
        return len(expired)

    async def sweep_expired(self) -> int:
        """Drop expired entries now. Returns how many were removed."""
        async with self._lock:
            return self._cleanup_expired()

    async def run_sweeper(self, interval_seconds: float):
        """Background loop calling sweep_expired() every interval_seconds until cancelled."""
        logger.info(f"Label cache sweeper running every {interval_seconds}s")
        while True:
            await asyncio.sleep(interval_seconds)
            await self.sweep_expired()

    async def invalidate(self, key: str) -> bool:
        """Forget one key. In-flight fetches are left to finish."""
        async with self._lock:
            return self._entries.pop(key, None) is not None

    async def clear(self):
        async with self._lock:
            self._entries.clear()

    def peek(self, key: str) -> Optional[CacheEntry]:
        """Current entry for key, expired or not (inspection only)."""
        return self._entries.get(key)

    def __len__(self) -> int:
        return len(self._entries)
