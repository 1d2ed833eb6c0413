from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Awaitable, Callable, Optional

from settleup.db.models import SettlementSuggestion
from settleup.logging import get_logger

if TYPE_CHECKING:
    from apscheduler.schedulers.asyncio import AsyncIOScheduler

# (group_id, currency, ledger fingerprint, algorithm)
CacheKey = tuple[str, str, str, str]


@dataclass(slots=True, frozen=True)
class CachedSuggestions:
    transactions: tuple[SettlementSuggestion, ...]
    algorithm_used: str
    generated_at: datetime


@dataclass(slots=True, frozen=True)
class CacheStats:
    hits: int
    misses: int
    entries: int
    in_flight: int


class SuggestionCache:
    """Suggestion memo with single-flight computation.

    Concurrent callers for the same key share one computation. Entries are
    stored only once fully computed, expire after ``ttl_seconds`` and are
    dropped by ``invalidate`` whenever the ledger of a group and currency
    changes. A computation that was running while its scope got invalidated
    still answers its callers but is not stored.
    """

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        purge_interval_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._purge_interval = purge_interval_seconds
        self._clock = clock
        self._entries: dict[CacheKey, tuple[float, CachedSuggestions]] = {}
        self._inflight: dict[CacheKey, asyncio.Task[CachedSuggestions]] = {}
        self._generations: dict[tuple[str, str], int] = {}
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._hits = 0
        self._misses = 0
        self._log = get_logger(__name__)

    async def start(self) -> None:
        from settleup.scheduler import setup_scheduler

        if self._scheduler is None:
            self._scheduler = await setup_scheduler(self, self._purge_interval)

    async def close(self) -> None:
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
        for task in list(self._inflight.values()):
            task.cancel()
        self._inflight.clear()
        self._entries.clear()

    def get(self, key: CacheKey) -> Optional[CachedSuggestions]:
        stored = self._entries.get(key)
        if stored is None:
            return None
        expires_at, value = stored
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    async def get_or_compute(
        self,
        key: CacheKey,
        compute: Callable[[], Awaitable[CachedSuggestions]],
    ) -> CachedSuggestions:
        cached = self.get(key)
        if cached is not None:
            self._hits += 1
            self._log.info("suggestions.cache.hit", group_id=key[0], currency=key[1], algorithm=key[3])
            return cached

        task = self._inflight.get(key)
        if task is None:
            self._misses += 1
            self._log.info("suggestions.cache.miss", group_id=key[0], currency=key[1], algorithm=key[3])
            generation = self._generations.get((key[0], key[1]), 0)
            task = asyncio.ensure_future(self._populate(key, compute, generation))
            self._inflight[key] = task
            task.add_done_callback(lambda done: self._forget(key, done))
        else:
            self._log.info("suggestions.cache.join", group_id=key[0], currency=key[1], algorithm=key[3])

        return await asyncio.shield(task)

    async def _populate(
        self,
        key: CacheKey,
        compute: Callable[[], Awaitable[CachedSuggestions]],
        generation: int,
    ) -> CachedSuggestions:
        scope = (key[0], key[1])
        value = await compute()
        if self._generations.get(scope, 0) == generation:
            self._entries[key] = (self._clock() + self._ttl, value)
        else:
            self._log.info("suggestions.cache.discard_stale", group_id=key[0], currency=key[1])
        return value

    def _forget(self, key: CacheKey, task: asyncio.Task[CachedSuggestions]) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        # Mark the error as observed even if every waiter was cancelled.
        if not task.cancelled():
            task.exception()

    def invalidate(self, group_id: str, currency: str) -> int:
        scope = (group_id, currency)
        self._generations[scope] = self._generations.get(scope, 0) + 1
        stale = [key for key in self._entries if key[0] == group_id and key[1] == currency]
        for key in stale:
            del self._entries[key]
        self._log.info("suggestions.cache.invalidate", group_id=group_id, currency=currency, dropped=len(stale))
        return len(stale)

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [key for key, (expires_at, _) in self._entries.items() if now >= expires_at]
        for key in expired:
            del self._entries[key]
        if expired:
            self._log.info("suggestions.cache.purge", dropped=len(expired))
        return len(expired)

    def stats(self) -> CacheStats:
        return CacheStats(
            hits=self._hits,
            misses=self._misses,
            entries=len(self._entries),
            in_flight=len(self._inflight),
        )
