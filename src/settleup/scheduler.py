from __future__ import annotations

from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from settleup.logging import get_logger

if TYPE_CHECKING:
    from settleup.services.cache import SuggestionCache


async def setup_scheduler(cache: SuggestionCache, interval_seconds: float) -> AsyncIOScheduler:
    scheduler = AsyncIOScheduler(timezone="UTC")
    scheduler.add_job(
        _purge_job,
        IntervalTrigger(seconds=interval_seconds),
        kwargs={"cache": cache},
    )
    scheduler.start()
    return scheduler


async def _purge_job(cache: SuggestionCache) -> None:
    log = get_logger(__name__)
    dropped = cache.purge_expired()
    stats = cache.stats()
    log.debug("suggestions.cache.stats", dropped=dropped, entries=stats.entries, hits=stats.hits, misses=stats.misses)
