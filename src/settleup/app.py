from __future__ import annotations

import argparse
import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional, Sequence

from settleup.config import Settings, get_settings
from settleup.db.repo import Database, SettleUpRepository
from settleup.logging import configure_logging, get_logger
from settleup.services.cache import SuggestionCache
from settleup.services.lifecycle import PaymentProcessor, SettlementLifecycle
from settleup.services.suggestions import SettlementService


@asynccontextmanager
async def open_service(
    settings: Optional[Settings] = None,
    payments: Optional[PaymentProcessor] = None,
) -> AsyncIterator[SettlementService]:
    settings = settings or get_settings()
    log = get_logger(__name__)

    db = Database(settings.database_url)
    await db.connect()
    repo = SettleUpRepository(db)
    cache = SuggestionCache(
        ttl_seconds=settings.suggestion_ttl_seconds,
        purge_interval_seconds=settings.cache_purge_interval_seconds,
    )
    await cache.start()

    lifecycle = SettlementLifecycle(
        store=repo,
        members=db,
        cache=cache,
        payments=payments,
        max_retries=settings.cas_max_retries,
    )
    service = SettlementService(ledger=repo, lifecycle=lifecycle, cache=cache, settings=settings)

    log.info("service.start")
    try:
        yield service
    finally:
        await cache.close()
        await db.close()
        log.info("service.stop")


async def run_comparison(group_id: str, currency: str) -> None:
    settings = get_settings()
    configure_logging(settings.log_level)
    log = get_logger(__name__)

    async with open_service(settings) as service:
        report = await service.compare_algorithms(group_id, currency)

    for run in report.runs:
        log.info(
            "comparison.run",
            algorithm=run.name,
            transactions=run.transaction_count,
            total_amount=run.total_amount,
            average_amount=round(run.average_amount, 2),
            friendship_utilization=round(run.friendship_utilization, 3),
            elapsed_ms=round(run.elapsed_ms, 3),
        )
    best = report.best()
    log.info("comparison.summary", totals_agree=report.totals_agree, best=best.name if best else None)


def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Compare settlement algorithms for one group ledger.")
    parser.add_argument("group_id")
    parser.add_argument("currency")
    args = parser.parse_args(argv)
    asyncio.run(run_comparison(args.group_id, args.currency.upper()))


if __name__ == "__main__":
    main()
