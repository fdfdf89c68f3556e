# catalog_sync/core/runtime.py
from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from catalog_sync.core.config import Settings
from catalog_sync.db import mongo, postgres, redis as r
from catalog_sync.domain.errors import CatalogSyncError
from catalog_sync.domain.repositories.currency_exchange_repo import CurrencyExchangeRepo
from catalog_sync.domain.services.coordinator_svc import PipelineCoordinator
from catalog_sync.domain.services.currency_svc import CurrencyTable, refresh_currency_table, run_currency_refresher
from catalog_sync.domain.services.pipeline_svc import build_coordinator, run_pipeline
from catalog_sync.domain.services.rates_ticker_svc import run_rates_ticker

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    """Long-lived services shared by the HTTP app and the standalone worker."""
    currency: CurrencyTable
    currency_repo: CurrencyExchangeRepo
    coordinator: Optional[PipelineCoordinator] = None
    stop: asyncio.Event = field(default_factory=asyncio.Event)
    tasks: List[asyncio.Task] = field(default_factory=list)

    def spawn(self, coro, name: str) -> None:
        self.tasks.append(asyncio.create_task(coro, name=name))

    async def shutdown(self) -> None:
        """Signal every background loop, wait for them to drain, then close connections."""
        self.stop.set()
        if self.coordinator is not None:
            self.coordinator.stop()
        results = await asyncio.gather(*self.tasks, return_exceptions=True)
        for task, result in zip(self.tasks, results):
            if isinstance(result, BaseException) and not isinstance(result, asyncio.CancelledError):
                logger.error("background task %s failed: %r", task.get_name(), result)
        self.tasks.clear()

        await r.disconnect()
        await mongo.disconnect()
        await postgres.disconnect()
        logger.info("runtime stopped")


async def start_runtime(settings: Settings, *, pipeline: bool) -> Runtime:
    await mongo.connect()
    await r.connect()
    await postgres.connect()
    engine = postgres.get_engine()

    runtime = Runtime(
        currency=CurrencyTable(history_size=settings.currency_history_size),
        currency_repo=CurrencyExchangeRepo(engine),
    )

    try:
        await refresh_currency_table(runtime.currency_repo, runtime.currency)
    except CatalogSyncError as e:
        logger.warning("initial currency load failed, canonical prices stay empty until refresh: %s", e)

    runtime.spawn(
        run_currency_refresher(runtime.currency_repo, runtime.currency,
                               interval_s=settings.currency_refresh_s, stop=runtime.stop),
        name="currency-refresher",
    )
    if settings.EXMO_TICKER_URL:
        runtime.spawn(
            run_rates_ticker(settings.EXMO_TICKER_URL, runtime.currency_repo, runtime.currency,
                             interval_s=settings.ticker_interval_s, timeout_s=settings.ticker_timeout_s,
                             stop=runtime.stop),
            name="rates-ticker",
        )

    if pipeline:
        redis = r.get_redis()
        if redis is None:
            logger.error("pipeline requested but Redis is unavailable; change log not consumed")
        else:
            runtime.coordinator = build_coordinator(
                db=mongo.get_db(), redis=redis, engine=engine, currency=runtime.currency, settings=settings,
            )
            runtime.spawn(
                run_pipeline(runtime.coordinator, redis,
                             lock_ttl=settings.pipeline_leader_lock_ttl, stop=runtime.stop),
                name="pipeline",
            )
    logger.info("runtime started pipeline=%s ticker=%s", runtime.coordinator is not None,
                bool(settings.EXMO_TICKER_URL))
    return runtime
