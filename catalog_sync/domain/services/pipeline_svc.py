import asyncio
import logging
from typing import Optional

from redis.exceptions import RedisError

from catalog_sync.domain.repositories.catalog_source_repo import CatalogSourceRepo
from catalog_sync.domain.repositories.change_stream_repo import ChangeStreamRepo, CheckpointRepo
from catalog_sync.domain.repositories.search_index_repo import DeadLetterRepo, PositionRepo, SearchIndexRepo
from catalog_sync.domain.services.applier_svc import ProjectionApplier
from catalog_sync.domain.services.assembler_svc import DocumentAssembler
from catalog_sync.domain.services.coordinator_svc import PipelineCoordinator, PipelineOptions
from catalog_sync.domain.services.currency_svc import CurrencyTable
from catalog_sync.utils.locks import RedisLock

logger = logging.getLogger(__name__)

LEADER_LOCK_KEY = "catalog_sync:coordinator"


def build_coordinator(*, db, redis, engine, currency: CurrencyTable, settings) -> PipelineCoordinator:
    """
    Wire the projection pipeline from live connections:
      change log (Redis streams) -> decoder -> assembler (PostgreSQL + currency table)
      -> applier (Mongo search collections + positions) with dead letters in Mongo.
    """
    source = CatalogSourceRepo(engine, isolation_level=settings.SOURCE_ISOLATION_LEVEL)
    index = SearchIndexRepo(db, collections={
        "stores": settings.stores_index,
        "products": settings.products_index,
    })
    return PipelineCoordinator(
        source=ChangeStreamRepo(redis, settings.PIPELINE_STREAMS),
        checkpoints=CheckpointRepo(redis, settings.pipeline_checkpoint_key),
        assembler=DocumentAssembler(source, currency, canonical_currency=settings.CANONICAL_CURRENCY),
        applier=ProjectionApplier(index, PositionRepo(db, settings.positions_collection)),
        dead_letters=DeadLetterRepo(db, settings.dead_letters_collection),
        options=PipelineOptions.from_settings(settings),
    )


async def _wait(stop: asyncio.Event, timeout: float) -> bool:
    try:
        await asyncio.wait_for(stop.wait(), timeout=timeout)
        return True
    except asyncio.TimeoutError:
        return False


async def _hold_leadership(lock: RedisLock, coordinator: PipelineCoordinator, every_s: float) -> None:
    while True:
        await asyncio.sleep(every_s)
        try:
            still_leader = await lock.extend()
        except RedisError as e:
            logger.warning("leader lock heartbeat failed: %s", e)
            continue
        if not still_leader:
            logger.error("leader lock lost; stopping coordinator")
            coordinator.stop()
            return


async def _forward_stop(stop: asyncio.Event, coordinator: PipelineCoordinator) -> None:
    await stop.wait()
    coordinator.stop()


async def run_pipeline(
    coordinator: PipelineCoordinator,
    redis,
    *,
    lock_ttl: int,
    stop: asyncio.Event,
    lock: Optional[RedisLock] = None,
) -> None:
    """
    Run `coordinator` while holding the leader lock, so a single instance consumes the
    change log at a time. Stand-by instances poll for the lock every ttl/3 seconds.
    """
    lock = lock or RedisLock(redis, LEADER_LOCK_KEY, ttl=lock_ttl)
    every_s = max(lock_ttl / 3, 0.1)

    while True:
        try:
            if await lock.acquire():
                break
            logger.info("another coordinator holds %s; standing by", lock.key)
        except RedisError as e:
            logger.warning("leader lock acquire failed: %s", e)
        if await _wait(stop, every_s):
            return

    logger.info("leader lock acquired")
    heartbeat = asyncio.create_task(_hold_leadership(lock, coordinator, every_s))
    forwarder = asyncio.create_task(_forward_stop(stop, coordinator))
    try:
        await coordinator.run()
    finally:
        heartbeat.cancel()
        forwarder.cancel()
        await asyncio.gather(heartbeat, forwarder, return_exceptions=True)
        try:
            await lock.release()
        except RedisError as e:
            logger.warning("leader lock release failed, it expires in %ss: %s", lock_ttl, e)
