# catalog_sync/api/deps.py
from typing import Optional
from fastapi import Depends, HTTPException, Request
from catalog_sync.db.mongo import get_db
from catalog_sync.db.postgres import get_engine
from catalog_sync.db.redis import get_redis
from catalog_sync.domain.repositories.category_repo import CategoryRepo
from catalog_sync.domain.repositories.currency_exchange_repo import CurrencyExchangeRepo
from catalog_sync.domain.repositories.search_index_repo import DeadLetterRepo
from catalog_sync.domain.services.coordinator_svc import PipelineCoordinator
from catalog_sync.domain.services.currency_svc import CurrencyTable
from catalog_sync.core.config import get_settings


# Dependency for injecting the MongoDB database into endpoints/services
async def mongo_db(db = Depends(get_db)):
    return db


# Dependency for injecting the Redis client into endpoints/services
def redis_dep():
    return get_redis()


def engine_dep():
    return get_engine()


def currency_table(request: Request) -> CurrencyTable:
    return request.app.state.runtime.currency


def coordinator_dep(request: Request) -> Optional[PipelineCoordinator]:
    # None when this process does not run the pipeline
    return request.app.state.runtime.coordinator


def currency_repo(engine = Depends(engine_dep)) -> CurrencyExchangeRepo:
    return CurrencyExchangeRepo(engine)


def category_repo(engine = Depends(engine_dep)) -> CategoryRepo:
    return CategoryRepo(engine)


def dead_letter_repo(db = Depends(mongo_db)) -> DeadLetterRepo:
    return DeadLetterRepo(db, get_settings().dead_letters_collection)


def require_coordinator(coordinator = Depends(coordinator_dep)) -> PipelineCoordinator:
    if coordinator is None:
        raise HTTPException(status_code=404, detail="Pipeline is not running in this process")
    return coordinator
