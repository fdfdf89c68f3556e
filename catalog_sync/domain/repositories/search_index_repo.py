# catalog_sync/domain/repositories/search_index_repo.py
from __future__ import annotations
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorCollection, AsyncIOMotorDatabase
from pymongo.errors import AutoReconnect, ConnectionFailure, NetworkTimeout, ServerSelectionTimeoutError

from catalog_sync.domain.errors import IndexUnavailable
from catalog_sync.domain.models.documents import PRODUCTS_INDEX, STORES_INDEX, DocumentKey
from catalog_sync.domain.models.pipeline import DeadLetter


@asynccontextmanager
async def index_errors(what: str) -> AsyncIterator[None]:
    """Connectivity failures never mean "document doesn't exist": surface them as IndexUnavailable."""
    try:
        yield
    except (ServerSelectionTimeoutError, AutoReconnect, ConnectionFailure, NetworkTimeout) as e:
        raise IndexUnavailable(f"index store unavailable during {what}: {e}") from e


class SearchIndexRepo:
    """
    Denormalized documents in the `stores` and `products` collections, keyed by `_id` = source id.
    Writes always replace the whole document.
    """

    def __init__(self, db: AsyncIOMotorDatabase, collections: Optional[Dict[str, str]] = None):
        names = {STORES_INDEX: STORES_INDEX, PRODUCTS_INDEX: PRODUCTS_INDEX, **(collections or {})}
        self.cols: Dict[str, AsyncIOMotorCollection] = {index: db[name] for index, name in names.items()}

    def _col(self, key: DocumentKey) -> AsyncIOMotorCollection:
        return self.cols[key.index]

    async def replace(self, key: DocumentKey, body: Dict[str, Any]) -> None:
        async with index_errors(f"upsert {key}"):
            await self._col(key).replace_one({"_id": key.id}, {"_id": key.id, **body}, upsert=True)

    async def delete(self, key: DocumentKey) -> bool:
        async with index_errors(f"delete {key}"):
            res = await self._col(key).delete_one({"_id": key.id})
        return res.deleted_count > 0

    async def get(self, key: DocumentKey) -> Optional[Dict[str, Any]]:
        async with index_errors(f"get {key}"):
            return await self._col(key).find_one({"_id": key.id}, {"_id": 0})


@dataclass(frozen=True)
class AppliedPosition:
    position: int
    deleted: bool = False


class PositionRepo:
    """
    Last applied log position per document key (`projection_positions`).
    A tombstone keeps its position so a stale upsert cannot resurrect the document.
    """

    def __init__(self, db: AsyncIOMotorDatabase, collection_name: str = "projection_positions"):
        self.col = db[collection_name]

    async def get(self, key: DocumentKey) -> Optional[AppliedPosition]:
        async with index_errors(f"position lookup {key}"):
            doc = await self.col.find_one({"_id": str(key)})
        return AppliedPosition(position=doc["position"], deleted=doc.get("deleted", False)) if doc else None

    async def set(self, key: DocumentKey, position: int, *, deleted: bool) -> None:
        async with index_errors(f"position update {key}"):
            await self.col.update_one(
                {"_id": str(key)},
                {
                    "$max": {"position": position},
                    "$set": {"deleted": deleted, "updated_at": datetime.now(timezone.utc)},
                },
                upsert=True,
            )


class DeadLetterRepo:
    """Dead-letter record of permanently failed events (`dead_letters`)."""

    def __init__(self, db: AsyncIOMotorDatabase, collection_name: str = "dead_letters"):
        self.col = db[collection_name]

    async def record(self, letter: DeadLetter) -> None:
        async with index_errors("dead-letter insert"):
            await self.col.insert_one(letter.model_dump())

    async def recent(self, limit: int = 50) -> List[DeadLetter]:
        async with index_errors("dead-letter listing"):
            cursor = self.col.find({}, {"_id": 0}).sort("created_at", -1).limit(limit)
            return [DeadLetter.model_validate(doc) async for doc in cursor]
