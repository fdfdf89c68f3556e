# catalog_sync/domain/services/applier_svc.py
from __future__ import annotations
import logging
from collections import OrderedDict
from enum import Enum
from typing import Optional

from catalog_sync.domain.models.documents import DocumentKey, Projection, Tombstone
from catalog_sync.domain.repositories.search_index_repo import AppliedPosition, PositionRepo, SearchIndexRepo

logger = logging.getLogger(__name__)


class ApplyOutcome(str, Enum):
    APPLIED = "applied"
    DELETED = "deleted"
    SKIPPED = "skipped"


class ProjectionApplier:
    """
    Idempotent writes to the search index, guarded by a per-key log position.

    - apply only when the incoming position is strictly greater than the last applied one
    - upserts replace the whole document; tombstones delete by key and keep their position
    - index/position store failures propagate as IndexUnavailable (retried by the coordinator)

    Positions are durable in PositionRepo; the in-memory LRU only saves a round trip.
    Each key is written by exactly one partition worker, so check-then-write does not race.
    """

    def __init__(self, index: SearchIndexRepo, positions: PositionRepo, cache_size: int = 100_000):
        self.index = index
        self.positions = positions
        self.cache_size = cache_size
        self._cache: "OrderedDict[DocumentKey, AppliedPosition]" = OrderedDict()

    def _remember(self, key: DocumentKey, applied: AppliedPosition) -> None:
        self._cache[key] = applied
        self._cache.move_to_end(key)
        while len(self._cache) > self.cache_size:
            self._cache.popitem(last=False)

    async def last_applied(self, key: DocumentKey) -> Optional[AppliedPosition]:
        applied = self._cache.get(key)
        if applied is None:
            applied = await self.positions.get(key)
            if applied is not None:
                self._remember(key, applied)
        return applied

    async def apply(self, projection: Projection, position: int) -> ApplyOutcome:
        key = projection.key
        last = await self.last_applied(key)
        if last is not None and position <= last.position:
            logger.debug("apply %s skipped: position %s <= last applied %s", key, position, last.position)
            return ApplyOutcome.SKIPPED

        if isinstance(projection, Tombstone):
            existed = await self.index.delete(key)
            outcome = ApplyOutcome.DELETED
            logger.debug("apply %s tombstone (%s) existed=%s position=%s", key, projection.reason, existed, position)
        else:
            await self.index.replace(key, projection.model_dump())
            outcome = ApplyOutcome.APPLIED
            logger.debug("apply %s upsert position=%s", key, position)

        deleted = outcome is ApplyOutcome.DELETED
        await self.positions.set(key, position, deleted=deleted)
        self._remember(key, AppliedPosition(position=position, deleted=deleted))
        return outcome
