# catalog_sync/domain/repositories/category_repo.py
from __future__ import annotations
from typing import Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncEngine

from catalog_sync.db import tables as t
from catalog_sync.domain.models.catalog import Category
from catalog_sync.domain.repositories.catalog_source_repo import source_errors


class CategoryRepo:
    """Category tree access for the level recomputation step."""

    def __init__(self, engine: AsyncEngine):
        self.engine = engine

    async def list_all(self) -> List[Category]:
        async with source_errors("categories"):
            async with self.engine.connect() as conn:
                rows = (await conn.execute(select(t.categories).order_by(t.categories.c.id))).mappings().all()
            return [Category.model_validate(dict(r)) for r in rows]

    async def update_levels(self, levels: Dict[int, int]) -> int:
        if not levels:
            return 0
        async with source_errors("category levels"):
            async with self.engine.begin() as conn:
                for category_id, level in sorted(levels.items()):
                    await conn.execute(
                        update(t.categories).where(t.categories.c.id == category_id).values(level=level)
                    )
        return len(levels)

    async def move(self, category_id: int, parent_id: Optional[int], levels: Dict[int, int]) -> None:
        """Re-parent one category and write its subtree's new levels in one transaction."""
        async with source_errors("category move"):
            async with self.engine.begin() as conn:
                await conn.execute(
                    update(t.categories).where(t.categories.c.id == category_id).values(parent_id=parent_id)
                )
                for cid, level in sorted(levels.items()):
                    await conn.execute(update(t.categories).where(t.categories.c.id == cid).values(level=level))
