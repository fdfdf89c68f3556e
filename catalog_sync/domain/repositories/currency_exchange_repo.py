# catalog_sync/domain/repositories/currency_exchange_repo.py
from __future__ import annotations
import uuid
from datetime import datetime, timezone
from typing import Dict, Optional

from sqlalchemy import insert, select
from sqlalchemy.ext.asyncio import AsyncEngine

from catalog_sync.db import tables as t
from catalog_sync.domain.models.currency import CurrencyMatrix
from catalog_sync.domain.repositories.catalog_source_repo import source_errors


def _to_matrix(row) -> CurrencyMatrix:
    return CurrencyMatrix(id=str(row["id"]), created_at=row["created_at"], rates=row["data"])


class CurrencyExchangeRepo:
    """
    Append-only history of conversion matrices (`currency_exchange` table).
    The newest row by creation time is the current matrix.
    """

    def __init__(self, engine: AsyncEngine):
        self.engine = engine

    async def get_latest(self) -> Optional[CurrencyMatrix]:
        async with source_errors("latest currency matrix"):
            async with self.engine.connect() as conn:
                row = (
                    await conn.execute(
                        select(t.currency_exchange).order_by(t.currency_exchange.c.created_at.desc()).limit(1)
                    )
                ).mappings().first()
            return _to_matrix(row) if row else None

    async def insert(self, rates: Dict[str, Dict[str, float]]) -> CurrencyMatrix:
        """Validate and persist a full replacement matrix as a new version."""
        now = datetime.now(timezone.utc)
        matrix = CurrencyMatrix(id=str(uuid.uuid4()), created_at=now, rates=rates)
        async with source_errors("currency matrix insert"):
            async with self.engine.begin() as conn:
                await conn.execute(
                    insert(t.currency_exchange).values(
                        id=matrix.id,
                        data=matrix.rates,
                        # naive UTC, matching the TIMESTAMP column
                        created_at=now.replace(tzinfo=None),
                        updated_at=now.replace(tzinfo=None),
                    )
                )
        return matrix
