# catalog_sync/domain/services/currency_svc.py
from __future__ import annotations
import asyncio
import logging
from collections import deque
from typing import Deque, List, Optional, Union

from catalog_sync.domain.errors import StaleMatrix
from catalog_sync.domain.models.currency import CurrencyMatrix

logger = logging.getLogger(__name__)


class CurrencyTable:
    """
    Current conversion matrix plus a bounded history of recent versions.

    Readers take `snapshot()` once and work on that immutable object; `load()` swaps the
    whole reference, so a reader sees either the previous version or the new one.
    """

    def __init__(self, history_size: int = 10):
        self._current: Optional[CurrencyMatrix] = None
        self._history: Deque[CurrencyMatrix] = deque(maxlen=history_size)

    @property
    def current(self) -> Optional[CurrencyMatrix]:
        return self._current

    def snapshot(self) -> CurrencyMatrix:
        current = self._current
        if current is None:
            raise StaleMatrix("Currency matrix has not been loaded")
        return current

    def load(self, matrix: CurrencyMatrix) -> bool:
        """Install `matrix` as the current version. Older or identical versions are ignored."""
        current = self._current
        if current is not None:
            if matrix.created_at < current.created_at:
                logger.warning(
                    "currency load ignored: version %s (%s) is older than current %s (%s)",
                    matrix.id, matrix.created_at, current.id, current.created_at,
                )
                return False
            if matrix.id is not None and matrix.id == current.id:
                return False
        self._history.append(matrix)
        self._current = matrix
        logger.info("currency matrix loaded id=%s created_at=%s currencies=%s",
                    matrix.id, matrix.created_at, sorted(matrix.currencies))
        return True

    def history(self) -> List[CurrencyMatrix]:
        return list(self._history)


def convert(amount: float, src: str, dst: str, rates: Union[CurrencyTable, CurrencyMatrix]) -> float:
    """
    Price of `amount` `src` expressed in `dst`.
    Same currency short-circuits to `amount` untouched, whatever the table holds.
    Otherwise one snapshot is used for the whole conversion: amount * rate[src][dst].
    """
    src, dst = src.upper(), dst.upper()
    if src == dst:
        return amount
    matrix = rates.snapshot() if isinstance(rates, CurrencyTable) else rates
    return amount * matrix.rate(src, dst)


# ---------- Refresh from the relational store --------------------------------

async def refresh_currency_table(repo, table: CurrencyTable) -> bool:
    """Load the newest persisted matrix row into `table`. Returns True when a new version was installed."""
    latest = await repo.get_latest()
    if latest is None:
        logger.warning("currency refresh: no matrix row in store")
        return False
    return table.load(latest)


async def run_currency_refresher(repo, table: CurrencyTable, *, interval_s: float, stop: asyncio.Event) -> None:
    logger.info("currency refresher started interval=%ss", interval_s)
    while not stop.is_set():
        try:
            await refresh_currency_table(repo, table)
        except Exception as e:
            # keep serving the previous snapshot; next tick retries
            logger.error("currency refresh failed: %s", e)
        try:
            await asyncio.wait_for(stop.wait(), timeout=interval_s)
        except asyncio.TimeoutError:
            pass
    logger.info("currency refresher stopped")
