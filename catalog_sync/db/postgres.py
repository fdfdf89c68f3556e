# catalog_sync/db/postgres.py
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from catalog_sync.core.config import get_settings
import logging

logger = logging.getLogger(__name__)
settings = get_settings()

_engine: AsyncEngine | None = None


def get_engine() -> AsyncEngine:
    assert _engine is not None, "PostgreSQL engine not initialized"
    return _engine


async def connect():
    """
    Create the async engine for the relational catalog.
    A failed initial ping is only logged: the pool reconnects on first use and
    the pipeline treats an unreachable source as retryable.
    """
    global _engine
    _engine = create_async_engine(
        settings.DATABASE_URL,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=10,
        pool_timeout=10,
    )
    try:
        async with _engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info("PostgreSQL connected (ping ok)")
    except Exception as e:
        logger.warning("PostgreSQL ping at startup failed: %s", e)


async def disconnect():
    global _engine
    if _engine is not None:
        await _engine.dispose()
    _engine = None
