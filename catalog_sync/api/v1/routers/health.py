# catalog_sync/api/v1/routers/health.py
import time
from fastapi import APIRouter, Depends
from sqlalchemy import text
from catalog_sync.api.deps import coordinator_dep, currency_table, engine_dep, mongo_db, redis_dep
from catalog_sync.core.config import get_settings

router = APIRouter()
START_TIME = time.time()


@router.get("/health")
async def health(
    db = Depends(mongo_db),
    redis = Depends(redis_dep),
    engine = Depends(engine_dep),
    coordinator = Depends(coordinator_dep),
    table = Depends(currency_table),
):
    """
    Tolerant health check:
    - ping Mongo (search index), Redis (change log) and PostgreSQL (source of truth)
    - Redis 'skipped' when not configured
    - report pipeline state and the loaded currency matrix version
    """
    settings = get_settings()
    checks: dict[str, object] = {
        "app_name": settings.APP_NAME,
        "env": settings.APP_ENV,
        "debug": settings.DEBUG,
        "version": settings.GIT_SHA,
        "uptime_seconds": int(time.time() - START_TIME),
    }

    # --- Mongo ---
    try:
        await db.command("ping")
        checks["mongodb"] = "ok"
    except Exception as e:
        checks["mongodb"] = f"error: {e}"

    # --- Redis (tolerant) ---
    try:
        if redis:
            await redis.ping()
            checks["redis"] = "ok"
        else:
            checks["redis"] = "skipped"
    except Exception as e:
        checks["redis"] = f"error: {e}"

    # --- PostgreSQL ---
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        checks["postgres"] = "ok"
    except Exception as e:
        checks["postgres"] = f"error: {e}"

    # --- Informational: not part of the global status
    checks["pipeline"] = coordinator.state.value if coordinator is not None else "disabled"
    current = table.current
    checks["currency_matrix"] = current.id if current else None

    def _is_ok(v):
        return v in ("ok", "skipped")

    health_keys = ("mongodb", "redis", "postgres")
    status = "ok" if all(_is_ok(checks.get(k)) for k in health_keys) else "error"

    return {"status": status, "checks": checks, "timestamp": int(time.time())}
