# catalog_sync/db/redis.py
import redis.asyncio as redis
from catalog_sync.core.config import get_settings
import logging

logger = logging.getLogger(__name__)
settings = get_settings()
redis_client: redis.Redis | None = None


async def connect():
    """
    Connect Redis if REDIS_URL is set.
    Redis carries the change-event streams and the checkpoints, so the pipeline
    cannot run without it; the HTTP surface still starts and reports it unhealthy.
    """
    global redis_client
    if not settings.REDIS_URL:
        logger.warning("No REDIS_URL configured, skipping Redis connection.")
        redis_client = None
        return

    try:
        logger.info("Connecting to Redis at %s", settings.REDIS_URL)
        redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)
        await redis_client.ping()
        logger.info("Redis connection successful")
    except Exception as e:
        logger.warning("Failed to connect to Redis: %s", e)
        redis_client = None


async def disconnect():
    """Close the Redis connection if any."""
    global redis_client
    if redis_client:
        await redis_client.aclose()
        redis_client = None
        logger.info("Redis disconnected")


def get_redis() -> redis.Redis | None:
    """
    Redis getter. Returns None when Redis is not configured or unreachable;
    callers handle it.
    """
    return redis_client
