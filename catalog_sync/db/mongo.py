# catalog_sync/db/mongo.py
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from catalog_sync.core.config import get_settings
import certifi
import logging

logger = logging.getLogger(__name__)
settings = get_settings()

_client: AsyncIOMotorClient | None = None
_db: AsyncIOMotorDatabase | None = None


def get_client() -> AsyncIOMotorClient:
    assert _client is not None, "Mongo client not initialized"
    return _client


def get_db() -> AsyncIOMotorDatabase:
    assert _db is not None, "Mongo DB not initialized"
    return _db


def _new_client() -> AsyncIOMotorClient:
    options = dict(
        uuidRepresentation="standard",
        serverSelectionTimeoutMS=6000,
        connectTimeoutMS=6000,
    )
    if settings.MONGO_TLS:
        options.update(tls=True, tlsCAFile=certifi.where())   # explicit CA bundle for containers
    return AsyncIOMotorClient(settings.MONGO_URI, **options)


async def connect():
    """
    Create Motor client for the search index store.
    Do not crash on a failed initial ping: Motor connects lazily and the
    pipeline retries index writes with backoff until the store is reachable.
    """
    global _client, _db

    _client = _new_client()
    _db = _client[settings.MONGO_DB]
    try:
        await _client.admin.command("ping")
        logger.info("Mongo connected (ping ok)")
    except Exception as e:
        logger.warning("Mongo ping at startup failed, will connect lazily: %s", e)
        return

    # Dead letters are listed newest-first
    await _db[settings.dead_letters_collection].create_index([("created_at", -1)])


async def disconnect():
    global _client, _db
    if _client:
        _client.close()
    _client = None
    _db = None
