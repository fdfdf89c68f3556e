# catalog_sync/utils/locks.py
from __future__ import annotations
from typing import Optional
from redis.asyncio import Redis
import uuid


class RedisLock:
    """
    Simple, single-instance lock using SET NX EX.
    Keeps a single pipeline coordinator subscribed at a time; the holder
    must call `extend()` more often than `ttl` or lose the lock.
    """
    def __init__(self, redis: Redis, key: str, ttl: int = 30):
        self.redis = redis
        self.key = f"lock:{key}"
        self.ttl = ttl
        self._token: Optional[str] = None

    @property
    def held(self) -> bool:
        return self._token is not None

    async def acquire(self) -> bool:
        token = uuid.uuid4().hex
        ok = await self.redis.set(self.key, token, nx=True, ex=self.ttl)
        if ok:
            self._token = token
            return True
        return False

    async def extend(self) -> bool:
        """Push the expiry out by `ttl`. False when the lock expired or was taken over."""
        if self._token is None:
            return False
        if await self.redis.get(self.key) != self._token:
            self._token = None
            return False
        return bool(await self.redis.expire(self.key, self.ttl))

    async def release(self) -> None:
        # only delete our own token
        if self._token is None:
            return
        if await self.redis.get(self.key) == self._token:
            await self.redis.delete(self.key)
        self._token = None
