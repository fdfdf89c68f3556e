# catalog_sync/domain/repositories/change_stream_repo.py
from __future__ import annotations
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Iterable, List, Tuple

from redis.asyncio import Redis
from redis.exceptions import ConnectionError as RedisConnectionError, TimeoutError as RedisTimeoutError

from catalog_sync.domain.errors import StreamUnavailable
from catalog_sync.domain.models.events import RawChangeRecord

STREAM_START = "0-0"


def entry_id(offset: str) -> Tuple[int, int]:
    """Sort key for a stream entry id `<ms>-<seq>`."""
    ms, _, seq = offset.partition("-")
    return int(ms), int(seq or 0)


@asynccontextmanager
async def stream_errors(what: str) -> AsyncIterator[None]:
    try:
        yield
    except (RedisConnectionError, RedisTimeoutError, OSError) as e:
        raise StreamUnavailable(f"redis unavailable during {what}: {e}") from e


class ChangeStreamRepo:
    """
    Upstream change log: one Redis stream per table topic (e.g. `stores-pg.public.products`),
    each entry carrying the Debezium envelope in its `value` field. Replayable from any offset.
    """

    VALUE_FIELD = "value"

    def __init__(self, redis: Redis, streams: Iterable[str]):
        self.redis = redis
        self.streams = list(streams)

    async def read(self, offsets: Dict[str, str], *, count: int, block_ms: int) -> List[RawChangeRecord]:
        """
        Up to `count` entries strictly after `offsets[stream]`, across all streams, waiting at most `block_ms`.
        Returns [] on timeout.

        XREAD applies COUNT per stream, so the merged reply is ordered by entry id and cut to `count`.
        Within each stream the kept entries stay a prefix, so the caller's cursor never skips one.
        """
        async with stream_errors("xread"):
            resp = await self.redis.xread(
                {s: offsets.get(s, STREAM_START) for s in self.streams}, count=count, block=block_ms
            )
        records: List[RawChangeRecord] = []
        for stream, entries in resp or []:
            for offset, fields in entries:
                records.append(RawChangeRecord(stream=stream, offset=offset, value=fields.get(self.VALUE_FIELD)))
        records.sort(key=lambda r: entry_id(r.offset))
        return records[:count]


class CheckpointRepo:
    """Durable per-stream checkpoint (last fully processed offset) in a Redis hash."""

    def __init__(self, redis: Redis, key: str = "catalog_sync:checkpoints"):
        self.redis = redis
        self.key = key

    async def load(self, streams: Iterable[str]) -> Dict[str, str]:
        async with stream_errors("checkpoint load"):
            stored = await self.redis.hgetall(self.key)
        return {s: stored.get(s, STREAM_START) for s in streams}

    async def save(self, offsets: Dict[str, str]) -> None:
        if not offsets:
            return
        async with stream_errors("checkpoint save"):
            await self.redis.hset(self.key, mapping=offsets)
