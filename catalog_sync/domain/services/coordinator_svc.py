# catalog_sync/domain/services/coordinator_svc.py
from __future__ import annotations
import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Set

from catalog_sync.domain.errors import (
    DecodeError, DocumentInvalid, IndexUnavailable, PoisonedEvent, RetryableError, StreamUnavailable,
)
from catalog_sync.domain.models.documents import DocumentKey
from catalog_sync.domain.models.events import AttrValueChange, ChangeEvent, RawChangeRecord
from catalog_sync.domain.models.pipeline import DeadLetter, PipelineState, PipelineStats
from catalog_sync.domain.repositories.change_stream_repo import STREAM_START
from catalog_sync.domain.services.applier_svc import ApplyOutcome
from catalog_sync.domain.services.decoder_svc import decode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineOptions:
    batch_size: int = 100
    block_ms: int = 1000
    max_retries: int = 5
    backoff_base_s: float = 0.5
    backoff_cap_s: float = 30.0
    max_in_flight: int = 500

    @classmethod
    def from_settings(cls, settings) -> "PipelineOptions":
        return cls(
            batch_size=settings.pipeline_batch_size,
            block_ms=settings.pipeline_block_ms,
            max_retries=settings.pipeline_max_retries,
            backoff_base_s=settings.pipeline_backoff_base_s,
            backoff_cap_s=settings.pipeline_backoff_cap_s,
            max_in_flight=settings.pipeline_max_in_flight,
        )


def backoff_delay(attempt: int, base: float, cap: float) -> float:
    """Exponential delay for the n-th retry (1-based), capped."""
    return min(cap, base * (2 ** (attempt - 1)))


class OffsetTracker:
    """
    Checkpoint watermark for one stream: the highest offset such that it and every
    earlier tracked offset have finished. Offsets are tracked in read order.
    """

    def __init__(self, committed: str = STREAM_START):
        self.committed = committed
        self._pending: Deque[str] = deque()
        self._done: Set[str] = set()

    def track(self, offset: str) -> None:
        self._pending.append(offset)

    def done(self, offset: str) -> None:
        self._done.add(offset)
        while self._pending and self._pending[0] in self._done:
            head = self._pending.popleft()
            self._done.discard(head)
            self.committed = head

    @property
    def outstanding(self) -> int:
        return len(self._pending)


class _Ticket:
    """Completion counter for one record fanned out to several partition jobs."""

    def __init__(self, pending: int, on_done: Callable[[], None]):
        self.pending = pending
        self._on_done = on_done

    def done(self) -> None:
        self.pending -= 1
        if self.pending == 0:
            self._on_done()


@dataclass
class _Job:
    record: RawChangeRecord
    event: Any
    key: DocumentKey
    ticket: _Ticket


class _Abandoned(Exception):
    """Shutdown requested while the job was waiting to retry; the event stays unacknowledged."""


class PipelineCoordinator:
    """
    Owns the subscription to the change log and drives decode -> assemble -> apply.

    State machine: IDLE -> SUBSCRIBED -> PROCESSING (<-> BACKOFF) -> STOPPED.

    Scheduling:
      - one logical worker per document key; jobs for a key run strictly in arrival order
      - different keys progress concurrently
      - transient failures (RetryableError) are retried in place with capped exponential
        backoff; past `max_retries` the event is dead-lettered and the stream moves on
      - decode failures are dead-lettered immediately; untracked tables are dropped
      - the durable checkpoint only passes an offset once it and everything before it finished
    """

    def __init__(
        self,
        *,
        source,
        checkpoints,
        assembler,
        applier,
        dead_letters,
        options: Optional[PipelineOptions] = None,
    ):
        self.source = source
        self.checkpoints = checkpoints
        self.assembler = assembler
        self.applier = applier
        self.dead_letters = dead_letters
        self.options = options or PipelineOptions()
        self.stats = PipelineStats()

        self._state = PipelineState.IDLE
        self._stop = asyncio.Event()
        self._capacity = asyncio.Event()
        self._queues: Dict[DocumentKey, Deque[_Job]] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._trackers: Dict[str, OffsetTracker] = {}
        self._saved: Dict[str, str] = {}
        self._in_flight = 0
        self._backing_off = 0

    # ---------- Operator surface ---------------------------------------------

    @property
    def state(self) -> PipelineState:
        if self._state is PipelineState.PROCESSING and self._backing_off:
            return PipelineState.BACKOFF
        return self._state

    def committed_offsets(self) -> Dict[str, str]:
        return {s: t.committed for s, t in self._trackers.items()}

    def status(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "in_flight": self._in_flight,
            "active_partitions": len(self._queues),
            "checkpoints": self.committed_offsets(),
            "stats": self.stats.as_dict(),
        }

    def stop(self) -> None:
        if not self._stop.is_set():
            logger.info("pipeline stop requested state=%s in_flight=%s", self.state.value, self._in_flight)
        self._stop.set()

    # ---------- Main loop ----------------------------------------------------

    async def run(self) -> None:
        if self._state is not PipelineState.IDLE:
            raise RuntimeError(f"coordinator cannot start from state {self._state.value}")

        committed = await self._load_checkpoints()
        if committed is None:
            self._state = PipelineState.STOPPED
            return
        self._trackers = {s: OffsetTracker(o) for s, o in committed.items()}
        self._saved = dict(committed)
        cursor = dict(committed)
        self._state = PipelineState.SUBSCRIBED
        logger.info("pipeline subscribed from %s", committed)

        read_failures = 0
        try:
            while not self._stop.is_set():
                if not await self._wait_for_capacity():
                    break
                room = min(self.options.batch_size, self.options.max_in_flight - self._in_flight)
                try:
                    records = await self.source.read(cursor, count=room, block_ms=self.options.block_ms)
                    read_failures = 0
                except StreamUnavailable as e:
                    read_failures += 1
                    delay = backoff_delay(read_failures, self.options.backoff_base_s, self.options.backoff_cap_s)
                    logger.warning("change log read failed, retrying in %.2fs: %s", delay, e)
                    await self._pause(delay)
                    continue

                if records:
                    self._state = PipelineState.PROCESSING
                    logger.debug("read batch size=%d", len(records))
                for record in records[:room]:
                    cursor[record.stream] = record.offset
                    await self._dispatch(record)
                await self._flush_checkpoints()
        finally:
            await self._drain()
            await self._flush_checkpoints()
            self._state = PipelineState.STOPPED
            logger.info("pipeline stopped checkpoints=%s stats=%s", self.committed_offsets(), self.stats.as_dict())

    async def _load_checkpoints(self) -> Optional[Dict[str, str]]:
        attempt = 0
        while True:
            try:
                return await self.checkpoints.load(self.source.streams)
            except StreamUnavailable as e:
                attempt += 1
                delay = backoff_delay(attempt, self.options.backoff_base_s, self.options.backoff_cap_s)
                logger.warning("checkpoint load failed, retrying in %.2fs: %s", delay, e)
                if await self._pause(delay):
                    return None

    async def _wait_for_capacity(self) -> bool:
        """Block reading while `max_in_flight` records are outstanding. False when stopping."""
        while self._in_flight >= self.options.max_in_flight:
            if self._stop.is_set():
                return False
            self._capacity.clear()
            waiters = [asyncio.ensure_future(self._capacity.wait()), asyncio.ensure_future(self._stop.wait())]
            try:
                await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
            finally:
                for w in waiters:
                    w.cancel()
        return not self._stop.is_set()

    async def _pause(self, delay: float) -> bool:
        """Sleep `delay` seconds unless stopped first. Returns True when stop was requested."""
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=delay)
            return True
        except asyncio.TimeoutError:
            return False

    # ---------- Dispatch -----------------------------------------------------

    async def _dispatch(self, record: RawChangeRecord) -> None:
        self._trackers.setdefault(record.stream, OffsetTracker()).track(record.offset)
        self._in_flight += 1

        try:
            event = decode(record)
        except DecodeError as e:
            self.stats.decode_errors += 1
            logger.warning("decode failed stream=%s offset=%s: %s", record.stream, record.offset, e)
            self._spawn(self._dead_letter_then_finish(record, str(e), table=e.table, key=e.key))
            return

        if event is None:
            self.stats.dropped += 1
            self._finish(record)
            return

        self.stats.decoded += 1
        if isinstance(event, AttrValueChange) and event.unresolved_variant_ids():
            # parent lookup hits the relational store; keep it off the read loop
            self._spawn(self._resolve_then_enqueue(record, event))
        else:
            self._enqueue_all(record, event, event.document_keys())

    def _enqueue_all(self, record: RawChangeRecord, event: ChangeEvent, keys: List[DocumentKey]) -> None:
        if not keys:
            self._finish(record)
            return
        ticket = _Ticket(len(keys), lambda: self._finish(record))
        for key in keys:
            self._enqueue(key, _Job(record=record, event=event, key=key, ticket=ticket))

    def _enqueue(self, key: DocumentKey, job: _Job) -> None:
        queue = self._queues.get(key)
        if queue is not None:
            queue.append(job)
            return
        queue = self._queues[key] = deque([job])
        self._spawn(self._partition_worker(key, queue), name=f"partition:{key}")

    def _finish(self, record: RawChangeRecord) -> None:
        self._trackers[record.stream].done(record.offset)
        self._in_flight -= 1
        self._capacity.set()

    def _spawn(self, coro: Awaitable, name: Optional[str] = None) -> None:
        task = asyncio.ensure_future(coro)
        if name:
            task.set_name(name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _drain(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ---------- Per-key worker -----------------------------------------------

    async def _partition_worker(self, key: DocumentKey, queue: Deque[_Job]) -> None:
        try:
            while queue and not self._stop.is_set():
                await self._process(queue[0])
                queue.popleft()
        finally:
            # no await between the emptiness check above and this removal
            if self._queues.get(key) is queue:
                del self._queues[key]
            if queue:
                logger.info("partition %s left %d job(s) unacknowledged on shutdown", key, len(queue))

    async def _process(self, job: _Job) -> None:
        event = job.event
        ctx = f"{job.key} table={event.table} key={event.key} position={event.position}"
        try:
            outcome = await self._with_retries(ctx, lambda: self._project(job.key, event.position))
        except _Abandoned:
            logger.info("abandoned %s on shutdown", ctx)
            return
        except PoisonedEvent as e:
            await self._dead_letter(job.record, e.reason, attempts=e.attempts, event=event, document_key=job.key)
        except DocumentInvalid as e:
            await self._dead_letter(job.record, str(e), attempts=1, event=event, document_key=job.key)
        except Exception as e:
            logger.exception("unexpected failure while projecting %s", ctx)
            await self._dead_letter(job.record, f"unexpected error: {e!r}", attempts=1, event=event, document_key=job.key)
        else:
            if outcome is ApplyOutcome.APPLIED:
                self.stats.applied += 1
            elif outcome is ApplyOutcome.DELETED:
                self.stats.deleted += 1
            else:
                self.stats.skipped += 1
            logger.debug("%s -> %s", ctx, outcome.value)
        job.ticket.done()

    async def _project(self, key: DocumentKey, position: int) -> ApplyOutcome:
        projection = await self.assembler.assemble(key)
        return await self.applier.apply(projection, position)

    async def _resolve_then_enqueue(self, record: RawChangeRecord, event: AttrValueChange) -> None:
        ctx = f"resolve table={event.table} key={event.key} position={event.position}"
        try:
            keys = await self._with_retries(ctx, lambda: self.assembler.resolve_keys(event))
        except _Abandoned:
            logger.info("abandoned %s on shutdown", ctx)
            return
        except PoisonedEvent as e:
            await self._dead_letter(record, e.reason, attempts=e.attempts, event=event)
            self._finish(record)
            return
        except Exception as e:
            logger.exception("unexpected failure during %s", ctx)
            await self._dead_letter(record, f"unexpected error: {e!r}", attempts=1, event=event)
            self._finish(record)
            return
        self._enqueue_all(record, event, keys)

    async def _with_retries(self, ctx: str, op: Callable[[], Awaitable[Any]]) -> Any:
        attempt = 0
        while True:
            try:
                return await op()
            except RetryableError as e:
                attempt += 1
                if attempt > self.options.max_retries:
                    raise PoisonedEvent(f"{type(e).__name__}: {e}", attempts=attempt) from e
                delay = backoff_delay(attempt, self.options.backoff_base_s, self.options.backoff_cap_s)
                self.stats.retries += 1
                logger.warning("retry %s attempt=%d/%d in %.2fs: %s",
                               ctx, attempt, self.options.max_retries, delay, e)
                self._backing_off += 1
                try:
                    stopped = await self._pause(delay)
                finally:
                    self._backing_off -= 1
                if stopped:
                    raise _Abandoned()

    # ---------- Dead letters & checkpoints -----------------------------------

    async def _dead_letter_then_finish(self, record: RawChangeRecord, reason: str, *, table=None, key=None) -> None:
        await self._dead_letter(record, reason, attempts=0, table=table, key=key)
        self._finish(record)

    async def _dead_letter(
        self,
        record: RawChangeRecord,
        reason: str,
        *,
        attempts: int,
        event: Optional[ChangeEvent] = None,
        document_key: Optional[DocumentKey] = None,
        table: Optional[str] = None,
        key: Optional[int] = None,
    ) -> None:
        letter = DeadLetter(
            table=event.table if event is not None else table,
            key=event.key if event is not None else key,
            document_key=str(document_key) if document_key is not None else None,
            reason=reason,
            position=event.position if event is not None else None,
            stream=record.stream,
            offset=record.offset,
            attempts=attempts,
        )
        self.stats.dead_lettered += 1
        logger.error("dead letter table=%s key=%s document=%s position=%s offset=%s attempts=%s reason=%s",
                     letter.table, letter.key, letter.document_key, letter.position,
                     letter.offset, letter.attempts, letter.reason)
        try:
            await self.dead_letters.record(letter)
        except IndexUnavailable as e:
            # the ERROR line above is the record of last resort
            logger.error("dead letter for %s/%s not persisted: %s", letter.stream, letter.offset, e)

    async def _flush_checkpoints(self) -> None:
        changed = {s: o for s, o in self.committed_offsets().items() if self._saved.get(s) != o}
        if not changed:
            return
        try:
            await self.checkpoints.save(changed)
        except StreamUnavailable as e:
            logger.warning("checkpoint save failed, will retry: %s", e)
            return
        self._saved.update(changed)
        logger.debug("checkpoints saved %s", changed)
