# catalog_sync/domain/services/decoder_svc.py
from __future__ import annotations
import json
import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError

from catalog_sync.domain.errors import DecodeError
from catalog_sync.domain.models.events import CHANGE_EVENT_ADAPTER, TRACKED_TABLES, ChangeEvent, ChangeOp, RawChangeRecord

logger = logging.getLogger(__name__)

# Debezium op codes; "r" is a snapshot read of an existing row
_OPS: Dict[str, ChangeOp] = {
    "c": ChangeOp.INSERT,
    "r": ChangeOp.INSERT,
    "u": ChangeOp.UPDATE,
    "d": ChangeOp.DELETE,
}


def _table_from_topic(stream: str) -> str:
    # "<server>.<schema>.<table>"
    return stream.rsplit(".", 1)[-1]


def _load_envelope(value: Any) -> Any:
    if isinstance(value, (str, bytes)):
        try:
            return json.loads(value)
        except json.JSONDecodeError as e:
            raise DecodeError(f"change record is not valid JSON: {e}") from e
    return value


def decode(record: RawChangeRecord) -> Optional[ChangeEvent]:
    """
    Normalize one Debezium change record into a typed change event.

    Returns None for records that do not feed the index:
      - tables not tracked by the projection
      - null values (log-compaction tombstones that follow a delete)
    Raises DecodeError for anything malformed; the caller skips and records it.
    Row images are checked for their key columns only, so an update away from a
    row that breaks today's model rules still decodes.
    """
    if record.value is None:
        return None

    envelope = _load_envelope(record.value)
    if not isinstance(envelope, dict):
        raise DecodeError(f"change record must be a JSON object, got {type(envelope).__name__}")

    # With converter schemas enabled the change lives under "payload"
    if "payload" in envelope:
        payload = envelope["payload"]
        if payload is None:
            return None
    else:
        payload = envelope
    if not isinstance(payload, dict):
        raise DecodeError("change payload must be a JSON object")

    source = payload.get("source") or {}
    table = source.get("table") or _table_from_topic(record.stream)
    if table not in TRACKED_TABLES:
        logger.debug("decode: dropping untracked table=%s offset=%s", table, record.offset)
        return None

    op = _OPS.get(payload.get("op"))
    if op is None:
        raise DecodeError(f"unsupported op {payload.get('op')!r}", table=table)

    position = source.get("lsn")
    if not isinstance(position, int) or isinstance(position, bool):
        raise DecodeError(f"missing or non-integer log position (source.lsn={position!r})", table=table)

    before, after = payload.get("before"), payload.get("after")
    row = after if after is not None else before
    key = row.get("id") if isinstance(row, dict) else None
    if not isinstance(key, int):
        raise DecodeError("change carries no row id", table=table)

    try:
        return CHANGE_EVENT_ADAPTER.validate_python(
            {"table": table, "op": op, "key": key, "position": position, "before": before, "after": after}
        )
    except ValidationError as e:
        raise DecodeError(f"invalid {table} change: {e}", table=table, key=key) from e
