from __future__ import annotations
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class PipelineState(str, Enum):
    IDLE = "idle"
    SUBSCRIBED = "subscribed"
    PROCESSING = "processing"
    BACKOFF = "backoff"
    STOPPED = "stopped"


class DeadLetter(BaseModel):
    """Permanently failed event, kept for operator attention."""
    table: Optional[str] = None
    key: Optional[int] = None
    document_key: Optional[str] = None
    reason: str
    position: Optional[int] = None
    stream: str
    offset: str
    attempts: int = 0
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class PipelineStats:
    decoded: int = 0
    dropped: int = 0
    applied: int = 0
    deleted: int = 0
    skipped: int = 0
    retries: int = 0
    dead_lettered: int = 0
    decode_errors: int = 0

    def as_dict(self) -> dict:
        return asdict(self)
