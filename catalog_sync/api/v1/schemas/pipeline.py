# api/v1/schemas/pipeline.py
from pydantic import BaseModel
from typing import Dict, List, Optional

from catalog_sync.domain.models.pipeline import DeadLetter


class PipelineStatusOut(BaseModel):
    state: str
    in_flight: int
    active_partitions: int
    checkpoints: Dict[str, str]
    stats: Dict[str, int]


class DeadLettersOut(BaseModel):
    items: List[DeadLetter]
    count: int


class CategoryLevelsOut(BaseModel):
    changed: Dict[int, int]
    count: int
    applied: bool


class CategoryMoveOut(CategoryLevelsOut):
    category_id: int
    parent_id: Optional[int] = None
