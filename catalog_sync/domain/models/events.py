from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, model_validator

from catalog_sync.domain.models.documents import PRODUCTS_INDEX, STORES_INDEX, DocumentKey

TABLE_STORES = "stores"
TABLE_BASE_PRODUCTS = "base_products"
TABLE_PRODUCTS = "products"
TABLE_PROD_ATTR_VALUES = "prod_attr_values"

TRACKED_TABLES = frozenset({TABLE_STORES, TABLE_BASE_PRODUCTS, TABLE_PRODUCTS, TABLE_PROD_ATTR_VALUES})


@dataclass(frozen=True)
class RawChangeRecord:
    """One entry read from the upstream log: stream (topic), offset within it, raw value."""
    stream: str
    offset: str
    value: Any


class ChangeOp(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


def _unique(keys: List[DocumentKey]) -> List[DocumentKey]:
    seen: List[DocumentKey] = []
    for k in keys:
        if k not in seen:
            seen.append(k)
    return seen


# ---------- Row images -------------------------------------------------------
# Only key columns are typed. Other columns are kept raw: the aggregate is
# re-read at assembly time and validated there.

class _RowImage(BaseModel):
    id: int
    model_config = {"frozen": True, "extra": "allow"}


class StoreRow(_RowImage):
    pass


class BaseProductRow(_RowImage):
    pass


class VariantRow(_RowImage):
    base_product_id: int


class AttrValueRow(_RowImage):
    prod_id: int
    base_prod_id: Optional[int] = None


class _Change(BaseModel):
    """
    Typed row-level change. Subclasses pin `table` and the row model of before/after.
    Invariant: insert carries `after` only, delete `before` only, update both.
    """
    op: ChangeOp
    key: int
    position: int
    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _row_images(self):
        before, after = getattr(self, "before"), getattr(self, "after")
        if self.op is ChangeOp.INSERT and (after is None or before is not None):
            raise ValueError("insert must carry `after` only")
        if self.op is ChangeOp.DELETE and (before is None or after is not None):
            raise ValueError("delete must carry `before` only")
        if self.op is ChangeOp.UPDATE and (before is None or after is None):
            raise ValueError("update must carry both `before` and `after`")
        for row in (before, after):
            if row is not None and row.id != self.key:
                raise ValueError(f"row id {row.id} does not match event key {self.key}")
        return self

    def rows(self) -> list:
        return [r for r in (getattr(self, "before"), getattr(self, "after")) if r is not None]

    def document_keys(self) -> List[DocumentKey]:
        raise NotImplementedError


class StoreChange(_Change):
    table: Literal["stores"] = TABLE_STORES
    before: Optional[StoreRow] = None
    after: Optional[StoreRow] = None

    def document_keys(self) -> List[DocumentKey]:
        return [DocumentKey(STORES_INDEX, self.key)]


class BaseProductChange(_Change):
    table: Literal["base_products"] = TABLE_BASE_PRODUCTS
    before: Optional[BaseProductRow] = None
    after: Optional[BaseProductRow] = None

    def document_keys(self) -> List[DocumentKey]:
        return [DocumentKey(PRODUCTS_INDEX, self.key)]


class VariantChange(_Change):
    table: Literal["products"] = TABLE_PRODUCTS
    before: Optional[VariantRow] = None
    after: Optional[VariantRow] = None

    def document_keys(self) -> List[DocumentKey]:
        # A variant moved between base products re-assembles both parents
        return _unique([DocumentKey(PRODUCTS_INDEX, r.base_product_id) for r in self.rows()])


class AttrValueChange(_Change):
    table: Literal["prod_attr_values"] = TABLE_PROD_ATTR_VALUES
    before: Optional[AttrValueRow] = None
    after: Optional[AttrValueRow] = None

    def document_keys(self) -> List[DocumentKey]:
        """Known parents only; rows without `base_prod_id` need resolution through the variant."""
        return _unique([DocumentKey(PRODUCTS_INDEX, r.base_prod_id) for r in self.rows() if r.base_prod_id is not None])

    def unresolved_variant_ids(self) -> List[int]:
        return sorted({r.prod_id for r in self.rows() if r.base_prod_id is None})


ChangeEvent = Annotated[
    Union[StoreChange, BaseProductChange, VariantChange, AttrValueChange],
    Field(discriminator="table"),
]

CHANGE_EVENT_ADAPTER: TypeAdapter = TypeAdapter(ChangeEvent)
