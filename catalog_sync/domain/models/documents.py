from __future__ import annotations
from dataclasses import dataclass
from typing import List, Optional, Union

from pydantic import BaseModel, Field

from catalog_sync.domain.models.catalog import LocalizedText

STORES_INDEX = "stores"
PRODUCTS_INDEX = "products"


@dataclass(frozen=True, order=True)
class DocumentKey:
    """Address of one denormalized document: logical index + source id."""
    index: str
    id: int

    def __str__(self) -> str:
        return f"{self.index}:{self.id}"


class AttrDocument(BaseModel):
    attr_id: int
    str_val: Optional[str] = None
    float_val: Optional[float] = None
    model_config = {"frozen": True}


class VariantDocument(BaseModel):
    variant_id: int
    price: float
    currency: Optional[str] = None
    canonical_price: Optional[float] = None
    discount: Optional[float] = None
    attrs: List[AttrDocument] = Field(default_factory=list)
    model_config = {"frozen": True}


class ProductDocument(BaseModel):
    id: int
    store_id: int
    category_id: int
    status: str
    name: LocalizedText
    short_description: LocalizedText
    long_description: LocalizedText
    views: int = 0
    rating: float = 0.0
    variants: List[VariantDocument] = Field(default_factory=list)
    suggest: List[str] = Field(default_factory=list)
    model_config = {"frozen": True}

    @property
    def key(self) -> DocumentKey:
        return DocumentKey(PRODUCTS_INDEX, self.id)


class StoreDocument(BaseModel):
    id: int
    user_id: int
    name: LocalizedText
    status: str = "draft"
    suggest: List[str] = Field(default_factory=list)
    model_config = {"frozen": True}

    @property
    def key(self) -> DocumentKey:
        return DocumentKey(STORES_INDEX, self.id)


@dataclass(frozen=True)
class Tombstone:
    """Delete-by-key instruction: the source row is gone or inactive."""
    key: DocumentKey
    reason: str = "deleted"


Document = Union[ProductDocument, StoreDocument]
Projection = Union[ProductDocument, StoreDocument, Tombstone]
