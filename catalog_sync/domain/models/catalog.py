from __future__ import annotations
import json
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, FrozenSet, List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, BeforeValidator, Field, RootModel, field_validator, model_validator

from catalog_sync.domain.errors import DocumentInvalid


def _coerce_timestamp(value: Any) -> Any:
    # Debezium MicroTimestamp: microseconds since epoch
    if isinstance(value, int) and abs(value) > 10**14:
        return datetime.fromtimestamp(value / 1_000_000, tz=timezone.utc)
    return value


def _coerce_json(value: Any) -> Any:
    # jsonb columns arrive as JSON text from the change log
    if isinstance(value, (str, bytes)):
        return json.loads(value)
    return value


Timestamp = Annotated[Optional[datetime], BeforeValidator(_coerce_timestamp)]


# ---------- Translations -----------------------------------------------------

class Translation(BaseModel):
    lang: str = Field(min_length=2, max_length=8)
    text: str
    model_config = {"frozen": True}


class LocalizedText(RootModel[List[Translation]]):
    """
    Ordered (lang, text) pairs. Order is display preference only.
    Accepts the list form `[{lang, text}]`, a `{lang: text}` mapping, or either as JSON text.
    """

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, value: Any) -> Any:
        value = _coerce_json(value)
        if value is None:
            return []
        if isinstance(value, dict):
            return [{"lang": lang, "text": text} for lang, text in value.items()]
        return value

    @model_validator(mode="after")
    def _unique_languages(self) -> "LocalizedText":
        langs = [t.lang for t in self.root]
        if len(langs) != len(set(langs)):
            raise ValueError(f"duplicate language codes in translations: {langs}")
        return self

    def texts(self) -> List[str]:
        return [t.text for t in self.root]

    def get(self, lang: str) -> Optional[str]:
        return next((t.text for t in self.root if t.lang == lang), None)

    def __len__(self) -> int:
        return len(self.root)


def _empty_text() -> LocalizedText:
    return LocalizedText([])


# ---------- Attributes -------------------------------------------------------

def _normalize_value_type(value: Any) -> Any:
    if isinstance(value, str) and value.lower() in {"str", "string"}:
        return "str"
    return value


ValueType = Annotated[Literal["str", "float"], BeforeValidator(_normalize_value_type)]


class AttributeValue(BaseModel):
    """Code-keyed permitted value of an attribute (code unique per attribute)."""
    id: Optional[int] = None
    attr_id: int
    code: str
    translations: Optional[LocalizedText] = None
    model_config = {"frozen": True}


class AttributeMeta(BaseModel):
    values: Optional[List[str]] = None
    translated_values: Optional[List[LocalizedText]] = None
    model_config = {"extra": "allow"}

    @model_validator(mode="before")
    @classmethod
    def _parse(cls, value: Any) -> Any:
        return _coerce_json(value)


class Attribute(BaseModel):
    id: int
    uuid: Optional[UUID] = None
    name: LocalizedText = Field(default_factory=_empty_text)
    value_type: ValueType
    meta_field: Optional[AttributeMeta] = None
    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _not_both(self) -> "Attribute":
        meta = self.meta_field
        if meta is not None and meta.values is not None and meta.translated_values is not None:
            raise ValueError(f"attribute {self.id} has both enumerated codes and translated values")
        return self

    def normalized_values(self) -> List[AttributeValue]:
        """
        Derive the code-keyed AttributeValue list:
          - `values`: one AttributeValue per enumerated code
          - `translated_values`: code is the text of the first translation
        Exactly one of the two must be populated.
        """
        meta = self.meta_field
        if meta is None or (meta.values is None and meta.translated_values is None):
            raise DocumentInvalid(f"attribute {self.id} has neither enumerated codes nor translated values")

        if meta.values is not None:
            out = [AttributeValue(attr_id=self.id, code=code) for code in meta.values]
        else:
            out = []
            for translated in meta.translated_values or []:
                if not len(translated):
                    raise DocumentInvalid(f"attribute {self.id} has a translated value without translations")
                out.append(AttributeValue(attr_id=self.id, code=translated.root[0].text, translations=translated))

        codes = [v.code for v in out]
        if len(codes) != len(set(codes)):
            raise DocumentInvalid(f"attribute {self.id} has duplicate value codes: {codes}")
        return out


# ---------- Catalog tree -----------------------------------------------------

class Category(BaseModel):
    id: int
    name: LocalizedText = Field(default_factory=_empty_text)
    parent_id: Optional[int] = None
    level: int = 1
    meta_field: Optional[Any] = None
    model_config = {"frozen": True}


# ---------- Stores & products ------------------------------------------------

class Store(BaseModel):
    id: int
    user_id: int
    is_active: bool = True
    name: LocalizedText = Field(default_factory=_empty_text)
    short_description: LocalizedText = Field(default_factory=_empty_text)
    long_description: Optional[LocalizedText] = None
    slug: str = ""
    status: str = "draft"
    currency: Optional[str] = None
    default_language: Optional[str] = None
    rating: float = 0.0
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    country: Optional[str] = None
    facebook_url: Optional[str] = None
    twitter_url: Optional[str] = None
    instagram_url: Optional[str] = None
    created_at: Timestamp = None
    updated_at: Timestamp = None
    model_config = {"frozen": True}


class BaseProduct(BaseModel):
    id: int
    store_id: int
    is_active: bool = True
    name: LocalizedText = Field(default_factory=_empty_text)
    short_description: LocalizedText = Field(default_factory=_empty_text)
    long_description: Optional[LocalizedText] = None
    seo_title: Optional[LocalizedText] = None
    seo_description: Optional[LocalizedText] = None
    currency: Optional[str] = None
    category_id: int
    views: int = 0
    rating: float = 0.0
    slug: str = ""
    status: str = "draft"
    created_at: Timestamp = None
    updated_at: Timestamp = None
    model_config = {"frozen": True}


class ProductVariant(BaseModel):
    """A priced variant of a BaseProduct (relational table `products`)."""
    id: int
    base_product_id: int
    is_active: bool = True
    price: float = 0.0
    discount: Optional[float] = None
    currency: Optional[str] = None
    photo_main: Optional[str] = None
    vendor_code: Optional[str] = None
    cashback: Optional[float] = None
    created_at: Timestamp = None
    updated_at: Timestamp = None
    model_config = {"frozen": True}

    @field_validator("discount")
    @classmethod
    def _discount_fraction(cls, value: Optional[float]) -> Optional[float]:
        if value is not None and not 0.0 <= value <= 1.0:
            raise ValueError(f"discount must be a fraction in [0, 1], got {value}")
        return value


class ProductAttributeValue(BaseModel):
    """Concrete attribute assignment on one variant (relational table `prod_attr_values`)."""
    id: int
    prod_id: int
    base_prod_id: Optional[int] = None
    attr_id: int
    value: str = ""
    value_type: ValueType = "str"
    attr_value_id: Optional[int] = None
    meta_field: Optional[str] = None
    model_config = {"frozen": True}


# ---------- Coupons ----------------------------------------------------------

class CouponScopeKind(str, Enum):
    BASE_PRODUCTS = "base_products"
    CATEGORIES = "categories"


class CouponScope(BaseModel):
    coupon_id: int
    kind: CouponScopeKind
    base_product_ids: FrozenSet[int] = frozenset()
    category_ids: FrozenSet[int] = frozenset()
    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _single_kind(self) -> "CouponScope":
        if self.kind is CouponScopeKind.BASE_PRODUCTS and self.category_ids:
            raise ValueError("coupon scoped to base products cannot list categories")
        if self.kind is CouponScopeKind.CATEGORIES and self.base_product_ids:
            raise ValueError("coupon scoped to categories cannot list base products")
        return self


class Coupon(BaseModel):
    id: int
    code: str = Field(min_length=4, max_length=12)
    title: str = ""
    store_id: int
    scope: CouponScopeKind
    percent: int = Field(ge=0, le=100)
    quantity: int = Field(ge=0)
    expired_at: Timestamp = None
    is_active: bool = True
    model_config = {"frozen": True}

    def is_usable(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        if not self.is_active or self.quantity <= 0:
            return False
        if self.expired_at is None:
            return True
        expired_at = self.expired_at if self.expired_at.tzinfo else self.expired_at.replace(tzinfo=timezone.utc)
        return expired_at > now

    def applies_to(self, product: BaseProduct, scope: CouponScope, now: Optional[datetime] = None) -> bool:
        if scope.coupon_id != self.id or scope.kind is not self.scope:
            raise ValueError(f"scope for coupon {scope.coupon_id} does not belong to coupon {self.id}")
        if product.store_id != self.store_id or not self.is_usable(now):
            return False
        if self.scope is CouponScopeKind.BASE_PRODUCTS:
            return product.id in scope.base_product_ids
        return product.category_id in scope.category_ids
