# catalog_sync/domain/services/assembler_svc.py
from __future__ import annotations
import logging
from typing import Awaitable, Callable, Dict, List, Optional

from pydantic import ValidationError

from catalog_sync.domain.errors import DocumentInvalid, SourceInconsistent, StaleMatrix, UnknownCurrency
from catalog_sync.domain.models.catalog import LocalizedText, ProductVariant
from catalog_sync.domain.models.currency import CurrencyMatrix
from catalog_sync.domain.models.documents import (
    PRODUCTS_INDEX, STORES_INDEX, AttrDocument, DocumentKey, ProductDocument, Projection,
    StoreDocument, Tombstone, VariantDocument,
)
from catalog_sync.domain.models.events import AttrValueChange, ChangeEvent
from catalog_sync.domain.repositories.catalog_source_repo import CatalogSourceRepo, VariantAttr
from catalog_sync.domain.services.currency_svc import CurrencyTable, convert

logger = logging.getLogger(__name__)


# ---------- Pure builders ----------------------------------------------------

def suggest_terms(*texts: LocalizedText) -> List[str]:
    """Completion inputs: every translated phrase (whitespace-normalized) plus its words."""
    terms = set()
    for localized in texts:
        for text in localized.texts():
            phrase = " ".join(text.split())
            if not phrase:
                continue
            terms.add(phrase)
            terms.update(word for word in phrase.split(" ") if len(word) > 1)
    return sorted(terms)


def attr_document(attr: VariantAttr) -> AttrDocument:
    row = attr.value
    if row.value_type == "float":
        try:
            return AttrDocument(attr_id=row.attr_id, float_val=float(row.value))
        except ValueError:
            logger.warning("attr value %s (attr_id=%s) is not a float: %r; indexing as string",
                           row.id, row.attr_id, row.value)
            return AttrDocument(attr_id=row.attr_id, str_val=row.value)
    # normalized assignments carry the authoritative code
    return AttrDocument(attr_id=row.attr_id, str_val=attr.code if attr.code is not None else row.value)


def canonical_price(price: float, currency: Optional[str], canonical: str, matrix: Optional[CurrencyMatrix]) -> Optional[float]:
    if currency is None:
        return None
    if currency.upper() == canonical.upper():
        return price
    if matrix is None:
        return None
    try:
        return convert(price, currency, canonical, matrix)
    except UnknownCurrency as e:
        logger.warning("canonical price unavailable: %s", e)
        return None


# ---------- Assembler --------------------------------------------------------

class DocumentAssembler:
    """
    Turns a touched document key into a complete replacement document (or a tombstone).

    Strategy: full re-read on touch. Whatever table the event came from, the whole
    aggregate is read again from the relational store at assembly time, so variants and
    attribute values spread over three tables can never drift apart in the index.
    """

    def __init__(self, source: CatalogSourceRepo, currency: CurrencyTable, canonical_currency: str = "USD"):
        self.source = source
        self.currency = currency
        self.canonical_currency = canonical_currency.upper()
        self._builders: Dict[str, Callable[[DocumentKey], Awaitable[Projection]]] = {
            STORES_INDEX: self._assemble_store,
            PRODUCTS_INDEX: self._assemble_product,
        }

    async def resolve_keys(self, event: ChangeEvent) -> List[DocumentKey]:
        """Document keys an event touches, following variant -> base product when the row lacks it."""
        keys = event.document_keys()
        if isinstance(event, AttrValueChange):
            unresolved = event.unresolved_variant_ids()
            if unresolved:
                parents = await self.source.get_variant_parents(unresolved)
                missing = [vid for vid in unresolved if vid not in parents]
                if missing:
                    raise SourceInconsistent(f"cannot resolve base product of variant(s) {missing}")
                for vid in unresolved:
                    key = DocumentKey(PRODUCTS_INDEX, parents[vid])
                    if key not in keys:
                        keys.append(key)
        return keys

    async def assemble(self, key: DocumentKey) -> Projection:
        builder = self._builders.get(key.index)
        if builder is None:
            raise ValueError(f"No document builder for index {key.index!r}")
        try:
            return await builder(key)
        except ValidationError as e:
            raise DocumentInvalid(f"cannot build {key}: {e}") from e

    async def _assemble_store(self, key: DocumentKey) -> Projection:
        store = await self.source.get_store(key.id)
        if store is None:
            return Tombstone(key, "store deleted")
        if not store.is_active:
            return Tombstone(key, "store inactive")
        return StoreDocument(
            id=store.id,
            user_id=store.user_id,
            name=store.name,
            status=store.status,
            suggest=suggest_terms(store.name),
        )

    async def _assemble_product(self, key: DocumentKey) -> Projection:
        aggregate = await self.source.get_product_aggregate(key.id)
        if aggregate is None:
            return Tombstone(key, "base product deleted")
        base = aggregate.base
        if not base.is_active:
            return Tombstone(key, "base product inactive")

        # one matrix version for the whole document
        try:
            matrix: Optional[CurrencyMatrix] = self.currency.snapshot()
        except StaleMatrix:
            logger.warning("assemble %s: currency matrix not loaded, canonical prices left empty", key)
            matrix = None

        variants = [
            self._variant_document(v, base.currency, aggregate.attrs.get(v.id, []), matrix)
            for v in aggregate.variants
            if v.is_active
        ]
        doc = ProductDocument(
            id=base.id,
            store_id=base.store_id,
            category_id=base.category_id,
            status=base.status,
            name=base.name,
            short_description=base.short_description,
            long_description=base.long_description or LocalizedText([]),
            views=base.views,
            rating=base.rating,
            variants=sorted(variants, key=lambda v: v.variant_id),
            suggest=suggest_terms(base.name),
        )
        logger.debug("assembled %s variants=%d", key, len(doc.variants))
        return doc

    def _variant_document(
        self,
        variant: ProductVariant,
        fallback_currency: Optional[str],
        attrs: List[VariantAttr],
        matrix: Optional[CurrencyMatrix],
    ) -> VariantDocument:
        currency = variant.currency or fallback_currency
        return VariantDocument(
            variant_id=variant.id,
            price=variant.price,
            currency=currency,
            canonical_price=canonical_price(variant.price, currency, self.canonical_currency, matrix),
            discount=variant.discount,
            attrs=sorted((attr_document(a) for a in attrs), key=lambda a: (a.attr_id, a.str_val or "", a.float_val or 0.0)),
        )
