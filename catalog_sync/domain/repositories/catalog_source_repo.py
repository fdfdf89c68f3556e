# catalog_sync/domain/repositories/catalog_source_repo.py
from __future__ import annotations
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict, Iterable, List, Optional

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import InterfaceError, OperationalError, TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from catalog_sync.db import tables as t
from catalog_sync.domain.errors import DocumentInvalid, SourceUnavailable
from catalog_sync.domain.models.catalog import BaseProduct, ProductAttributeValue, ProductVariant, Store


@dataclass(frozen=True)
class VariantAttr:
    value: ProductAttributeValue
    code: Optional[str] = None      # attribute_values.code when the row is normalized


@dataclass
class ProductAggregate:
    """Point-in-time denormalized row set for one BaseProduct."""
    base: BaseProduct
    variants: List[ProductVariant] = field(default_factory=list)
    attrs: Dict[int, List[VariantAttr]] = field(default_factory=dict)   # variant id -> assignments


@asynccontextmanager
async def source_errors(what: str) -> AsyncIterator[None]:
    """Translate driver connectivity failures into SourceUnavailable, row-shape failures into DocumentInvalid."""
    try:
        yield
    except (OperationalError, InterfaceError, PoolTimeoutError, OSError) as e:
        raise SourceUnavailable(f"relational store unavailable while reading {what}: {e}") from e
    except ValidationError as e:
        raise DocumentInvalid(f"invalid source row for {what}: {e}") from e


class CatalogSourceRepo:
    """
    Read side of the relational catalog used by the document assembler.
    Every aggregate is read inside one transaction so it reflects committed data at a single point.
    """

    def __init__(self, engine: AsyncEngine, isolation_level: Optional[str] = None):
        self.engine = engine
        self.isolation_level = isolation_level

    @asynccontextmanager
    async def _snapshot(self) -> AsyncIterator[AsyncConnection]:
        async with self.engine.connect() as conn:
            if self.isolation_level:
                conn = await conn.execution_options(isolation_level=self.isolation_level)
            async with conn.begin():
                yield conn

    async def get_store(self, store_id: int) -> Optional[Store]:
        async with source_errors(f"store {store_id}"):
            async with self._snapshot() as conn:
                row = (await conn.execute(select(t.stores).where(t.stores.c.id == store_id))).mappings().first()
            return Store.model_validate(dict(row)) if row else None

    async def get_product_aggregate(self, base_product_id: int) -> Optional[ProductAggregate]:
        """Base product + active variants + attribute assignments per variant. None if the base product is gone."""
        async with source_errors(f"base product {base_product_id}"):
            async with self._snapshot() as conn:
                base_row = (
                    await conn.execute(select(t.base_products).where(t.base_products.c.id == base_product_id))
                ).mappings().first()
                if base_row is None:
                    return None

                variant_rows = (
                    await conn.execute(
                        select(t.products)
                        .where(t.products.c.base_product_id == base_product_id, t.products.c.is_active.is_(True))
                        .order_by(t.products.c.id)
                    )
                ).mappings().all()

                attr_rows = []
                variant_ids = [r["id"] for r in variant_rows]
                if variant_ids:
                    pav, av = t.prod_attr_values, t.attribute_values
                    attr_rows = (
                        await conn.execute(
                            select(pav, av.c.code.label("attr_value_code"))
                            .select_from(pav.outerjoin(av, pav.c.attr_value_id == av.c.id))
                            .where(pav.c.prod_id.in_(variant_ids))
                            .order_by(pav.c.prod_id, pav.c.attr_id, pav.c.id)
                        )
                    ).mappings().all()

            aggregate = ProductAggregate(
                base=BaseProduct.model_validate(dict(base_row)),
                variants=[ProductVariant.model_validate(dict(r)) for r in variant_rows],
            )
            for r in attr_rows:
                attr = VariantAttr(value=ProductAttributeValue.model_validate(dict(r)), code=r["attr_value_code"])
                aggregate.attrs.setdefault(attr.value.prod_id, []).append(attr)
            return aggregate

    async def get_variant_parents(self, variant_ids: Iterable[int]) -> Dict[int, int]:
        """variant id -> base product id, for the variants that still exist."""
        ids = sorted(set(variant_ids))
        if not ids:
            return {}
        async with source_errors(f"variants {ids}"):
            async with self._snapshot() as conn:
                rows = (
                    await conn.execute(
                        select(t.products.c.id, t.products.c.base_product_id).where(t.products.c.id.in_(ids))
                    )
                ).all()
        return {vid: bid for vid, bid in rows}
