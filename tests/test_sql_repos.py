from datetime import datetime

import pytest
from pydantic import ValidationError
from sqlalchemy import insert
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from catalog_sync.db import tables as t
from catalog_sync.domain.repositories.catalog_source_repo import CatalogSourceRepo
from catalog_sync.domain.repositories.category_repo import CategoryRepo
from catalog_sync.domain.repositories.currency_exchange_repo import CurrencyExchangeRepo

NAME = [{"lang": "en", "text": "Boot"}]


@pytest.fixture
async def engine():
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(t.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def catalog(engine):
    async with engine.begin() as conn:
        await conn.execute(insert(t.stores).values(
            id=1, user_id=9, name=NAME, short_description=[], slug="boots", status="published"))
        await conn.execute(insert(t.base_products).values(
            id=7, store_id=1, name=NAME, short_description=[], currency="USD", category_id=3))
        await conn.execute(insert(t.products), [
            {"id": 1, "base_product_id": 7, "price": 100.0, "currency": "USD", "discount": None, "is_active": True},
            {"id": 2, "base_product_id": 7, "price": 200.0, "currency": "USD", "discount": 0.1, "is_active": True},
            {"id": 3, "base_product_id": 7, "price": 300.0, "currency": "USD", "discount": None, "is_active": False},
        ])
        await conn.execute(insert(t.attributes).values(id=5, name=NAME, value_type="str"))
        await conn.execute(insert(t.attribute_values).values(id=50, attr_id=5, code="44"))
        await conn.execute(insert(t.prod_attr_values), [
            {"id": 1, "prod_id": 1, "base_prod_id": 7, "attr_id": 5, "value": "forty-four", "value_type": "str",
             "attr_value_id": 50},
            {"id": 2, "prod_id": 2, "base_prod_id": 7, "attr_id": 5, "value": "45", "value_type": "str",
             "attr_value_id": None},
            {"id": 3, "prod_id": 3, "base_prod_id": 7, "attr_id": 5, "value": "46", "value_type": "str",
             "attr_value_id": None},
        ])
    return CatalogSourceRepo(engine)


async def test_store_point_read(catalog):
    store = await catalog.get_store(1)
    assert (store.id, store.user_id, store.slug) == (1, 9, "boots")
    assert store.name.get("en") == "Boot"
    assert await catalog.get_store(2) is None


async def test_product_aggregate_has_active_variants_and_their_attributes(catalog):
    aggregate = await catalog.get_product_aggregate(7)

    assert aggregate.base.category_id == 3
    assert [v.id for v in aggregate.variants] == [1, 2]
    assert sorted(aggregate.attrs) == [1, 2]
    [normalized] = aggregate.attrs[1]
    assert (normalized.value.value, normalized.code) == ("forty-four", "44")
    [raw] = aggregate.attrs[2]
    assert raw.code is None


async def test_missing_aggregate(catalog):
    assert await catalog.get_product_aggregate(8) is None


async def test_variant_parents(catalog):
    assert await catalog.get_variant_parents([1, 3, 99]) == {1: 7, 3: 7}
    assert await catalog.get_variant_parents([]) == {}


async def test_currency_rows_latest_wins(engine):
    async with engine.begin() as conn:
        await conn.execute(insert(t.currency_exchange), [
            {"id": "old", "data": {"USD": {"EUR": 0.8}, "EUR": {}}, "created_at": datetime(2024, 1, 1),
             "updated_at": datetime(2024, 1, 1)},
            {"id": "new", "data": {"USD": {"EUR": 0.9}, "EUR": {}}, "created_at": datetime(2024, 2, 1),
             "updated_at": datetime(2024, 2, 1)},
        ])
    latest = await CurrencyExchangeRepo(engine).get_latest()
    assert latest.id == "new"
    assert latest.rate("USD", "EUR") == 0.9


async def test_currency_insert_appends_a_version(engine):
    repo = CurrencyExchangeRepo(engine)
    assert await repo.get_latest() is None

    stored = await repo.insert({"usd": {"eur": 0.9}, "eur": {"usd": 1.1}})
    latest = await repo.get_latest()
    assert latest.id == stored.id
    assert latest.rates == {"USD": {"EUR": 0.9}, "EUR": {"USD": 1.1}}


async def test_currency_insert_rejects_bad_rates(engine):
    with pytest.raises(ValidationError):
        await CurrencyExchangeRepo(engine).insert({"USD": {"EUR": -1.0}})


async def test_category_levels_roundtrip(engine):
    async with engine.begin() as conn:
        await conn.execute(insert(t.categories), [
            {"id": 1, "name": NAME, "parent_id": None, "level": 1},
            {"id": 2, "name": NAME, "parent_id": 1, "level": 5},
        ])
    repo = CategoryRepo(engine)
    assert [(c.id, c.level) for c in await repo.list_all()] == [(1, 1), (2, 5)]

    assert await repo.update_levels({2: 2}) == 1
    assert [(c.id, c.level) for c in await repo.list_all()] == [(1, 1), (2, 2)]


async def test_category_move_writes_parent_and_levels_together(engine):
    async with engine.begin() as conn:
        await conn.execute(insert(t.categories), [
            {"id": 1, "name": NAME, "parent_id": None, "level": 1},
            {"id": 2, "name": NAME, "parent_id": 1, "level": 2},
            {"id": 3, "name": NAME, "parent_id": 2, "level": 3},
        ])
    repo = CategoryRepo(engine)

    await repo.move(2, None, {2: 1, 3: 2})

    assert [(c.id, c.parent_id, c.level) for c in await repo.list_all()] == [(1, None, 1), (2, None, 1), (3, 2, 2)]
