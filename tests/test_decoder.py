import json

import pytest

from catalog_sync.domain.errors import DecodeError
from catalog_sync.domain.models.documents import DocumentKey
from catalog_sync.domain.models.events import (
    AttrValueChange, BaseProductChange, ChangeOp, RawChangeRecord, StoreChange, VariantChange,
)
from catalog_sync.domain.services.decoder_svc import decode

from fakes import TOPIC, envelope

STORE = {"id": 1, "user_id": 9, "is_active": True, "name": '[{"lang": "en", "text": "Shoes"}]',
         "short_description": "[]", "slug": "shoes", "created_at": 1_700_000_000_000_000}
BASE = {"id": 7, "store_id": 1, "category_id": 3, "currency": "USD", "name": [{"lang": "en", "text": "Boot"}]}
VARIANT = {"id": 11, "base_product_id": 7, "price": 100.0, "currency": "USD", "discount": 0.1}


def _record(table, value):
    return RawChangeRecord(stream=TOPIC.format(table), offset="1-0", value=value)


def test_insert_carries_after_only():
    event = decode(_record("stores", envelope("stores", "c", lsn=42, after=STORE)))

    assert isinstance(event, StoreChange)
    assert event.op is ChangeOp.INSERT
    assert (event.key, event.position) == (1, 42)
    assert event.before is None
    assert event.after.slug == "shoes"
    assert event.after.created_at == 1_700_000_000_000_000
    assert event.document_keys() == [DocumentKey("stores", 1)]


def test_snapshot_read_is_an_insert():
    event = decode(_record("base_products", envelope("base_products", "r", lsn=5, after=BASE)))
    assert isinstance(event, BaseProductChange)
    assert event.op is ChangeOp.INSERT


def test_update_and_delete_row_images():
    updated = decode(_record("products", envelope("products", "u", lsn=6, before=VARIANT,
                                                  after={**VARIANT, "price": 120.0})))
    deleted = decode(_record("products", envelope("products", "d", lsn=7, before=VARIANT)))

    assert isinstance(updated, VariantChange)
    assert (updated.before.price, updated.after.price) == (100.0, 120.0)
    assert deleted.op is ChangeOp.DELETE
    assert deleted.after is None


def test_update_without_before_image_is_rejected():
    with pytest.raises(DecodeError) as exc:
        decode(_record("products", envelope("products", "u", lsn=6, after=VARIANT)))
    assert exc.value.table == "products"
    assert exc.value.key == 11


def test_variant_moved_between_parents_touches_both():
    event = decode(_record("products", envelope("products", "u", lsn=8, before=VARIANT,
                                                after={**VARIANT, "base_product_id": 8})))
    assert event.document_keys() == [DocumentKey("products", 7), DocumentKey("products", 8)]


def test_attr_value_without_parent_needs_resolution():
    row = {"id": 3, "prod_id": 11, "attr_id": 5, "value": "44", "value_type": "string"}
    event = decode(_record("prod_attr_values", envelope("prod_attr_values", "c", lsn=9, after=row)))

    assert isinstance(event, AttrValueChange)
    assert event.after.prod_id == 11
    assert event.document_keys() == []
    assert event.unresolved_variant_ids() == [11]


def test_bare_payload_and_topic_fallback():
    payload = {"op": "c", "after": BASE, "source": {"lsn": 10}}
    event = decode(_record("base_products", json.dumps(payload)))
    assert isinstance(event, BaseProductChange)
    assert event.key == 7


@pytest.mark.parametrize("value", [None, json.dumps({"payload": None})])
def test_compaction_tombstones_are_dropped(value):
    assert decode(_record("stores", value)) is None


def test_untracked_tables_are_dropped():
    row = {"id": 1, "name": "[]", "level": 1}
    assert decode(_record("categories", envelope("categories", "c", lsn=1, after=row))) is None


@pytest.mark.parametrize("value", [
    "not json",
    json.dumps([1, 2]),
    envelope("stores", "x", lsn=1, after=STORE),
    envelope("stores", "c", lsn=None, after=STORE),
    envelope("stores", "c", lsn=1, after={**STORE, "id": None}),
    envelope("stores", "c", lsn=1, before=STORE),
])
def test_malformed_records_raise_decode_error(value):
    with pytest.raises(DecodeError):
        decode(_record("stores", value))


def test_row_rules_are_not_enforced_on_row_images():
    # a legacy discount of 1.5 on the old row must not block the deactivation
    event = decode(_record("products", envelope("products", "u", lsn=10, before={**VARIANT, "discount": 1.5},
                                                after={**VARIANT, "discount": 0.5, "is_active": False})))

    assert isinstance(event, VariantChange)
    assert event.before.discount == 1.5
    assert event.after.is_active is False
    assert event.document_keys() == [DocumentKey("products", 7)]


def test_row_without_parent_key_keeps_table_and_key():
    row = {k: v for k, v in VARIANT.items() if k != "base_product_id"}
    with pytest.raises(DecodeError) as exc:
        decode(_record("products", envelope("products", "c", lsn=1, after=row)))
    assert (exc.value.table, exc.value.key) == ("products", 11)
