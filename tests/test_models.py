from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from catalog_sync.domain.errors import DocumentInvalid
from catalog_sync.domain.models.catalog import (
    Attribute, BaseProduct, Coupon, CouponScope, CouponScopeKind, LocalizedText,
)

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


# ---------- LocalizedText ----------------------------------------------------

def test_localized_text_accepts_list_mapping_and_json():
    from_list = LocalizedText([{"lang": "en", "text": "Red"}, {"lang": "ru", "text": "Красный"}])
    from_map = LocalizedText.model_validate({"en": "Red", "ru": "Красный"})
    from_json = LocalizedText.model_validate('[{"lang": "en", "text": "Red"}, {"lang": "ru", "text": "Красный"}]')

    assert from_list == from_map == from_json
    assert from_list.get("ru") == "Красный"
    assert from_list.model_dump() == [{"lang": "en", "text": "Red"}, {"lang": "ru", "text": "Красный"}]


def test_localized_text_may_be_empty():
    assert len(LocalizedText([])) == 0
    assert LocalizedText.model_validate(None).texts() == []


def test_localized_text_rejects_duplicate_languages():
    with pytest.raises(ValidationError):
        LocalizedText([{"lang": "en", "text": "a"}, {"lang": "en", "text": "b"}])


# ---------- Attributes -------------------------------------------------------

def test_enumerated_codes_become_attribute_values():
    attr = Attribute(id=5, value_type="string", meta_field={"values": ["S", "M", "L"]})
    values = attr.normalized_values()
    assert attr.value_type == "str"
    assert [(v.attr_id, v.code) for v in values] == [(5, "S"), (5, "M"), (5, "L")]


def test_translated_values_are_keyed_by_first_translation():
    meta = '{"translated_values": [[{"lang": "en", "text": "red"}, {"lang": "ru", "text": "красный"}], {"en": "blue"}]}'
    values = Attribute(id=6, value_type="str", meta_field=meta).normalized_values()
    assert [v.code for v in values] == ["red", "blue"]
    assert values[0].translations.get("ru") == "красный"


def test_attribute_cannot_have_both_value_kinds():
    with pytest.raises(ValidationError):
        Attribute(id=1, value_type="str", meta_field={"values": ["a"], "translated_values": [{"en": "a"}]})


@pytest.mark.parametrize("meta", [
    None,
    {"ui_element": "Combobox"},
    {"values": ["a", "a"]},
    {"translated_values": [[]]},
])
def test_attribute_normalization_failures(meta):
    with pytest.raises(DocumentInvalid):
        Attribute(id=1, value_type="str", meta_field=meta).normalized_values()


# ---------- Coupons ----------------------------------------------------------

def _product(**fields):
    return BaseProduct(**{"id": 7, "store_id": 1, "category_id": 3, **fields})


def _coupon(**fields):
    return Coupon(**{"id": 1, "code": "SALE10", "store_id": 1, "scope": "base_products",
                     "percent": 10, "quantity": 5, **fields})


def test_coupon_scoped_to_base_products():
    coupon = _coupon()
    scope = CouponScope(coupon_id=1, kind=CouponScopeKind.BASE_PRODUCTS, base_product_ids={7})
    assert coupon.applies_to(_product(), scope, now=NOW)
    assert not coupon.applies_to(_product(id=8), scope, now=NOW)
    assert not coupon.applies_to(_product(store_id=2), scope, now=NOW)


def test_coupon_scoped_to_categories():
    coupon = _coupon(scope="categories")
    scope = CouponScope(coupon_id=1, kind="categories", category_ids={3})
    assert coupon.applies_to(_product(id=99), scope, now=NOW)
    assert not coupon.applies_to(_product(category_id=4), scope, now=NOW)


def test_coupon_usability():
    assert _coupon(expired_at=NOW + timedelta(days=1)).is_usable(NOW)
    assert not _coupon(expired_at=NOW - timedelta(seconds=1)).is_usable(NOW)
    assert not _coupon(quantity=0).is_usable(NOW)
    assert not _coupon(is_active=False).is_usable(NOW)


def test_coupon_scope_kinds_are_exclusive():
    with pytest.raises(ValidationError):
        CouponScope(coupon_id=1, kind="categories", category_ids={3}, base_product_ids={7})


@pytest.mark.parametrize("fields", [{"percent": 101}, {"percent": -1}, {"quantity": -1}, {"code": "AB"}])
def test_coupon_field_bounds(fields):
    with pytest.raises(ValidationError):
        _coupon(**fields)


def test_scope_of_another_coupon_is_rejected():
    scope = CouponScope(coupon_id=2, kind="base_products", base_product_ids={7})
    with pytest.raises(ValueError):
        _coupon().applies_to(_product(), scope, now=NOW)
