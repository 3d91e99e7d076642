"""Tests for intent validation, coupon mapping and record serialization."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta

import pytest
from billingos.models import Discount
from billingos.schemas.discounts import DiscountCreate, normalize_discount_code
from billingos.services.discount_errors import DiscountValidationError
from billingos.services.discount_mapping import (
    build_discount,
    coupon_spec_for,
    is_discount_redeemable,
    percent_off_from_basis_points,
    to_record,
    validate_pricing_shape,
    validate_window,
)


def test_normalize_discount_code():
    assert normalize_discount_code("  summer-24 ") == "SUMMER-24"
    assert normalize_discount_code("   ") is None
    assert normalize_discount_code(None) is None
    with pytest.raises(ValueError):
        normalize_discount_code("no spaces allowed")


@pytest.mark.parametrize(
    ("basis_points", "expected"),
    [(2000, 20.0), (5000, 50.0), (1234, 12.34), (1, 0.01), (10000, 100.0)],
)
def test_percent_off_from_basis_points(basis_points, expected):
    assert percent_off_from_basis_points(basis_points) == expected


def test_validate_pricing_shape_rejects_basis_points_on_fixed():
    with pytest.raises(DiscountValidationError):
        validate_pricing_shape("fixed", basis_points=100, amount=500, currency="usd")


def test_validate_pricing_shape_accepts_each_shape():
    validate_pricing_shape("percentage", basis_points=100, amount=None, currency=None)
    validate_pricing_shape("fixed", basis_points=None, amount=500, currency="eur")


def test_validate_window_requires_end_after_start():
    start = datetime(2026, 3, 1, tzinfo=UTC)
    with pytest.raises(DiscountValidationError):
        validate_window(start, start)
    validate_window(start, start + timedelta(days=1))
    validate_window(None, start)


def test_coupon_spec_params_for_percentage():
    intent = DiscountCreate(
        name="Quarter off",
        type="percentage",
        basis_points=2500,
        duration="repeating",
        duration_in_months=3,
        max_redemptions=100,
    )

    params = coupon_spec_for(intent).to_params()

    assert params == {
        "name": "Quarter off",
        "duration": "repeating",
        "percent_off": 25.0,
        "duration_in_months": 3,
        "max_redemptions": 100,
    }


def test_coupon_spec_params_for_fixed():
    intent = DiscountCreate(name="Ten off", type="fixed", amount=1000, currency="GBP")

    params = coupon_spec_for(intent).to_params()

    assert params == {"name": "Ten off", "duration": "once", "amount_off": 1000, "currency": "gbp"}


def test_build_discount_drops_promotion_pointer_without_coupon():
    intent = DiscountCreate(name="Odd", type="percentage", basis_points=100, code="ODD")

    discount = build_discount(
        uuid.uuid4(), intent, stripe_coupon_id=None, stripe_promotion_code_id="promo_x"
    )

    assert discount.stripe_promotion_code_id is None


def _discount(**fields) -> Discount:
    values = {
        "id": uuid.uuid4(),
        "organization_id": uuid.uuid4(),
        "name": "Any",
        "type": "percentage",
        "basis_points": 100,
        "duration": "once",
        "redemptions_count": 0,
    }
    values.update(fields)
    return Discount(**values)


def test_is_discount_redeemable_window_and_cap():
    now = datetime(2026, 5, 1, tzinfo=UTC)
    assert is_discount_redeemable(_discount(), now) is True
    assert is_discount_redeemable(_discount(starts_at=now + timedelta(hours=1)), now) is False
    assert is_discount_redeemable(_discount(ends_at=now), now) is False
    assert is_discount_redeemable(_discount(max_redemptions=3, redemptions_count=3), now) is False
    assert is_discount_redeemable(_discount(deleted_at=now), now) is False


def test_to_record_exposes_product_ids():
    product = uuid.uuid4()
    record = to_record(_discount(stripe_coupon_id="coupon_1"), [product])
    assert record.product_ids == [product]
    assert record.stripe_coupon_id == "coupon_1"
    assert to_record(_discount(), None).product_ids == []
