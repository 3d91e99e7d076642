"""Translation between discount intents, rows, records and Stripe coupons."""

from __future__ import annotations

import math
import uuid
from collections.abc import Sequence
from datetime import UTC, datetime

from billingos.models import Discount
from billingos.schemas.discounts import (
    DiscountCreate,
    DiscountPage,
    DiscountPagination,
    DiscountRecord,
)
from billingos.services.discount_errors import DiscountValidationError
from billingos.services.stripe_mirror import CouponSpec

BASIS_POINTS_PER_PERCENT = 100


def as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def validate_pricing_shape(
    discount_type: str,
    *,
    basis_points: int | None,
    amount: int | None,
    currency: str | None,
) -> None:
    """Exactly one of the percentage or fixed shapes must be populated."""
    if discount_type == "percentage":
        if basis_points is None:
            raise DiscountValidationError("basis_points is required for percentage discounts")
        if amount is not None or currency is not None:
            raise DiscountValidationError(
                "amount and currency are only allowed for fixed discounts"
            )
    elif discount_type == "fixed":
        if amount is None:
            raise DiscountValidationError("amount is required for fixed discounts")
        if not currency:
            raise DiscountValidationError("currency is required for fixed discounts")
        if basis_points is not None:
            raise DiscountValidationError(
                "basis_points is only allowed for percentage discounts"
            )
    else:
        raise DiscountValidationError(f"Unsupported discount type '{discount_type}'")


def validate_duration(duration: str, duration_in_months: int | None) -> None:
    if duration == "repeating" and duration_in_months is None:
        raise DiscountValidationError("duration_in_months is required for repeating discounts")
    if duration != "repeating" and duration_in_months is not None:
        raise DiscountValidationError(
            "duration_in_months is only valid for repeating discounts"
        )


def validate_window(starts_at: datetime | None, ends_at: datetime | None) -> None:
    starts_at = as_utc(starts_at)
    ends_at = as_utc(ends_at)
    if starts_at and ends_at and ends_at <= starts_at:
        raise DiscountValidationError("ends_at must be after starts_at")


def validate_create_intent(intent: DiscountCreate) -> None:
    validate_pricing_shape(
        intent.type,
        basis_points=intent.basis_points,
        amount=intent.amount,
        currency=intent.currency,
    )
    validate_duration(intent.duration, intent.duration_in_months)
    validate_window(intent.starts_at, intent.ends_at)


def percent_off_from_basis_points(basis_points: int) -> float:
    """2000 basis points is 20.0 percent off; Stripe accepts two decimals."""
    return round(basis_points / BASIS_POINTS_PER_PERCENT, 2)


def coupon_spec_for(intent: DiscountCreate) -> CouponSpec:
    percent_off = None
    if intent.type == "percentage" and intent.basis_points is not None:
        percent_off = percent_off_from_basis_points(intent.basis_points)
    return CouponSpec(
        name=intent.name,
        duration=intent.duration,
        percent_off=percent_off,
        amount_off=intent.amount if intent.type == "fixed" else None,
        currency=intent.currency if intent.type == "fixed" else None,
        duration_in_months=intent.duration_in_months,
        max_redemptions=intent.max_redemptions,
    )


def build_discount(
    organization_id: uuid.UUID,
    intent: DiscountCreate,
    *,
    stripe_coupon_id: str | None,
    stripe_promotion_code_id: str | None,
) -> Discount:
    percentage = intent.type == "percentage"
    return Discount(
        organization_id=organization_id,
        name=intent.name,
        code=intent.code,
        type=intent.type,
        basis_points=intent.basis_points if percentage else None,
        amount=None if percentage else intent.amount,
        currency=None if percentage else intent.currency,
        duration=intent.duration,
        duration_in_months=intent.duration_in_months,
        max_redemptions=intent.max_redemptions,
        redemptions_count=0,
        starts_at=as_utc(intent.starts_at),
        ends_at=as_utc(intent.ends_at),
        stripe_coupon_id=stripe_coupon_id,
        stripe_promotion_code_id=stripe_promotion_code_id if stripe_coupon_id else None,
    )


def is_discount_redeemable(discount: Discount, now: datetime | None = None) -> bool:
    """Return True when the discount is live, inside its window and under its cap."""
    current = now or datetime.now(UTC)
    if discount.deleted_at is not None:
        return False
    starts_at = as_utc(discount.starts_at)
    ends_at = as_utc(discount.ends_at)
    if starts_at and starts_at > current:
        return False
    if ends_at and ends_at <= current:
        return False
    if (
        discount.max_redemptions is not None
        and (discount.redemptions_count or 0) >= discount.max_redemptions
    ):
        return False
    return True


def to_record(discount: Discount, product_ids: Sequence[uuid.UUID] | None) -> DiscountRecord:
    return DiscountRecord(
        id=discount.id,
        organization_id=discount.organization_id,
        name=discount.name,
        code=discount.code,
        type=discount.type,
        basis_points=discount.basis_points,
        amount=discount.amount,
        currency=discount.currency,
        duration=discount.duration,
        duration_in_months=discount.duration_in_months,
        max_redemptions=discount.max_redemptions,
        redemptions_count=discount.redemptions_count or 0,
        starts_at=discount.starts_at,
        ends_at=discount.ends_at,
        stripe_coupon_id=discount.stripe_coupon_id,
        stripe_promotion_code_id=discount.stripe_promotion_code_id,
        product_ids=list(product_ids or []),
        is_redeemable_now=is_discount_redeemable(discount),
        created_at=discount.created_at,
        updated_at=discount.updated_at,
    )


def to_page(
    discounts: Sequence[Discount],
    associations: dict[uuid.UUID, list[uuid.UUID]],
    *,
    total_count: int,
    limit: int,
) -> DiscountPage:
    return DiscountPage(
        items=[to_record(discount, associations.get(discount.id)) for discount in discounts],
        pagination=DiscountPagination(
            total_count=total_count,
            max_page=math.ceil(total_count / limit) if limit else 0,
        ),
    )
