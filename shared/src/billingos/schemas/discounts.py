"""Pydantic schemas for discount intents and records."""

from __future__ import annotations

import re
import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

CODE_PATTERN = re.compile(r"^[A-Z0-9][A-Z0-9_-]{2,31}$")

DiscountType = Literal["percentage", "fixed"]
DiscountDuration = Literal["once", "forever", "repeating"]


def normalize_discount_code(raw: str | None) -> str | None:
    """Normalize and validate a user-facing discount code; blank means no code."""
    if raw is None:
        return None
    code = raw.strip().upper()
    if not code:
        return None
    if not CODE_PATTERN.fullmatch(code):
        raise ValueError(
            "Code must be 3-32 chars and only use letters, numbers, '-' or '_'"
        )
    return code


def _trim_name(value: str | None) -> str | None:
    if value is None:
        return None
    trimmed = value.strip()
    if not trimmed:
        raise ValueError("name cannot be blank")
    return trimmed


def _dedupe_product_ids(value: list[uuid.UUID] | None) -> list[uuid.UUID] | None:
    if value is None:
        return None
    return list(dict.fromkeys(value))


class DiscountCreate(BaseModel):
    """Operator intent for a new discount.

    Cross-field rules (pricing shape, duration, window) are checked by the
    sync engine so they surface as ``DiscountValidationError``.
    """

    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1, max_length=240)
    code: str | None = None
    type: DiscountType
    basis_points: int | None = Field(default=None, gt=0, le=10000)
    amount: int | None = Field(default=None, ge=1)
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    duration: DiscountDuration = "once"
    duration_in_months: int | None = Field(default=None, ge=1, le=36)
    max_redemptions: int | None = Field(default=None, ge=1)
    product_ids: list[uuid.UUID] = Field(default_factory=list)
    starts_at: datetime | None = None
    ends_at: datetime | None = None

    @field_validator("name")
    @classmethod
    def _validate_name(cls, value: str) -> str | None:
        return _trim_name(value)

    @field_validator("code")
    @classmethod
    def _validate_code(cls, value: str | None) -> str | None:
        return normalize_discount_code(value)

    @field_validator("currency")
    @classmethod
    def _normalize_currency(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip().lower()

    @field_validator("product_ids")
    @classmethod
    def _unique_products(cls, value: list[uuid.UUID]) -> list[uuid.UUID]:
        return _dedupe_product_ids(value) or []


class DiscountUpdate(BaseModel):
    """Patch for an existing discount.

    Pricing fields are deliberately absent: a mirrored coupon's magnitude is
    immutable, so they are rejected as unknown fields. An explicit ``code`` of
    ``None`` or ``""`` removes the code.
    """

    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(default=None, min_length=1, max_length=240)
    code: str | None = None
    duration: DiscountDuration | None = None
    duration_in_months: int | None = Field(default=None, ge=1, le=36)
    max_redemptions: int | None = Field(default=None, ge=1)
    product_ids: list[uuid.UUID] | None = None
    starts_at: datetime | None = None
    ends_at: datetime | None = None

    @field_validator("name")
    @classmethod
    def _validate_name(cls, value: str | None) -> str | None:
        return _trim_name(value)

    @field_validator("code")
    @classmethod
    def _validate_code(cls, value: str | None) -> str | None:
        return normalize_discount_code(value)

    @field_validator("product_ids")
    @classmethod
    def _unique_products(cls, value: list[uuid.UUID] | None) -> list[uuid.UUID] | None:
        return _dedupe_product_ids(value)


class DiscountRecord(BaseModel):
    """Discount as returned to callers; mirror pointers are read-only."""

    id: uuid.UUID
    organization_id: uuid.UUID
    name: str
    code: str | None = None
    type: DiscountType
    basis_points: int | None = None
    amount: int | None = None
    currency: str | None = None
    duration: DiscountDuration
    duration_in_months: int | None = None
    max_redemptions: int | None = None
    redemptions_count: int = 0
    starts_at: datetime | None = None
    ends_at: datetime | None = None
    stripe_coupon_id: str | None = None
    stripe_promotion_code_id: str | None = None
    product_ids: list[uuid.UUID] = Field(default_factory=list)
    is_redeemable_now: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None


class DiscountPagination(BaseModel):
    total_count: int
    max_page: int


class DiscountPage(BaseModel):
    items: list[DiscountRecord]
    pagination: DiscountPagination
