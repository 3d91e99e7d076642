"""Organization-owned discounts mirrored to Stripe coupons and promotion codes."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from billingos.models.base import Base

DISCOUNT_TYPES = ("percentage", "fixed")
DISCOUNT_DURATIONS = ("once", "forever", "repeating")


class Discount(Base):
    __tablename__ = "discounts"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, server_default=text("gen_random_uuid()")
    )
    organization_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    code: Mapped[str | None] = mapped_column(Text)
    type: Mapped[str] = mapped_column(Text, nullable=False)
    # Basis points: 2000 means 20% off.
    basis_points: Mapped[int | None] = mapped_column(Integer)
    amount: Mapped[int | None] = mapped_column(Integer)
    currency: Mapped[str | None] = mapped_column(Text)
    duration: Mapped[str] = mapped_column(Text, nullable=False, server_default=text("'once'"))
    duration_in_months: Mapped[int | None] = mapped_column(Integer)
    max_redemptions: Mapped[int | None] = mapped_column(Integer)
    redemptions_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default=text("0")
    )
    starts_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    ends_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    stripe_coupon_id: Mapped[str | None] = mapped_column(Text)
    stripe_promotion_code_id: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("NOW()")
    )
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        CheckConstraint("type IN ('percentage','fixed')", name="ck_discount_type"),
        CheckConstraint(
            "duration IN ('once','forever','repeating')",
            name="ck_discount_duration",
        ),
        CheckConstraint(
            "(type = 'percentage' AND basis_points IS NOT NULL AND amount IS NULL "
            "AND currency IS NULL) OR "
            "(type = 'fixed' AND basis_points IS NULL AND amount IS NOT NULL "
            "AND currency IS NOT NULL)",
            name="ck_discount_pricing_shape",
        ),
        CheckConstraint(
            "basis_points IS NULL OR (basis_points > 0 AND basis_points <= 10000)",
            name="ck_discount_basis_points",
        ),
        CheckConstraint("amount IS NULL OR amount > 0", name="ck_discount_amount"),
        CheckConstraint(
            "(duration = 'repeating') = (duration_in_months IS NOT NULL)",
            name="ck_discount_duration_in_months",
        ),
        CheckConstraint(
            "max_redemptions IS NULL OR max_redemptions > 0",
            name="ck_discount_max_redemptions",
        ),
        CheckConstraint(
            "ends_at IS NULL OR starts_at IS NULL OR ends_at > starts_at",
            name="ck_discount_window",
        ),
        CheckConstraint(
            "stripe_promotion_code_id IS NULL OR stripe_coupon_id IS NOT NULL",
            name="ck_discount_promotion_requires_coupon",
        ),
        Index("idx_discounts_organization_id", "organization_id"),
        Index("idx_discounts_deleted_at", "deleted_at"),
        Index(
            "idx_discounts_unique_code_per_org",
            "organization_id",
            "code",
            unique=True,
            postgresql_where=text("deleted_at IS NULL AND code IS NOT NULL"),
        ),
    )


class DiscountProduct(Base):
    """Restricts a discount to a product. No rows means every product."""

    __tablename__ = "discount_products"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, server_default=text("gen_random_uuid()")
    )
    discount_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("discounts.id", ondelete="CASCADE"), nullable=False
    )
    product_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("NOW()")
    )

    __table_args__ = (
        UniqueConstraint("discount_id", "product_id", name="uq_discount_products_pair"),
        Index("idx_discount_products_discount", "discount_id"),
        Index("idx_discount_products_product", "product_id"),
    )
