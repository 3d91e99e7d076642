"""Create organizations, accounts, memberships, discounts and discount products.

Revision ID: 001_discounts
Revises:
Create Date: 2026-02-16
"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

from alembic import op

revision: str = "001_discounts"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _id_column() -> sa.Column:
    return sa.Column(
        "id",
        UUID(as_uuid=True),
        server_default=sa.text("gen_random_uuid()"),
        primary_key=True,
    )


def _created_at_column() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("NOW()"),
    )


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto")

    op.create_table(
        "accounts",
        _id_column(),
        sa.Column("stripe_id", sa.Text(), nullable=True, unique=True),
        _created_at_column(),
    )

    op.create_table(
        "organizations",
        _id_column(),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column(
            "account_id",
            UUID(as_uuid=True),
            sa.ForeignKey("accounts.id", ondelete="SET NULL"),
            nullable=True,
        ),
        _created_at_column(),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        "user_organizations",
        _id_column(),
        sa.Column("user_id", UUID(as_uuid=True), nullable=False),
        sa.Column(
            "organization_id",
            UUID(as_uuid=True),
            sa.ForeignKey("organizations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        _created_at_column(),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("user_id", "organization_id", name="uq_user_organizations_member"),
    )
    op.create_index("idx_user_organizations_org", "user_organizations", ["organization_id"])

    op.create_table(
        "discounts",
        _id_column(),
        sa.Column(
            "organization_id",
            UUID(as_uuid=True),
            sa.ForeignKey("organizations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("code", sa.Text(), nullable=True),
        sa.Column("type", sa.Text(), nullable=False),
        sa.Column("basis_points", sa.Integer(), nullable=True),
        sa.Column("amount", sa.Integer(), nullable=True),
        sa.Column("currency", sa.Text(), nullable=True),
        sa.Column("duration", sa.Text(), nullable=False, server_default=sa.text("'once'")),
        sa.Column("duration_in_months", sa.Integer(), nullable=True),
        sa.Column("max_redemptions", sa.Integer(), nullable=True),
        sa.Column(
            "redemptions_count", sa.Integer(), nullable=False, server_default=sa.text("0")
        ),
        sa.Column("starts_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ends_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("stripe_coupon_id", sa.Text(), nullable=True),
        sa.Column("stripe_promotion_code_id", sa.Text(), nullable=True),
        _created_at_column(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("type IN ('percentage','fixed')", name="ck_discount_type"),
        sa.CheckConstraint(
            "duration IN ('once','forever','repeating')",
            name="ck_discount_duration",
        ),
        sa.CheckConstraint(
            "(type = 'percentage' AND basis_points IS NOT NULL AND amount IS NULL "
            "AND currency IS NULL) OR "
            "(type = 'fixed' AND basis_points IS NULL AND amount IS NOT NULL "
            "AND currency IS NOT NULL)",
            name="ck_discount_pricing_shape",
        ),
        sa.CheckConstraint(
            "basis_points IS NULL OR (basis_points > 0 AND basis_points <= 10000)",
            name="ck_discount_basis_points",
        ),
        sa.CheckConstraint("amount IS NULL OR amount > 0", name="ck_discount_amount"),
        sa.CheckConstraint(
            "(duration = 'repeating') = (duration_in_months IS NOT NULL)",
            name="ck_discount_duration_in_months",
        ),
        sa.CheckConstraint(
            "max_redemptions IS NULL OR max_redemptions > 0",
            name="ck_discount_max_redemptions",
        ),
        sa.CheckConstraint(
            "ends_at IS NULL OR starts_at IS NULL OR ends_at > starts_at",
            name="ck_discount_window",
        ),
        sa.CheckConstraint(
            "stripe_promotion_code_id IS NULL OR stripe_coupon_id IS NOT NULL",
            name="ck_discount_promotion_requires_coupon",
        ),
    )
    op.create_index("idx_discounts_organization_id", "discounts", ["organization_id"])
    op.create_index("idx_discounts_deleted_at", "discounts", ["deleted_at"])
    op.create_index(
        "idx_discounts_unique_code_per_org",
        "discounts",
        ["organization_id", "code"],
        unique=True,
        postgresql_where=sa.text("deleted_at IS NULL AND code IS NOT NULL"),
    )

    op.create_table(
        "discount_products",
        _id_column(),
        sa.Column(
            "discount_id",
            UUID(as_uuid=True),
            sa.ForeignKey("discounts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("product_id", UUID(as_uuid=True), nullable=False),
        _created_at_column(),
        sa.UniqueConstraint("discount_id", "product_id", name="uq_discount_products_pair"),
    )
    op.create_index("idx_discount_products_discount", "discount_products", ["discount_id"])
    op.create_index("idx_discount_products_product", "discount_products", ["product_id"])


def downgrade() -> None:
    op.drop_index("idx_discount_products_product", table_name="discount_products")
    op.drop_index("idx_discount_products_discount", table_name="discount_products")
    op.drop_table("discount_products")

    op.drop_index("idx_discounts_unique_code_per_org", table_name="discounts")
    op.drop_index("idx_discounts_deleted_at", table_name="discounts")
    op.drop_index("idx_discounts_organization_id", table_name="discounts")
    op.drop_table("discounts")

    op.drop_index("idx_user_organizations_org", table_name="user_organizations")
    op.drop_table("user_organizations")
    op.drop_table("organizations")
    op.drop_table("accounts")
