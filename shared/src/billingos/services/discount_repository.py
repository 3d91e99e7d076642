"""Durable storage for discounts and their product scope."""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any, Protocol

from sqlalchemy import delete, func, insert, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from billingos.models import Discount, DiscountProduct


class DiscountRepository(Protocol):
    async def insert(self, discount: Discount) -> Discount: ...

    async def get_by_id(self, discount_id: uuid.UUID) -> Discount | None: ...

    async def get_by_code(
        self,
        organization_id: uuid.UUID,
        code: str,
        *,
        exclude_id: uuid.UUID | None = None,
    ) -> Discount | None: ...

    async def list_by_organization(
        self,
        organization_id: uuid.UUID,
        *,
        query: str | None = None,
        page: int | None = None,
        limit: int | None = None,
    ) -> tuple[list[Discount], int]: ...

    async def update(self, discount_id: uuid.UUID, values: dict[str, Any]) -> Discount | None: ...

    async def soft_delete(self, discount_id: uuid.UUID) -> None: ...

    async def insert_associations(
        self, discount_id: uuid.UUID, product_ids: Sequence[uuid.UUID]
    ) -> None: ...

    async def replace_associations(
        self, discount_id: uuid.UUID, product_ids: Sequence[uuid.UUID]
    ) -> None: ...

    async def get_associations_for_discounts(
        self, discount_ids: Sequence[uuid.UUID]
    ) -> dict[uuid.UUID, list[uuid.UUID]]: ...


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class SqlDiscountRepository:
    """DiscountRepository on an AsyncSession; the session owner commits."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def insert(self, discount: Discount) -> Discount:
        self.db.add(discount)
        await self.db.flush()
        return discount

    async def get_by_id(self, discount_id: uuid.UUID) -> Discount | None:
        result = await self.db.execute(
            select(Discount).where(Discount.id == discount_id, Discount.deleted_at.is_(None))
        )
        return result.scalars().first()

    async def get_by_code(
        self,
        organization_id: uuid.UUID,
        code: str,
        *,
        exclude_id: uuid.UUID | None = None,
    ) -> Discount | None:
        query = select(Discount).where(
            Discount.organization_id == organization_id,
            Discount.code == code,
            Discount.deleted_at.is_(None),
        )
        if exclude_id is not None:
            query = query.where(Discount.id != exclude_id)
        result = await self.db.execute(query.limit(1))
        return result.scalars().first()

    async def list_by_organization(
        self,
        organization_id: uuid.UUID,
        *,
        query: str | None = None,
        page: int | None = None,
        limit: int | None = None,
    ) -> tuple[list[Discount], int]:
        """Live discounts, newest first. Without ``page`` every row is returned."""
        conditions = [
            Discount.organization_id == organization_id,
            Discount.deleted_at.is_(None),
        ]
        search = (query or "").strip()
        if search:
            pattern = f"%{_escape_like(search)}%"
            conditions.append(
                or_(
                    Discount.name.ilike(pattern, escape="\\"),
                    Discount.code.ilike(pattern, escape="\\"),
                )
            )

        statement = select(Discount).where(*conditions).order_by(Discount.created_at.desc())
        if page is None or limit is None:
            result = await self.db.execute(statement)
            rows = list(result.scalars().all())
            return rows, len(rows)

        count_result = await self.db.execute(
            select(func.count(Discount.id)).where(*conditions)
        )
        total = int(count_result.scalar() or 0)
        result = await self.db.execute(
            statement.offset((max(page, 1) - 1) * limit).limit(limit)
        )
        return list(result.scalars().all()), total

    async def update(self, discount_id: uuid.UUID, values: dict[str, Any]) -> Discount | None:
        result = await self.db.execute(
            update(Discount)
            .where(Discount.id == discount_id)
            .values(**values)
            .returning(Discount)
            .execution_options(synchronize_session="fetch")
        )
        return result.scalars().first()

    async def soft_delete(self, discount_id: uuid.UUID) -> None:
        await self.db.execute(
            update(Discount)
            .where(Discount.id == discount_id, Discount.deleted_at.is_(None))
            .values(deleted_at=datetime.now(UTC))
        )

    async def insert_associations(
        self, discount_id: uuid.UUID, product_ids: Sequence[uuid.UUID]
    ) -> None:
        if not product_ids:
            return
        await self.db.execute(
            insert(DiscountProduct),
            [{"discount_id": discount_id, "product_id": product_id} for product_id in product_ids],
        )

    async def replace_associations(
        self, discount_id: uuid.UUID, product_ids: Sequence[uuid.UUID]
    ) -> None:
        await self.db.execute(
            delete(DiscountProduct).where(DiscountProduct.discount_id == discount_id)
        )
        await self.insert_associations(discount_id, product_ids)

    async def get_associations_for_discounts(
        self, discount_ids: Sequence[uuid.UUID]
    ) -> dict[uuid.UUID, list[uuid.UUID]]:
        if not discount_ids:
            return {}
        result = await self.db.execute(
            select(DiscountProduct.discount_id, DiscountProduct.product_id)
            .where(DiscountProduct.discount_id.in_(list(discount_ids)))
            .order_by(DiscountProduct.created_at)
        )
        associations: dict[uuid.UUID, list[uuid.UUID]] = {}
        for discount_id, product_id in result.all():
            associations.setdefault(discount_id, []).append(product_id)
        return associations
