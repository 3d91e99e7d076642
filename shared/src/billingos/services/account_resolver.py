"""Organization lookups the discount engine depends on."""

from __future__ import annotations

import uuid
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from billingos.models import Account, Organization, UserOrganization


class AccountResolver(Protocol):
    async def resolve(self, organization_id: uuid.UUID) -> str | None: ...


class MembershipChecker(Protocol):
    async def is_member(self, organization_id: uuid.UUID, user_id: uuid.UUID) -> bool: ...


class SqlAccountResolver:
    """Map an organization to its Stripe connected account id."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def resolve(self, organization_id: uuid.UUID) -> str | None:
        result = await self.db.execute(
            select(Account.stripe_id)
            .join(Organization, Organization.account_id == Account.id)
            .where(
                Organization.id == organization_id,
                Organization.deleted_at.is_(None),
            )
            .limit(1)
        )
        stripe_id = str(result.scalars().first() or "").strip()
        return stripe_id or None


class SqlMembershipChecker:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def is_member(self, organization_id: uuid.UUID, user_id: uuid.UUID) -> bool:
        result = await self.db.execute(
            select(UserOrganization.id).where(
                UserOrganization.organization_id == organization_id,
                UserOrganization.user_id == user_id,
                UserOrganization.deleted_at.is_(None),
            )
        )
        return result.scalars().first() is not None
