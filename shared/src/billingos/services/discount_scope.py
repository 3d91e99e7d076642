"""Product eligibility for discounts.

A discount with no product associations applies to every product.
"""

from __future__ import annotations

import logging
import uuid

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from billingos.schemas.discounts import DiscountRecord
from billingos.services.account_resolver import MembershipChecker, SqlMembershipChecker
from billingos.services.discount_errors import DiscountAccessError, DiscountPersistenceError
from billingos.services.discount_mapping import to_record
from billingos.services.discount_repository import DiscountRepository, SqlDiscountRepository

logger = logging.getLogger(__name__)


def applies_to(discount: DiscountRecord, product_id: uuid.UUID) -> bool:
    if not discount.product_ids:
        return True
    return product_id in discount.product_ids


class ProductScopeResolver:
    def __init__(self, repository: DiscountRepository, membership: MembershipChecker) -> None:
        self.repository = repository
        self.membership = membership

    def applies_to(self, discount: DiscountRecord, product_id: uuid.UUID) -> bool:
        return applies_to(discount, product_id)

    async def find_applicable(
        self,
        organization_id: uuid.UUID,
        product_id: uuid.UUID,
        *,
        user_id: uuid.UUID,
    ) -> list[DiscountRecord]:
        """Live discounts of the organization that can be used on ``product_id``.

        Associations for all candidates are fetched in a single batched lookup.
        """
        if not await self.membership.is_member(organization_id, user_id):
            raise DiscountAccessError("You are not a member of this organization")

        try:
            discounts, _ = await self.repository.list_by_organization(organization_id)
            if not discounts:
                return []
            associations = await self.repository.get_associations_for_discounts(
                [discount.id for discount in discounts]
            )
        except SQLAlchemyError as exc:
            logger.error(
                "Failed to fetch discounts of organization %s for product %s: %s",
                organization_id,
                product_id,
                exc,
            )
            raise DiscountPersistenceError("Failed to fetch discounts") from exc

        records = [to_record(discount, associations.get(discount.id)) for discount in discounts]
        return [record for record in records if applies_to(record, product_id)]


def build_product_scope_resolver(db: AsyncSession) -> ProductScopeResolver:
    """Wire the resolver to SQL collaborators on ``db``."""
    return ProductScopeResolver(
        repository=SqlDiscountRepository(db),
        membership=SqlMembershipChecker(db),
    )
