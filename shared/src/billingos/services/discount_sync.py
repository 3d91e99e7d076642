"""Keep local discounts and their Stripe coupons/promotion codes in step.

The local row is authoritative. Stripe is mirrored best-effort: any remote
failure is logged and absorbed, leaving the mirror pointers null (or as they
were) so the row itself describes how far mirroring got. Only local store
failures and rejected intents reach the caller.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Awaitable
from datetime import UTC, datetime
from typing import Any, TypeVar

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from billingos.config import get_settings
from billingos.models import Discount
from billingos.schemas.discounts import (
    DiscountCreate,
    DiscountPage,
    DiscountRecord,
    DiscountUpdate,
)
from billingos.services.account_resolver import (
    AccountResolver,
    MembershipChecker,
    SqlAccountResolver,
    SqlMembershipChecker,
)
from billingos.services.discount_errors import (
    DiscountAccessError,
    DiscountNotFoundError,
    DiscountPersistenceError,
    DiscountValidationError,
    DuplicateDiscountCodeError,
)
from billingos.services.discount_mapping import (
    as_utc,
    build_discount,
    coupon_spec_for,
    to_page,
    to_record,
    validate_create_intent,
    validate_duration,
    validate_window,
)
from billingos.services.discount_repository import DiscountRepository, SqlDiscountRepository
from billingos.services.stripe_mirror import PaymentMirror, StripePaymentMirror

logger = logging.getLogger(__name__)

T = TypeVar("T")

UNIQUE_CODE_INDEX = "idx_discounts_unique_code_per_org"
PATCHABLE_FIELDS = (
    "name",
    "code",
    "duration",
    "duration_in_months",
    "max_redemptions",
    "starts_at",
    "ends_at",
)


def _is_duplicate_code_violation(exc: IntegrityError) -> bool:
    return UNIQUE_CODE_INDEX in str(getattr(exc, "orig", None) or exc)


class DiscountSyncEngine:
    def __init__(
        self,
        repository: DiscountRepository,
        accounts: AccountResolver,
        mirror: PaymentMirror,
        membership: MembershipChecker,
    ) -> None:
        self.repository = repository
        self.accounts = accounts
        self.mirror = mirror
        self.membership = membership

    async def _ensure_member(self, organization_id: uuid.UUID, user_id: uuid.UUID) -> None:
        if not await self.membership.is_member(organization_id, user_id):
            raise DiscountAccessError("You are not a member of this organization")

    async def _load_authorized(
        self,
        discount_id: uuid.UUID,
        organization_id: uuid.UUID,
        user_id: uuid.UUID,
    ) -> Discount:
        try:
            discount = await self.repository.get_by_id(discount_id)
        except SQLAlchemyError as exc:
            logger.error("Failed to load discount %s: %s", discount_id, exc)
            raise DiscountPersistenceError("Failed to load discount") from exc
        if (
            discount is None
            or discount.deleted_at is not None
            or discount.organization_id != organization_id
        ):
            raise DiscountNotFoundError("Discount not found")
        await self._ensure_member(discount.organization_id, user_id)
        return discount

    async def _ensure_code_available(
        self,
        organization_id: uuid.UUID,
        code: str,
        *,
        exclude_id: uuid.UUID | None = None,
    ) -> None:
        try:
            existing = await self.repository.get_by_code(
                organization_id, code, exclude_id=exclude_id
            )
        except SQLAlchemyError as exc:
            raise DiscountPersistenceError("Failed to check discount code") from exc
        if existing is not None:
            raise DuplicateDiscountCodeError(code)

    async def _resolve_account(self, organization_id: uuid.UUID) -> str | None:
        try:
            return await self.accounts.resolve(organization_id)
        except Exception as exc:
            logger.warning(
                "Stripe account lookup failed for organization %s: %s",
                organization_id,
                exc,
            )
            return None

    async def _mirror(
        self,
        operation: str,
        call: Awaitable[T],
        *,
        account_id: str,
        discount_ref: object,
    ) -> tuple[bool, T | None]:
        try:
            result = await call
        except Exception as exc:
            # TODO: retry failures flagged PaymentMirrorError.transient with backoff.
            logger.warning(
                "Stripe %s failed for discount %s on account %s (transient=%s): %s",
                operation,
                discount_ref,
                account_id,
                bool(getattr(exc, "transient", False)),
                exc,
            )
            return False, None
        logger.info(
            "Stripe %s succeeded for discount %s on account %s",
            operation,
            discount_ref,
            account_id,
        )
        return True, result

    async def create(
        self,
        organization_id: uuid.UUID,
        intent: DiscountCreate,
        *,
        user_id: uuid.UUID,
    ) -> DiscountRecord:
        """Create a discount, mirroring it to Stripe when the organization can pay."""
        await self._ensure_member(organization_id, user_id)
        validate_create_intent(intent)
        if intent.code:
            await self._ensure_code_available(organization_id, intent.code)

        discount_ref = intent.code or intent.name
        stripe_coupon_id: str | None = None
        stripe_promotion_code_id: str | None = None

        account_id = await self._resolve_account(organization_id)
        if account_id is None:
            logger.info(
                "No Stripe account for organization %s; skipping coupon mirror",
                organization_id,
            )
        else:
            coupon_ok, stripe_coupon_id = await self._mirror(
                "create_coupon",
                self.mirror.create_coupon(coupon_spec_for(intent), account_id=account_id),
                account_id=account_id,
                discount_ref=discount_ref,
            )
            if coupon_ok and stripe_coupon_id and intent.code:
                _, stripe_promotion_code_id = await self._mirror(
                    "create_promotion_code",
                    self.mirror.create_promotion_code(
                        stripe_coupon_id,
                        intent.code,
                        account_id=account_id,
                        expires_at=as_utc(intent.ends_at),
                    ),
                    account_id=account_id,
                    discount_ref=discount_ref,
                )

        discount = build_discount(
            organization_id,
            intent,
            stripe_coupon_id=stripe_coupon_id,
            stripe_promotion_code_id=stripe_promotion_code_id,
        )
        try:
            discount = await self.repository.insert(discount)
            await self.repository.insert_associations(discount.id, intent.product_ids)
        except SQLAlchemyError as exc:
            logger.error(
                "Failed to persist discount %s for organization %s "
                "(stripe coupon=%s, promotion code=%s left without a local row): %s",
                discount_ref,
                organization_id,
                stripe_coupon_id,
                stripe_promotion_code_id,
                exc,
            )
            if intent.code and isinstance(exc, IntegrityError) and _is_duplicate_code_violation(exc):
                raise DuplicateDiscountCodeError(intent.code) from exc
            raise DiscountPersistenceError("Failed to create discount") from exc

        logger.info("Created discount %s for organization %s", discount.id, organization_id)
        return to_record(discount, intent.product_ids)

    async def find_one(
        self,
        discount_id: uuid.UUID,
        organization_id: uuid.UUID,
        *,
        user_id: uuid.UUID,
    ) -> DiscountRecord:
        discount = await self._load_authorized(discount_id, organization_id, user_id)
        try:
            associations = await self.repository.get_associations_for_discounts([discount.id])
        except SQLAlchemyError as exc:
            raise DiscountPersistenceError("Failed to load discount products") from exc
        return to_record(discount, associations.get(discount.id))

    async def list_discounts(
        self,
        organization_id: uuid.UUID,
        *,
        user_id: uuid.UUID,
        query: str | None = None,
        page: int = 1,
        limit: int | None = None,
    ) -> DiscountPage:
        await self._ensure_member(organization_id, user_id)
        page = max(page, 1)
        limit = limit or get_settings().discount_page_size
        try:
            discounts, total = await self.repository.list_by_organization(
                organization_id, query=query, page=page, limit=limit
            )
            associations = (
                await self.repository.get_associations_for_discounts(
                    [discount.id for discount in discounts]
                )
                if discounts
                else {}
            )
        except SQLAlchemyError as exc:
            logger.error("Failed to fetch discounts for organization %s: %s", organization_id, exc)
            raise DiscountPersistenceError("Failed to fetch discounts") from exc
        return to_page(discounts, associations, total_count=total, limit=limit)

    async def _sync_promotion_code(
        self,
        discount: Discount,
        new_code: str | None,
        *,
        account_id: str,
        expires_at: datetime | None,
    ) -> dict[str, Any]:
        """Swap the promotion code for a changed code.

        Returns the pointer fields to persist. A failed deactivation stops the
        swap so the old pointer keeps tracking the still-active remote code.
        """
        old_promotion_code_id = discount.stripe_promotion_code_id
        if old_promotion_code_id:
            deactivated, _ = await self._mirror(
                "deactivate_promotion_code",
                self.mirror.deactivate_promotion_code(
                    old_promotion_code_id, account_id=account_id
                ),
                account_id=account_id,
                discount_ref=discount.id,
            )
            if not deactivated:
                return {}

        if not new_code:
            return {"stripe_promotion_code_id": None}

        created, promotion_code_id = await self._mirror(
            "create_promotion_code",
            self.mirror.create_promotion_code(
                discount.stripe_coupon_id,
                new_code,
                account_id=account_id,
                expires_at=expires_at,
            ),
            account_id=account_id,
            discount_ref=discount.id,
        )
        if created and promotion_code_id:
            return {"stripe_promotion_code_id": promotion_code_id}
        if old_promotion_code_id:
            return {"stripe_promotion_code_id": None}
        return {}

    async def update(
        self,
        discount_id: uuid.UUID,
        organization_id: uuid.UUID,
        patch: DiscountUpdate,
        *,
        user_id: uuid.UUID,
    ) -> DiscountRecord:
        """Apply a patch locally; only the coupon name and promotion code reach Stripe."""
        discount = await self._load_authorized(discount_id, organization_id, user_id)

        changes = patch.model_dump(exclude_unset=True)
        if not changes:
            raise DiscountValidationError("No changes provided")
        product_ids = changes.pop("product_ids", None)
        for field in ("name", "duration"):
            if field in changes and changes[field] is None:
                raise DiscountValidationError(f"{field} cannot be null")

        duration = changes.get("duration", discount.duration)
        if "duration_in_months" not in changes and "duration" in changes:
            if duration != "repeating":
                changes["duration_in_months"] = None
        validate_duration(duration, changes.get("duration_in_months", discount.duration_in_months))
        for field in ("starts_at", "ends_at"):
            if field in changes:
                changes[field] = as_utc(changes[field])
        ends_at = changes.get("ends_at", discount.ends_at)
        validate_window(changes.get("starts_at", discount.starts_at), ends_at)

        new_code = changes.get("code", discount.code)
        code_changed = "code" in changes and new_code != discount.code
        if code_changed and new_code:
            await self._ensure_code_available(
                discount.organization_id, new_code, exclude_id=discount.id
            )

        pointer_changes: dict[str, Any] = {}
        if discount.stripe_coupon_id:
            account_id = await self._resolve_account(discount.organization_id)
            if account_id is None:
                logger.warning(
                    "No Stripe account for organization %s; discount %s updated locally only",
                    discount.organization_id,
                    discount.id,
                )
            else:
                await self._mirror(
                    "update_coupon",
                    self.mirror.update_coupon(
                        discount.stripe_coupon_id,
                        name=changes.get("name") or discount.name,
                        account_id=account_id,
                    ),
                    account_id=account_id,
                    discount_ref=discount.id,
                )
                if code_changed:
                    pointer_changes = await self._sync_promotion_code(
                        discount,
                        new_code,
                        account_id=account_id,
                        expires_at=as_utc(ends_at),
                    )

        values = {field: changes[field] for field in PATCHABLE_FIELDS if field in changes}
        values.update(pointer_changes)
        values["updated_at"] = datetime.now(UTC)
        try:
            updated = await self.repository.update(discount.id, values)
            if product_ids is not None:
                await self.repository.replace_associations(discount.id, product_ids)
                associated = product_ids
            else:
                associations = await self.repository.get_associations_for_discounts(
                    [discount.id]
                )
                associated = associations.get(discount.id, [])
        except SQLAlchemyError as exc:
            logger.error(
                "Failed to update discount %s (stripe coupon=%s, previous promotion code=%s, "
                "remote promotion code changes=%s not recorded locally): %s",
                discount.id,
                discount.stripe_coupon_id,
                discount.stripe_promotion_code_id,
                pointer_changes or "none",
                exc,
            )
            if new_code and isinstance(exc, IntegrityError) and _is_duplicate_code_violation(exc):
                raise DuplicateDiscountCodeError(new_code) from exc
            raise DiscountPersistenceError("Failed to update discount") from exc
        if updated is None:
            raise DiscountNotFoundError("Discount not found")

        logger.info("Updated discount %s (%s)", discount.id, ", ".join(sorted(values)))
        return to_record(updated, associated)

    async def remove(
        self,
        discount_id: uuid.UUID,
        organization_id: uuid.UUID,
        *,
        user_id: uuid.UUID,
    ) -> dict[str, str]:
        """Soft delete a discount after tearing down its Stripe mirror, best-effort."""
        discount = await self._load_authorized(discount_id, organization_id, user_id)

        if discount.stripe_coupon_id:
            account_id = await self._resolve_account(discount.organization_id)
            if account_id is None:
                logger.warning(
                    "No Stripe account for organization %s; coupon %s left in place",
                    discount.organization_id,
                    discount.stripe_coupon_id,
                )
            else:
                if discount.stripe_promotion_code_id:
                    await self._mirror(
                        "deactivate_promotion_code",
                        self.mirror.deactivate_promotion_code(
                            discount.stripe_promotion_code_id, account_id=account_id
                        ),
                        account_id=account_id,
                        discount_ref=discount.id,
                    )
                await self._mirror(
                    "delete_coupon",
                    self.mirror.delete_coupon(discount.stripe_coupon_id, account_id=account_id),
                    account_id=account_id,
                    discount_ref=discount.id,
                )

        try:
            await self.repository.soft_delete(discount.id)
        except SQLAlchemyError as exc:
            logger.error("Failed to delete discount %s: %s", discount.id, exc)
            raise DiscountPersistenceError("Failed to delete discount") from exc

        logger.info("Deleted discount %s", discount.id)
        return {"status": "deleted"}


def build_discount_sync_engine(
    db: AsyncSession,
    *,
    mirror: PaymentMirror | None = None,
) -> DiscountSyncEngine:
    """Wire the engine to SQL collaborators on ``db`` and the Stripe mirror."""
    return DiscountSyncEngine(
        repository=SqlDiscountRepository(db),
        accounts=SqlAccountResolver(db),
        mirror=mirror or StripePaymentMirror.from_settings(),
        membership=SqlMembershipChecker(db),
    )
