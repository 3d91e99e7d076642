"""Shared fixtures: in-memory stand-ins for the engine's collaborators."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
from billingos.models import Discount
from billingos.services.discount_scope import ProductScopeResolver
from billingos.services.discount_sync import DiscountSyncEngine
from billingos.services.stripe_mirror import PaymentMirrorError
from sqlalchemy.exc import OperationalError


class FakeDiscountRepository:
    """Dict-backed DiscountRepository that counts calls."""

    def __init__(self):
        self.rows: dict[uuid.UUID, Discount] = {}
        self.associations: dict[uuid.UUID, list[uuid.UUID]] = {}
        self.calls: list[str] = []
        self.fail_on: set[str] = set()

    def _record(self, name: str) -> None:
        self.calls.append(name)
        if name in self.fail_on:
            raise OperationalError("statement", {}, Exception("database unavailable"))

    def call_count(self, name: str) -> int:
        return self.calls.count(name)

    def add_existing(self, **fields) -> Discount:
        values = {
            "organization_id": uuid.uuid4(),
            "name": "Existing",
            "type": "percentage",
            "basis_points": 1000,
            "duration": "once",
            "redemptions_count": 0,
        }
        values.update(fields)
        discount = Discount(**values)
        discount.id = values.get("id") or uuid.uuid4()
        discount.created_at = values.get("created_at") or datetime.now(UTC)
        self.rows[discount.id] = discount
        return discount

    async def insert(self, discount):
        self._record("insert")
        discount.id = uuid.uuid4()
        discount.created_at = datetime.now(UTC)
        self.rows[discount.id] = discount
        return discount

    async def get_by_id(self, discount_id):
        self._record("get_by_id")
        discount = self.rows.get(discount_id)
        if discount is None or discount.deleted_at is not None:
            return None
        return discount

    async def get_by_code(self, organization_id, code, *, exclude_id=None):
        self._record("get_by_code")
        for discount in self.rows.values():
            if (
                discount.organization_id == organization_id
                and discount.code == code
                and discount.deleted_at is None
                and discount.id != exclude_id
            ):
                return discount
        return None

    async def list_by_organization(self, organization_id, *, query=None, page=None, limit=None):
        self._record("list_by_organization")
        rows = [
            discount
            for discount in self.rows.values()
            if discount.organization_id == organization_id and discount.deleted_at is None
        ]
        if query:
            needle = query.lower()
            rows = [
                discount
                for discount in rows
                if needle in discount.name.lower() or needle in (discount.code or "").lower()
            ]
        rows.sort(key=lambda discount: discount.created_at, reverse=True)
        total = len(rows)
        if page is not None and limit is not None:
            rows = rows[(page - 1) * limit : page * limit]
        return rows, total

    async def update(self, discount_id, values):
        self._record("update")
        discount = self.rows.get(discount_id)
        if discount is None:
            return None
        for key, value in values.items():
            setattr(discount, key, value)
        return discount

    async def soft_delete(self, discount_id):
        self._record("soft_delete")
        self.rows[discount_id].deleted_at = datetime.now(UTC)

    async def insert_associations(self, discount_id, product_ids):
        self._record("insert_associations")
        if product_ids:
            self.associations.setdefault(discount_id, []).extend(product_ids)

    async def replace_associations(self, discount_id, product_ids):
        self._record("replace_associations")
        self.associations[discount_id] = list(product_ids)

    async def get_associations_for_discounts(self, discount_ids):
        self._record("get_associations_for_discounts")
        return {
            discount_id: list(self.associations[discount_id])
            for discount_id in discount_ids
            if self.associations.get(discount_id)
        }


class FakePaymentMirror:
    """Records every remote call; operations listed in ``fail_on`` raise."""

    def __init__(self):
        self.calls: list[tuple[str, dict]] = []
        self.fail_on: set[str] = set()
        self._counter = 0

    def _next_id(self, prefix: str) -> str:
        self._counter += 1
        return f"{prefix}_{self._counter}"

    def _record(self, operation: str, **kwargs) -> None:
        self.calls.append((operation, kwargs))
        if operation in self.fail_on:
            raise PaymentMirrorError(operation, "simulated failure", transient=True)

    def calls_for(self, operation: str) -> list[dict]:
        return [kwargs for name, kwargs in self.calls if name == operation]

    async def create_coupon(self, spec, *, account_id):
        self._record("create_coupon", spec=spec, account_id=account_id)
        return self._next_id("coupon")

    async def create_promotion_code(self, coupon_id, code, *, account_id, expires_at=None):
        self._record(
            "create_promotion_code",
            coupon_id=coupon_id,
            code=code,
            account_id=account_id,
            expires_at=expires_at,
        )
        return self._next_id("promo")

    async def update_coupon(self, coupon_id, *, name, account_id):
        self._record("update_coupon", coupon_id=coupon_id, name=name, account_id=account_id)

    async def deactivate_promotion_code(self, promotion_code_id, *, account_id):
        self._record(
            "deactivate_promotion_code",
            promotion_code_id=promotion_code_id,
            account_id=account_id,
        )

    async def delete_coupon(self, coupon_id, *, account_id):
        self._record("delete_coupon", coupon_id=coupon_id, account_id=account_id)


@pytest.fixture
def organization_id():
    return uuid.uuid4()


@pytest.fixture
def user_id():
    return uuid.uuid4()


@pytest.fixture
def repository():
    return FakeDiscountRepository()


@pytest.fixture
def mirror():
    return FakePaymentMirror()


@pytest.fixture
def accounts():
    resolver = MagicMock()
    resolver.resolve = AsyncMock(return_value="acct_test_123")
    return resolver


@pytest.fixture
def membership():
    checker = MagicMock()
    checker.is_member = AsyncMock(return_value=True)
    return checker


@pytest.fixture
def engine(repository, accounts, mirror, membership):
    return DiscountSyncEngine(
        repository=repository,
        accounts=accounts,
        mirror=mirror,
        membership=membership,
    )


@pytest.fixture
def scope_resolver(repository, membership):
    return ProductScopeResolver(repository=repository, membership=membership)


@pytest.fixture
def mock_db():
    """Creates a mock AsyncSession with common patterns pre-configured."""
    session = AsyncMock()
    # AsyncSession.add() is synchronous; use MagicMock to avoid un-awaited coroutine warnings.
    session.add = MagicMock()
    empty_result = MagicMock()
    empty_result.scalars.return_value.all.return_value = []
    empty_result.scalars.return_value.first.return_value = None
    empty_result.scalar.return_value = 0
    empty_result.all.return_value = []
    session.execute.return_value = empty_result
    session.get.return_value = None
    return session
