"""Tests for session scoping and engine wiring."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from billingos import database
from billingos.services.account_resolver import SqlMembershipChecker
from billingos.services.discount_repository import SqlDiscountRepository
from billingos.services.discount_scope import build_product_scope_resolver
from billingos.services.discount_sync import build_discount_sync_engine


def _factory_for(session):
    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=session)
    context.__aexit__ = AsyncMock(return_value=False)
    return MagicMock(return_value=context)


@pytest.mark.asyncio
async def test_get_session_commits_on_success():
    session = AsyncMock()
    with patch.object(database, "get_session_factory", return_value=_factory_for(session)):
        async with database.get_session() as active:
            assert active is session

    session.commit.assert_awaited_once()
    session.rollback.assert_not_awaited()


@pytest.mark.asyncio
async def test_get_session_rolls_back_on_error():
    session = AsyncMock()
    with patch.object(database, "get_session_factory", return_value=_factory_for(session)):
        with pytest.raises(RuntimeError):
            async with database.get_session():
                raise RuntimeError("boom")

    session.rollback.assert_awaited_once()
    session.commit.assert_not_awaited()


def test_build_discount_sync_engine_uses_sql_collaborators(mock_db, mirror):
    engine = build_discount_sync_engine(mock_db, mirror=mirror)

    assert isinstance(engine.repository, SqlDiscountRepository)
    assert engine.repository.db is mock_db
    assert engine.mirror is mirror


def test_build_product_scope_resolver_uses_sql_collaborators(mock_db):
    resolver = build_product_scope_resolver(mock_db)

    assert isinstance(resolver.repository, SqlDiscountRepository)
    assert resolver.repository.db is mock_db
    assert isinstance(resolver.membership, SqlMembershipChecker)
