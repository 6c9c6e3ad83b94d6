"""Unit tests for the PostgreSQL unit of work."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock

import pytest

from tenantgate.adapters.db.tenant_table import PostgresTable
from tenantgate.adapters.db.unit_of_work import PostgresAuthStore, PostgresUnitOfWork
from tenantgate.core.auth.types import TenantInvitation, TenantJoinLink
from tenantgate.core.tenancy import TenantEntity


class Unregistered(TenantEntity):
    """Tenant entity without a table."""


class TestPostgresAuthStore:
    """Tests for PostgresAuthStore."""

    def test_tables(self) -> None:
        """Should map each tenant entity to its table."""
        store = PostgresAuthStore(AsyncMock())

        assert isinstance(store.table(TenantInvitation), PostgresTable)
        assert store.table(TenantJoinLink).model is TenantJoinLink

    def test_unregistered_model(self) -> None:
        """Should refuse models without a table."""
        with pytest.raises(ValueError, match="No table registered"):
            PostgresAuthStore(AsyncMock()).table(Unregistered)


class TestPostgresUnitOfWork:
    """Tests for PostgresUnitOfWork."""

    @pytest.mark.asyncio
    async def test_binds_store_to_transaction_connection(self) -> None:
        """Should hand out a store over the connection of the open transaction."""
        conn = AsyncMock()
        conn.fetchval.return_value = True
        entered: list[str] = []

        @asynccontextmanager
        async def transaction() -> AsyncIterator[AsyncMock]:
            entered.append("begin")
            yield conn
            entered.append("commit")

        db = MagicMock()
        db.transaction = transaction

        async with PostgresUnitOfWork(db).transaction() as store:
            assert await store.memberships.tenant_has_members(1)

        assert entered == ["begin", "commit"]
        conn.fetchval.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_exception_propagates(self) -> None:
        """Should let the database transaction see the exception."""
        seen: list[BaseException] = []

        @asynccontextmanager
        async def transaction() -> AsyncIterator[AsyncMock]:
            try:
                yield AsyncMock()
            except Exception as e:
                seen.append(e)
                raise

        db = MagicMock()
        db.transaction = transaction

        with pytest.raises(RuntimeError):
            async with PostgresUnitOfWork(db).transaction():
                raise RuntimeError("boom")

        assert len(seen) == 1
