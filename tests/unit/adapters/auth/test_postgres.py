"""Unit tests for the PostgreSQL auth repositories."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any
from unittest.mock import AsyncMock
from uuid import uuid4

import asyncpg
import pytest

from tenantgate.adapters.auth.postgres import (
    PostgresMembershipRepository,
    PostgresTenantRepository,
    PostgresUserRepository,
)
from tenantgate.core.auth.types import TenantType, User
from tenantgate.core.exceptions import AlreadyMemberError, ConflictError

NOW = datetime(2024, 5, 1, tzinfo=UTC)


def tenant_row(**overrides: Any) -> dict[str, Any]:
    """Row as returned for TENANT_COLUMNS."""
    row: dict[str, Any] = {
        "id": 1,
        "name": "Acme",
        "description": None,
        "tenant_type": "enterprise",
        "parent_tenant_id": None,
        "is_active": True,
        "realm_name": "tenant_acme_0a1b",
        "custom_domain": None,
        "sso_auto_join_domains": None,
        "sso_auto_join_role_id": None,
        "created_at": NOW,
    }
    row.update(overrides)
    return row


def membership_row(user_id: Any, tenant_id: int, **overrides: Any) -> dict[str, Any]:
    """Row as returned for a membership."""
    row: dict[str, Any] = {
        "user_id": user_id,
        "tenant_id": tenant_id,
        "is_admin": False,
        "joined_at": NOW,
        "external_user_id": None,
    }
    row.update(overrides)
    return row


@pytest.fixture
def mock_conn() -> AsyncMock:
    """Return a mock asyncpg connection."""
    return AsyncMock()


class TestPostgresUserRepository:
    """Tests for PostgresUserRepository."""

    @pytest.mark.asyncio
    async def test_upsert_returns_stored_row(self, mock_conn: AsyncMock) -> None:
        """Should insert with ON CONFLICT DO NOTHING and return the stored row."""
        user = User(id=uuid4(), email="bob@example.com", username="bob")
        mock_conn.fetchrow.return_value = {
            "id": user.id,
            "email": "bob@example.com",
            "username": "bob",
            "first_name": "Bob",
            "last_name": None,
            "display_name": "Bob",
            "is_active": True,
            "created_at": NOW,
        }

        stored = await PostgresUserRepository(mock_conn).upsert_user(user)

        query = mock_conn.execute.call_args.args[0]
        assert "ON CONFLICT (id) DO NOTHING" in query
        assert stored.id == user.id
        assert stored.first_name == "Bob"

    @pytest.mark.asyncio
    async def test_find_user_id_by_identity(self, mock_conn: AsyncMock) -> None:
        """Should look the user up through the identity link table."""
        user_id = uuid4()
        mock_conn.fetchval.return_value = user_id

        found = await PostgresUserRepository(mock_conn).find_user_id_by_identity("groundup", "kc-1")

        assert found == user_id
        query, realm, external_id = mock_conn.fetchval.call_args.args
        assert "external_identities" in query
        assert (realm, external_id) == ("groundup", "kc-1")

    @pytest.mark.asyncio
    async def test_get_missing_user(self, mock_conn: AsyncMock) -> None:
        """Should return None when no row exists."""
        mock_conn.fetchrow.return_value = None

        assert await PostgresUserRepository(mock_conn).get_user(uuid4()) is None


class TestPostgresTenantRepository:
    """Tests for PostgresTenantRepository."""

    @pytest.mark.asyncio
    async def test_create_tenant(self, mock_conn: AsyncMock) -> None:
        """Should pass the enum value and map the returned row."""
        mock_conn.fetchrow.return_value = tenant_row(sso_auto_join_domains=["acme.com"])

        tenant = await PostgresTenantRepository(mock_conn).create_tenant(
            name="Acme",
            tenant_type=TenantType.ENTERPRISE,
            realm_name="tenant_acme_0a1b",
            sso_auto_join_domains=["acme.com"],
        )

        args = mock_conn.fetchrow.call_args.args
        assert args[3] == "enterprise"
        assert args[7] == ["acme.com"]
        assert tenant.is_enterprise
        assert tenant.sso_auto_join_domains == ["acme.com"]

    @pytest.mark.asyncio
    async def test_create_tenant_conflict(self, mock_conn: AsyncMock) -> None:
        """Should turn a unique violation into ConflictError."""
        mock_conn.fetchrow.side_effect = asyncpg.UniqueViolationError("duplicate key")

        with pytest.raises(ConflictError):
            await PostgresTenantRepository(mock_conn).create_tenant(
                name="Acme", tenant_type=TenantType.ENTERPRISE, realm_name="tenant_acme_0a1b"
            )

    @pytest.mark.asyncio
    async def test_enterprise_lookup_filters_type(self, mock_conn: AsyncMock) -> None:
        """Should only match enterprise tenants for a realm."""
        mock_conn.fetchrow.return_value = None

        result = await PostgresTenantRepository(mock_conn).get_enterprise_tenant_by_realm(
            "groundup"
        )

        assert result is None
        assert "tenant_type = 'enterprise'" in mock_conn.fetchrow.call_args.args[0]

    @pytest.mark.asyncio
    async def test_null_domains_become_empty_list(self, mock_conn: AsyncMock) -> None:
        """Should map a NULL domain array to an empty list."""
        mock_conn.fetchrow.return_value = tenant_row(tenant_type="standard")

        tenant = await PostgresTenantRepository(mock_conn).get_tenant(1)

        assert tenant is not None
        assert tenant.tenant_type == TenantType.STANDARD
        assert tenant.sso_auto_join_domains == []

    @pytest.mark.asyncio
    async def test_lock_tenant(self, mock_conn: AsyncMock) -> None:
        """Should take a row lock."""
        await PostgresTenantRepository(mock_conn).lock_tenant(7)

        query, tenant_id = mock_conn.execute.call_args.args
        assert query.endswith("FOR UPDATE")
        assert tenant_id == 7


class TestPostgresMembershipRepository:
    """Tests for PostgresMembershipRepository."""

    @pytest.mark.asyncio
    async def test_add_membership(self, mock_conn: AsyncMock) -> None:
        """Should insert and map the returned row."""
        user_id = uuid4()
        mock_conn.fetchrow.return_value = membership_row(user_id, 3, is_admin=True)

        membership = await PostgresMembershipRepository(mock_conn).add_membership(
            user_id, 3, is_admin=True, external_user_id="kc-1"
        )

        assert membership.is_admin
        assert mock_conn.fetchrow.call_args.args[1:] == (user_id, 3, True, "kc-1")

    @pytest.mark.asyncio
    async def test_duplicate_membership(self, mock_conn: AsyncMock) -> None:
        """Should raise AlreadyMemberError on the primary key violation."""
        mock_conn.fetchrow.side_effect = asyncpg.UniqueViolationError("duplicate key")

        with pytest.raises(AlreadyMemberError):
            await PostgresMembershipRepository(mock_conn).add_membership(
                uuid4(), 3, is_admin=True, external_user_id=None
            )

    @pytest.mark.asyncio
    async def test_list_for_user(self, mock_conn: AsyncMock) -> None:
        """Should attach tenant names."""
        user_id = uuid4()
        mock_conn.fetch.return_value = [
            {**membership_row(user_id, 1), "tenant_name": "Acme"},
            {**membership_row(user_id, 2, is_admin=True), "tenant_name": "Initech"},
        ]

        memberships = await PostgresMembershipRepository(mock_conn).list_for_user(user_id)

        assert [(m.tenant_name, m.is_admin) for m in memberships] == [
            ("Acme", False),
            ("Initech", True),
        ]

    @pytest.mark.asyncio
    async def test_tenant_has_members(self, mock_conn: AsyncMock) -> None:
        """Should coerce the EXISTS result."""
        mock_conn.fetchval.return_value = None

        assert await PostgresMembershipRepository(mock_conn).tenant_has_members(1) is False
