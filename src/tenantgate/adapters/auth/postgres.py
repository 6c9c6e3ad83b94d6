"""PostgreSQL repositories for users, tenants and memberships."""

import logging
from typing import TYPE_CHECKING, Any
from uuid import UUID

import asyncpg

from tenantgate.core.auth.types import (
    Membership,
    Tenant,
    TenantMembership,
    TenantType,
    User,
)
from tenantgate.core.exceptions import AlreadyMemberError, ConflictError

if TYPE_CHECKING:
    from asyncpg import Connection

logger = logging.getLogger(__name__)

TENANT_COLUMNS = """
    id, name, description, tenant_type, parent_tenant_id, is_active, realm_name,
    custom_domain, sso_auto_join_domains, sso_auto_join_role_id, created_at
"""


def _row_to_user(row: Any) -> User:
    """Convert database row to User model."""
    return User(
        id=row["id"],
        email=row["email"],
        username=row["username"],
        first_name=row["first_name"],
        last_name=row["last_name"],
        display_name=row["display_name"],
        is_active=row["is_active"],
        created_at=row["created_at"],
    )


def _row_to_tenant(row: Any) -> Tenant:
    """Convert database row to Tenant model."""
    return Tenant(
        id=row["id"],
        name=row["name"],
        description=row["description"],
        tenant_type=TenantType(row["tenant_type"]),
        parent_tenant_id=row["parent_tenant_id"],
        is_active=row["is_active"],
        realm_name=row["realm_name"],
        custom_domain=row["custom_domain"],
        sso_auto_join_domains=list(row["sso_auto_join_domains"] or []),
        sso_auto_join_role_id=row["sso_auto_join_role_id"],
        created_at=row["created_at"],
    )


def _row_to_membership(row: Any) -> Membership:
    """Convert database row to Membership model."""
    return Membership(
        user_id=row["user_id"],
        tenant_id=row["tenant_id"],
        is_admin=row["is_admin"],
        joined_at=row["joined_at"],
        external_user_id=row["external_user_id"],
    )


class PostgresUserRepository:
    """Users and their provider identity links."""

    def __init__(self, conn: "Connection") -> None:
        """Initialize the repository."""
        self._conn = conn

    async def get_user(self, user_id: UUID) -> User | None:
        """Get user by ID."""
        row = await self._conn.fetchrow(
            """
            SELECT id, email, username, first_name, last_name, display_name,
                   is_active, created_at
            FROM users WHERE id = $1
            """,
            user_id,
        )
        return _row_to_user(row) if row else None

    async def find_user_id_by_identity(self, realm: str, external_id: str) -> UUID | None:
        """Resolve a provider account to a local user ID."""
        user_id: UUID | None = await self._conn.fetchval(
            "SELECT user_id FROM external_identities WHERE realm = $1 AND external_id = $2",
            realm,
            external_id,
        )
        return user_id

    async def upsert_user(self, user: User) -> User:
        """Insert the user unless the ID exists; return the stored row."""
        await self._conn.execute(
            """
            INSERT INTO users (id, email, username, first_name, last_name, display_name,
                               is_active, created_at)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
            ON CONFLICT (id) DO NOTHING
            """,
            user.id,
            user.email,
            user.username,
            user.first_name,
            user.last_name,
            user.display_name,
            user.is_active,
            user.created_at,
        )
        stored = await self.get_user(user.id)
        assert stored is not None, "user row must exist after upsert"
        return stored

    async def link_identity(self, user_id: UUID, realm: str, external_id: str) -> None:
        """Link a provider account to a user."""
        await self._conn.execute(
            """
            INSERT INTO external_identities (realm, external_id, user_id)
            VALUES ($1, $2, $3)
            ON CONFLICT (realm, external_id) DO NOTHING
            """,
            realm,
            external_id,
            user_id,
        )


class PostgresTenantRepository:
    """Tenants."""

    def __init__(self, conn: "Connection") -> None:
        """Initialize the repository."""
        self._conn = conn

    async def get_tenant(self, tenant_id: int) -> Tenant | None:
        """Get tenant by ID."""
        row = await self._conn.fetchrow(
            f"SELECT {TENANT_COLUMNS} FROM tenants WHERE id = $1",
            tenant_id,
        )
        return _row_to_tenant(row) if row else None

    async def get_enterprise_tenant_by_realm(self, realm: str) -> Tenant | None:
        """Get the enterprise tenant that owns a realm."""
        row = await self._conn.fetchrow(
            f"""
            SELECT {TENANT_COLUMNS} FROM tenants
            WHERE realm_name = $1 AND tenant_type = 'enterprise'
            """,
            realm,
        )
        return _row_to_tenant(row) if row else None

    async def get_tenant_by_custom_domain(self, domain: str) -> Tenant | None:
        """Get the tenant bound to a custom domain."""
        row = await self._conn.fetchrow(
            f"SELECT {TENANT_COLUMNS} FROM tenants WHERE lower(custom_domain) = lower($1)",
            domain,
        )
        return _row_to_tenant(row) if row else None

    async def lock_tenant(self, tenant_id: int) -> None:
        """Hold a row lock on the tenant until the transaction ends."""
        await self._conn.execute("SELECT id FROM tenants WHERE id = $1 FOR UPDATE", tenant_id)

    async def create_tenant(
        self,
        *,
        name: str,
        tenant_type: TenantType,
        realm_name: str | None,
        description: str | None = None,
        parent_tenant_id: int | None = None,
        custom_domain: str | None = None,
        sso_auto_join_domains: list[str] | None = None,
    ) -> Tenant:
        """Create a tenant."""
        try:
            row = await self._conn.fetchrow(
                f"""
                INSERT INTO tenants (name, description, tenant_type, parent_tenant_id,
                                     realm_name, custom_domain, sso_auto_join_domains)
                VALUES ($1, $2, $3, $4, $5, $6, $7)
                RETURNING {TENANT_COLUMNS}
                """,
                name,
                description,
                tenant_type.value,
                parent_tenant_id,
                realm_name,
                custom_domain,
                list(sso_auto_join_domains or []),
            )
        except asyncpg.UniqueViolationError as e:
            raise ConflictError(f"Tenant already exists: {e.constraint_name}") from e
        assert row is not None, "INSERT RETURNING should always return a row"
        logger.info(f"Created tenant {row['id']} ({tenant_type.value})")
        return _row_to_tenant(row)

    async def update_sso_settings(
        self, tenant_id: int, domains: list[str], role_id: int | None
    ) -> Tenant | None:
        """Replace a tenant's SSO auto-join settings."""
        row = await self._conn.fetchrow(
            f"""
            UPDATE tenants SET sso_auto_join_domains = $2, sso_auto_join_role_id = $3
            WHERE id = $1
            RETURNING {TENANT_COLUMNS}
            """,
            tenant_id,
            domains,
            role_id,
        )
        return _row_to_tenant(row) if row else None


class PostgresMembershipRepository:
    """Memberships, unique on (user_id, tenant_id)."""

    def __init__(self, conn: "Connection") -> None:
        """Initialize the repository."""
        self._conn = conn

    async def get_membership(self, user_id: UUID, tenant_id: int) -> Membership | None:
        """Get one membership."""
        row = await self._conn.fetchrow(
            """
            SELECT user_id, tenant_id, is_admin, joined_at, external_user_id
            FROM memberships WHERE user_id = $1 AND tenant_id = $2
            """,
            user_id,
            tenant_id,
        )
        return _row_to_membership(row) if row else None

    async def list_for_user(self, user_id: UUID) -> list[TenantMembership]:
        """All memberships of a user, with tenant names."""
        rows = await self._conn.fetch(
            """
            SELECT m.user_id, m.tenant_id, m.is_admin, m.joined_at, m.external_user_id,
                   t.name AS tenant_name
            FROM memberships m
            JOIN tenants t ON t.id = m.tenant_id
            WHERE m.user_id = $1
            ORDER BY m.tenant_id
            """,
            user_id,
        )
        return [
            TenantMembership(
                **_row_to_membership(row).model_dump(), tenant_name=row["tenant_name"]
            )
            for row in rows
        ]

    async def tenant_has_members(self, tenant_id: int) -> bool:
        """Whether any membership exists for the tenant."""
        result = await self._conn.fetchval(
            "SELECT EXISTS (SELECT 1 FROM memberships WHERE tenant_id = $1)",
            tenant_id,
        )
        return bool(result)

    async def add_membership(
        self,
        user_id: UUID,
        tenant_id: int,
        *,
        is_admin: bool,
        external_user_id: str | None,
    ) -> Membership:
        """Create a membership; the primary key rejects duplicates."""
        try:
            row = await self._conn.fetchrow(
                """
                INSERT INTO memberships (user_id, tenant_id, is_admin, external_user_id)
                VALUES ($1, $2, $3, $4)
                RETURNING user_id, tenant_id, is_admin, joined_at, external_user_id
                """,
                user_id,
                tenant_id,
                is_admin,
                external_user_id,
            )
        except asyncpg.UniqueViolationError:
            raise AlreadyMemberError("You are already a member of this tenant") from None
        assert row is not None, "INSERT RETURNING should always return a row"
        return _row_to_membership(row)
