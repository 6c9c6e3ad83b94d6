"""Roles repository."""

import logging
from typing import TYPE_CHECKING
from uuid import UUID

import asyncpg

from tenantgate.core.rbac.types import Role

if TYPE_CHECKING:
    from asyncpg import Connection

logger = logging.getLogger(__name__)


class PostgresRoleRepository:
    """Roles, user roles and the role -> policy -> permission mappings."""

    def __init__(self, conn: "Connection") -> None:
        """Initialize the repository."""
        self._conn = conn

    async def get_role(self, tenant_id: int, role_id: int) -> Role | None:
        """Get a role of a tenant."""
        row = await self._conn.fetchrow(
            "SELECT id, tenant_id, name, description FROM roles WHERE id = $1 AND tenant_id = $2",
            role_id,
            tenant_id,
        )
        if not row:
            return None
        return Role(
            id=row["id"],
            tenant_id=row["tenant_id"],
            name=row["name"],
            description=row["description"],
        )

    async def get_role_id_by_name(self, tenant_id: int, name: str) -> int | None:
        """Find a role of a tenant by name."""
        role_id: int | None = await self._conn.fetchval(
            "SELECT id FROM roles WHERE tenant_id = $1 AND name = $2",
            tenant_id,
            name,
        )
        return role_id

    async def assign_role(self, user_id: UUID, tenant_id: int, role_id: int) -> bool:
        """Attach a role to a user.

        Runs in a savepoint so a failure leaves the surrounding transaction
        usable; the caller decides whether a missing role matters.
        """
        try:
            async with self._conn.transaction():
                result = await self._conn.execute(
                    """
                    INSERT INTO user_roles (user_id, tenant_id, role_id)
                    SELECT $1, $2, id FROM roles WHERE id = $3 AND tenant_id = $2
                    ON CONFLICT DO NOTHING
                    """,
                    user_id,
                    tenant_id,
                    role_id,
                )
        except asyncpg.PostgresError as e:
            logger.warning(f"Failed to assign role {role_id} in tenant {tenant_id}: {e}")
            return False
        if result.endswith(" 0"):
            exists = await self._conn.fetchval(
                "SELECT EXISTS (SELECT 1 FROM user_roles "
                "WHERE user_id = $1 AND tenant_id = $2 AND role_id = $3)",
                user_id,
                tenant_id,
                role_id,
            )
            return bool(exists)
        return True

    async def get_user_role_ids(self, user_id: UUID) -> list[int]:
        """Ids of every role attached to the user, across its tenants."""
        rows = await self._conn.fetch(
            "SELECT DISTINCT role_id FROM user_roles WHERE user_id = $1 ORDER BY role_id",
            user_id,
        )
        return [row["role_id"] for row in rows]

    async def get_permissions_for_role_ids(self, role_ids: list[int]) -> set[str]:
        """Distinct permission names reachable from the given roles."""
        rows = await self._conn.fetch(
            """
            SELECT DISTINCT p.name
            FROM role_policies rp
            JOIN policy_permissions pp ON pp.policy_id = rp.policy_id
            JOIN permissions p ON p.id = pp.permission_id
            WHERE rp.role_id = ANY($1::int[])
            """,
            role_ids,
        )
        return {row["name"] for row in rows}

    async def add_role_policy(self, role_id: int, policy_id: int) -> None:
        """Attach a policy to a role."""
        await self._conn.execute(
            "INSERT INTO role_policies (role_id, policy_id) VALUES ($1, $2) ON CONFLICT DO NOTHING",
            role_id,
            policy_id,
        )

    async def remove_role_policy(self, role_id: int, policy_id: int) -> bool:
        """Detach a policy from a role."""
        result = await self._conn.execute(
            "DELETE FROM role_policies WHERE role_id = $1 AND policy_id = $2",
            role_id,
            policy_id,
        )
        return result != "DELETE 0"

    async def add_policy_permission(self, policy_id: int, permission_id: int) -> None:
        """Add a permission to a policy."""
        await self._conn.execute(
            """
            INSERT INTO policy_permissions (policy_id, permission_id)
            VALUES ($1, $2) ON CONFLICT DO NOTHING
            """,
            policy_id,
            permission_id,
        )

    async def remove_policy_permission(self, policy_id: int, permission_id: int) -> bool:
        """Remove a permission from a policy."""
        result = await self._conn.execute(
            "DELETE FROM policy_permissions WHERE policy_id = $1 AND permission_id = $2",
            policy_id,
            permission_id,
        )
        return result != "DELETE 0"
