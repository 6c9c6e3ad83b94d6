"""PostgreSQL unit of work."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, TypeVar

from tenantgate.adapters.auth.postgres import (
    PostgresMembershipRepository,
    PostgresTenantRepository,
    PostgresUserRepository,
)
from tenantgate.adapters.db.tenant_table import PostgresTable
from tenantgate.adapters.rbac.roles_repository import PostgresRoleRepository
from tenantgate.core.auth.types import TenantInvitation, TenantJoinLink
from tenantgate.core.tenancy import TenantEntity

if TYPE_CHECKING:
    from asyncpg import Connection

    from tenantgate.adapters.db.app_db import AppDatabase

E = TypeVar("E", bound=TenantEntity)

TABLES: dict[type[Any], str] = {
    TenantInvitation: "tenant_invitations",
    TenantJoinLink: "tenant_join_links",
}


class PostgresAuthStore:
    """AuthStore bound to one connection and its open transaction."""

    def __init__(self, conn: Connection) -> None:
        self._conn = conn
        self.users = PostgresUserRepository(conn)
        self.tenants = PostgresTenantRepository(conn)
        self.memberships = PostgresMembershipRepository(conn)
        self.roles = PostgresRoleRepository(conn)

    def table(self, model: type[E]) -> PostgresTable[E]:
        try:
            name = TABLES[model]
        except KeyError:
            raise ValueError(f"No table registered for {model.__name__}") from None
        return PostgresTable(self._conn, name, model)


class PostgresUnitOfWork:
    """Opens one database transaction per unit of work.

    Commit happens when the block exits normally; any exception rolls back
    and propagates.
    """

    def __init__(self, db: AppDatabase) -> None:
        self._db = db

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[PostgresAuthStore]:
        async with self._db.transaction() as conn:
            yield PostgresAuthStore(conn)
