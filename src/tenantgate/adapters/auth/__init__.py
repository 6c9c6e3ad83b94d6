"""PostgreSQL repositories for users, tenants and memberships."""

from tenantgate.adapters.auth.postgres import (
    PostgresMembershipRepository,
    PostgresTenantRepository,
    PostgresUserRepository,
)

__all__ = [
    "PostgresMembershipRepository",
    "PostgresTenantRepository",
    "PostgresUserRepository",
]
