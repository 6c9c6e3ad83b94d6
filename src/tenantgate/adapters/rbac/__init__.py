"""PostgreSQL repositories for RBAC."""

from tenantgate.adapters.rbac.roles_repository import PostgresRoleRepository

__all__ = ["PostgresRoleRepository"]
