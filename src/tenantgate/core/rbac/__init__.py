"""Role based access control: role -> policy -> permission expansion."""

from tenantgate.core.rbac.cache import PermissionCache
from tenantgate.core.rbac.permission_service import PermissionResolver
from tenantgate.core.rbac.types import MEMBER_ROLE_NAME, Permission, Policy, Role

__all__ = [
    "MEMBER_ROLE_NAME",
    "Permission",
    "PermissionCache",
    "PermissionResolver",
    "Policy",
    "Role",
]
