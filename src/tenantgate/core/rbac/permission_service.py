"""Permission evaluation.

A user's effective permissions are the union of every permission reachable
through role -> policy -> permission from the roles attached to the user.
Expansions are cached per user. Any change to a role-policy or
policy-permission mapping clears the whole cache, so readers may see stale
permissions only until the next mapping change or TTL expiry.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING
from uuid import UUID

import structlog

from tenantgate.core.rbac.cache import PermissionCache

if TYPE_CHECKING:
    from tenantgate.config import Settings
    from tenantgate.core.interfaces import UnitOfWork

logger = structlog.get_logger()


class PermissionResolver:
    """Expands roles into permissions and answers permission checks."""

    def __init__(self, uow: UnitOfWork, cache: PermissionCache | None = None) -> None:
        """Initialize the resolver.

        Args:
            uow: Source of role and mapping data.
            cache: Permission cache; a 15 minute TTL cache by default.
        """
        self._uow = uow
        self._cache = cache if cache is not None else PermissionCache()

    @classmethod
    def from_settings(cls, uow: UnitOfWork, settings: Settings) -> PermissionResolver:
        return cls(uow, PermissionCache(ttl_seconds=settings.permission_cache_ttl_seconds))

    async def get_user_permissions(self, user_id: UUID) -> frozenset[str]:
        """Effective permission names of a user."""
        cached = self._cache.get(user_id)
        if cached is not None:
            return cached

        async with self._uow.transaction() as store:
            role_ids = await store.roles.get_user_role_ids(user_id)
            permissions = (
                frozenset(await store.roles.get_permissions_for_role_ids(role_ids))
                if role_ids
                else frozenset()
            )

        self._cache.set(user_id, permissions)
        logger.debug(
            "user_permissions_loaded",
            user_id=str(user_id),
            role_ids=role_ids,
            permission_count=len(permissions),
        )
        return permissions

    async def has_permission(
        self,
        user_id: UUID,
        permission: str,
        role_claims: Iterable[str] = (),
    ) -> bool:
        """True if the permission is a direct role claim or in the expansion."""
        if permission in set(role_claims):
            return True
        return permission in await self.get_user_permissions(user_id)

    async def has_any_permission(
        self,
        user_id: UUID,
        permissions: Iterable[str],
        role_claims: Iterable[str] = (),
    ) -> bool:
        """True if at least one of the permissions is held.

        Lookup failures deny access and are logged.
        """
        wanted = set(permissions)
        if not wanted:
            return False
        if wanted & set(role_claims):
            return True
        try:
            effective = await self.get_user_permissions(user_id)
        except Exception:
            logger.exception("permission_check_failed", user_id=str(user_id))
            return False
        return bool(wanted & effective)

    # Mapping changes

    def clear_cache(self) -> None:
        removed = self._cache.clear()
        logger.info("permission_cache_cleared", entries=removed)

    async def attach_policy(self, role_id: int, policy_id: int) -> None:
        """Attach a policy to a role."""
        async with self._uow.transaction() as store:
            await store.roles.add_role_policy(role_id, policy_id)
        self.clear_cache()

    async def detach_policy(self, role_id: int, policy_id: int) -> bool:
        """Detach a policy from a role."""
        async with self._uow.transaction() as store:
            removed = await store.roles.remove_role_policy(role_id, policy_id)
        self.clear_cache()
        return removed

    async def grant_permission(self, policy_id: int, permission_id: int) -> None:
        """Add a permission to a policy."""
        async with self._uow.transaction() as store:
            await store.roles.add_policy_permission(policy_id, permission_id)
        self.clear_cache()

    async def revoke_permission(self, policy_id: int, permission_id: int) -> bool:
        """Remove a permission from a policy."""
        async with self._uow.transaction() as store:
            removed = await store.roles.remove_policy_permission(policy_id, permission_id)
        self.clear_cache()
        return removed
