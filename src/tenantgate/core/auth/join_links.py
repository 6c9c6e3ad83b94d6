"""Join link lifecycle.

A join link is a tenant-wide, multi-use token. Using it never consumes it;
it stays valid for every new user until it is revoked or expires.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

import structlog

from tenantgate.core.auth.tokens import generate_invitation_token, get_expiry
from tenantgate.core.auth.types import (
    DEFAULT_JOIN_LINK_DAYS,
    Membership,
    TenantJoinLink,
    utc_now,
)
from tenantgate.core.exceptions import (
    AlreadyMemberError,
    ExpiredOrRevokedError,
    NotFoundError,
    ValidationError,
)
from tenantgate.core.tenancy import CrossTenantLookup, TenantScopedStore

if TYPE_CHECKING:
    from tenantgate.core.interfaces import AuthStore

logger = structlog.get_logger()


class JoinLinkLedger:
    """Creates, revokes and resolves tenant join links."""

    def __init__(self, *, clock: Callable[[], datetime] = utc_now) -> None:
        self._clock = clock

    @staticmethod
    def _scoped(store: AuthStore) -> TenantScopedStore[TenantJoinLink]:
        return TenantScopedStore(store.table(TenantJoinLink))

    async def create(
        self,
        store: AuthStore,
        tenant_id: int,
        *,
        expiration_days: int = DEFAULT_JOIN_LINK_DAYS,
        default_role_id: int | None = None,
    ) -> TenantJoinLink:
        """Create a join link for a tenant.

        Raises:
            ValidationError: If the expiry is out of range.
            NotFoundError: If the tenant or the default role does not exist.
        """
        if not 1 <= expiration_days <= 365:
            raise ValidationError("Expiration must be between 1 and 365 days")
        if await store.tenants.get_tenant(tenant_id) is None:
            raise NotFoundError(f"Tenant {tenant_id} not found")
        if default_role_id is not None:
            if await store.roles.get_role(tenant_id, default_role_id) is None:
                raise NotFoundError(f"Role {default_role_id} not found")

        link = await self._scoped(store).create(
            tenant_id,
            {
                "join_token": generate_invitation_token(),
                "expires_at": get_expiry(expiration_days, self._clock()),
                "is_revoked": False,
                "default_role_id": default_role_id,
            },
        )
        logger.info("join_link_created", join_link_id=link.id, tenant_id=tenant_id)
        return link

    async def get(self, store: AuthStore, tenant_id: int, link_id: int) -> TenantJoinLink:
        return await self._scoped(store).get(tenant_id, link_id)

    async def list(
        self, store: AuthStore, tenant_id: int, *, include_revoked: bool = False
    ) -> Sequence[TenantJoinLink]:
        """Join links of a tenant, newest first."""
        filters = None if include_revoked else {"is_revoked": False}
        return await self._scoped(store).find(tenant_id, filters, descending=True)

    async def revoke(self, store: AuthStore, tenant_id: int, link_id: int) -> TenantJoinLink:
        """Revoke a join link. Revoking twice is harmless."""
        link = await self._scoped(store).update(tenant_id, link_id, {"is_revoked": True})
        logger.info("join_link_revoked", join_link_id=link_id, tenant_id=tenant_id)
        return link

    async def resolve(self, store: AuthStore, token: str) -> TenantJoinLink:
        """Find a usable join link by token, in any tenant.

        Raises:
            NotFoundError: Unknown token.
            ExpiredOrRevokedError: Known token that is revoked or expired.
        """
        lookup = CrossTenantLookup(
            store.table(TenantJoinLink), allowed_fields=frozenset({"join_token"})
        )
        link = await lookup.find_one("join_token", token)
        if link is None:
            raise NotFoundError("Join link not found")
        if not link.is_usable(self._clock()):
            raise ExpiredOrRevokedError("Join link is invalid, revoked, or expired")
        return link

    async def join(
        self,
        store: AuthStore,
        token: str,
        *,
        user_id: UUID,
        external_user_id: str | None,
    ) -> tuple[TenantJoinLink, Membership]:
        """Use a join link: add the user to the link's tenant as a non-admin.

        Raises:
            NotFoundError, ExpiredOrRevokedError: See ``resolve``.
            AlreadyMemberError: User already belongs to the tenant.
        """
        link = await self.resolve(store, token)
        if await store.memberships.get_membership(user_id, link.tenant_id):
            raise AlreadyMemberError("You are already a member of this tenant")
        membership = await store.memberships.add_membership(
            user_id, link.tenant_id, is_admin=False, external_user_id=external_user_id
        )
        if link.default_role_id is not None:
            assigned = await store.roles.assign_role(user_id, link.tenant_id, link.default_role_id)
            if not assigned:
                logger.warning(
                    "join_link_role_not_assigned",
                    join_link_id=link.id,
                    role_id=link.default_role_id,
                )
        logger.info(
            "join_link_used", join_link_id=link.id, tenant_id=link.tenant_id, user_id=str(user_id)
        )
        return link, membership
