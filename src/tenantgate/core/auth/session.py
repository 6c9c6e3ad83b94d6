"""Tenant selection after a multi-membership login."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any
from uuid import UUID

import structlog

from tenantgate.core.auth.types import AuthCallbackResult, TenantSelection
from tenantgate.core.exceptions import AuthorizationDenied, NotFoundError

if TYPE_CHECKING:
    from tenantgate.core.auth.jwt import TokenIssuer
    from tenantgate.core.interfaces import UnitOfWork

logger = structlog.get_logger()

TENANT_SELECTION_FLOW = "tenant_selection"


class TenantSessionService:
    """Issues a session token for the tenant a user picks."""

    def __init__(self, uow: UnitOfWork, token_issuer: TokenIssuer) -> None:
        self._uow = uow
        self._tokens = token_issuer

    async def select_tenant(
        self,
        user_id: UUID,
        tenant_id: int | None = None,
        claims: dict[str, Any] | None = None,
    ) -> AuthCallbackResult:
        """Scope a session to one tenant.

        Without ``tenant_id`` a single membership is selected automatically
        and several memberships are returned for the user to choose from.

        Raises:
            NotFoundError: The user has no memberships at all.
            AuthorizationDenied: The user is not a member of ``tenant_id``.
        """
        async with self._uow.transaction() as store:
            memberships = await store.memberships.list_for_user(user_id)

        if not memberships:
            raise NotFoundError("You do not belong to any tenant")

        if tenant_id is None:
            if len(memberships) > 1:
                return AuthCallbackResult(
                    success=True,
                    flow=TENANT_SELECTION_FLOW,
                    requires_tenant_selection=True,
                    available_tenants=[
                        TenantSelection(
                            tenant_id=m.tenant_id, tenant_name=m.tenant_name, is_admin=m.is_admin
                        )
                        for m in memberships
                    ],
                    message="Please select a tenant",
                )
            selected = memberships[0]
        else:
            matching = [m for m in memberships if m.tenant_id == tenant_id]
            if not matching:
                logger.warning(
                    "tenant_selection_denied", user_id=str(user_id), tenant_id=tenant_id
                )
                raise AuthorizationDenied("You are not a member of this tenant")
            selected = matching[0]

        token = self._tokens.issue(user_id, selected.tenant_id, claims)
        logger.info("tenant_selected", user_id=str(user_id), tenant_id=selected.tenant_id)
        return AuthCallbackResult(
            success=True,
            flow=TENANT_SELECTION_FLOW,
            token=token,
            tenant_id=selected.tenant_id,
            tenant_name=selected.tenant_name,
        )
