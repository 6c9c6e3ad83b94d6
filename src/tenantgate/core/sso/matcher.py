"""Decide whether an unknown SSO principal may enter an enterprise tenant.

Two paths admit a principal with no membership:

1. Their verified email domain is in the tenant's auto-join domain list.
2. A pending invitation exists for their email in that tenant.

Everything else is denied. Unknown-domain enterprise principals are never
provisioned automatically.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

import structlog

from tenantgate.core.exceptions import SsoAccessDenied
from tenantgate.core.rbac.types import MEMBER_ROLE_NAME

if TYPE_CHECKING:
    from tenantgate.core.auth.invitations import InvitationLedger
    from tenantgate.core.auth.types import Tenant
    from tenantgate.core.auth.users import Principal
    from tenantgate.core.interfaces import AuthStore

logger = structlog.get_logger()

NO_VERIFIED_EMAIL_MESSAGE = (
    "Your authentication provider did not share a verified email address. "
    "Enterprise access requires a verified email."
)
ACCESS_DENIED_MESSAGE = "Access denied. Please request an invitation from your administrator."


class SsoJoinPath(str, Enum):
    """How an SSO principal was admitted."""

    DOMAIN = "domain"
    INVITATION = "invitation"


@dataclass(frozen=True)
class SsoDecision:
    """Outcome of a successful match."""

    path: SsoJoinPath
    tenant_id: int
    role_id: int | None = None


def email_domain(email: str) -> str:
    """Lowercased domain part of an email address."""
    return email.rsplit("@", 1)[-1].strip().lower() if "@" in email else ""


class SsoAutoJoinMatcher:
    """Admits or denies enterprise principals without a membership."""

    def __init__(self, invitations: InvitationLedger) -> None:
        self._invitations = invitations

    async def authorize(
        self, store: AuthStore, principal: Principal, tenant: Tenant
    ) -> SsoDecision:
        """Admit the principal into the tenant or raise.

        Raises:
            SsoAccessDenied: No verified email, or neither a domain match nor
                a pending invitation.
        """
        email = principal.verified_email
        if not email:
            logger.warning(
                "sso_access_denied_no_email",
                tenant_id=tenant.id,
                external_id=principal.external_id,
            )
            raise SsoAccessDenied(NO_VERIFIED_EMAIL_MESSAGE)

        domain = email_domain(email)
        if tenant.allows_auto_join(domain):
            return await self._auto_join(store, principal, tenant, domain)

        invitation = await self._invitations.find_pending_for_email(store, email, tenant.id)
        if invitation is not None:
            await self._invitations.accept(
                store,
                invitation.invitation_token,
                user_id=principal.user_id,
                external_user_id=principal.external_id,
                email=email,
            )
            logger.info(
                "sso_invitation_auto_accepted",
                tenant_id=tenant.id,
                invitation_id=invitation.id,
                user_id=str(principal.user_id),
            )
            return SsoDecision(path=SsoJoinPath.INVITATION, tenant_id=tenant.id)

        logger.warning("sso_access_denied", tenant_id=tenant.id, domain=domain)
        raise SsoAccessDenied(ACCESS_DENIED_MESSAGE)

    async def _auto_join(
        self, store: AuthStore, principal: Principal, tenant: Tenant, domain: str
    ) -> SsoDecision:
        await store.memberships.add_membership(
            principal.user_id,
            tenant.id,
            is_admin=False,
            external_user_id=principal.external_id,
        )
        role_id = tenant.sso_auto_join_role_id
        if role_id is None:
            role_id = await store.roles.get_role_id_by_name(tenant.id, MEMBER_ROLE_NAME)

        if role_id is None:
            logger.warning("sso_auto_join_without_role", tenant_id=tenant.id)
        elif not await store.roles.assign_role(principal.user_id, tenant.id, role_id):
            logger.warning("sso_auto_join_role_not_assigned", tenant_id=tenant.id, role_id=role_id)

        logger.info(
            "sso_auto_joined",
            tenant_id=tenant.id,
            domain=domain,
            user_id=str(principal.user_id),
            role_id=role_id,
        )
        return SsoDecision(path=SsoJoinPath.DOMAIN, tenant_id=tenant.id, role_id=role_id)
