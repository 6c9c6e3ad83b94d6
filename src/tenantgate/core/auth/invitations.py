"""Invitation lifecycle.

Invitations are single use. Creation, listing and administration are scoped
to one tenant through ``TenantScopedStore``; lookup by token or by email is
cross-tenant because the invitee does not know which tenant they belong to
until the invitation is resolved.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

import structlog
from pydantic import ValidationError as PydanticValidationError

from tenantgate.core.auth.tokens import generate_invitation_token, get_expiry
from tenantgate.core.auth.types import (
    DEFAULT_INVITATION_DAYS,
    InvitationRequest,
    InvitationStatus,
    NewIdentityUser,
    Tenant,
    TenantInvitation,
    utc_now,
)
from tenantgate.core.exceptions import (
    AlreadyMemberError,
    ConflictError,
    EmailMismatchError,
    IdentityBrokerError,
    InvitationInvalidOrExpiredError,
    NotFoundError,
    ValidationError,
)
from tenantgate.core.tenancy import CrossTenantLookup, TenantScopedStore

if TYPE_CHECKING:
    from tenantgate.core.interfaces import AuthStore, IdentityBroker

logger = structlog.get_logger()

LOCAL_ACCOUNT_ACTIONS = ["UPDATE_PASSWORD", "VERIFY_EMAIL"]


class InvitationLedger:
    """Creates, looks up and accepts tenant invitations."""

    def __init__(
        self,
        broker: IdentityBroker,
        *,
        client_id: str | None = None,
        redirect_uri: str | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the ledger.

        Args:
            broker: Identity provider used to provision local accounts.
            client_id: Client the notification email links back to.
            redirect_uri: Where the notification email link lands.
            clock: Source of the current time.
        """
        self._broker = broker
        self._client_id = client_id
        self._redirect_uri = redirect_uri
        self._clock = clock

    @staticmethod
    def _scoped(store: AuthStore) -> TenantScopedStore[TenantInvitation]:
        return TenantScopedStore(store.table(TenantInvitation))

    @staticmethod
    def _lookup(store: AuthStore) -> CrossTenantLookup[TenantInvitation]:
        return CrossTenantLookup(
            store.table(TenantInvitation),
            allowed_fields=frozenset({"invitation_token", "email"}),
        )

    # Creation

    async def create(
        self,
        store: AuthStore,
        tenant_id: int,
        created_by_user_id: UUID,
        request: InvitationRequest | dict[str, object],
    ) -> TenantInvitation:
        """Create a pending invitation.

        Raises:
            ValidationError: If the request is malformed.
            NotFoundError: If the creator or the tenant does not exist.
        """
        if not isinstance(request, InvitationRequest):
            try:
                request = InvitationRequest.model_validate(request)
            except PydanticValidationError as e:
                raise ValidationError(f"Invalid invitation: {e.errors()[0]['msg']}") from None

        creator = await store.users.get_user(created_by_user_id)
        if creator is None:
            raise NotFoundError(f"User {created_by_user_id} not found")
        tenant = await store.tenants.get_tenant(tenant_id)
        if tenant is None:
            raise NotFoundError(f"Tenant {tenant_id} not found")

        invitation = await self._scoped(store).create(
            tenant_id,
            {
                "email": str(request.email).lower(),
                "invitation_token": generate_invitation_token(),
                "expires_at": get_expiry(request.expiration_days, self._clock()),
                "status": InvitationStatus.PENDING,
                "is_admin": request.is_admin,
                "created_by_user_id": created_by_user_id,
            },
        )
        logger.info(
            "invitation_created",
            invitation_id=invitation.id,
            tenant_id=tenant_id,
            is_admin=invitation.is_admin,
            local_account=request.is_local_account,
        )

        if tenant.is_enterprise and request.is_local_account:
            external_id = await self._provision_local_account(tenant, invitation.email)
            await self._notify(tenant, external_id, invitation)
        return invitation

    async def _provision_local_account(self, tenant: Tenant, email: str) -> str:
        """Find or create the invitee's account in the tenant's realm.

        Raises:
            IdentityBrokerError: If the account cannot be created.
        """
        realm = tenant.realm_name or ""
        external_id = await self._broker.get_user_id_by_email(realm, email)
        if external_id:
            return external_id
        external_id = await self._broker.create_user(
            realm, NewIdentityUser(username=email, email=email)
        )
        if not external_id:
            raise IdentityBrokerError(f"Failed to create account for {email} in realm {realm}")
        logger.info("identity_account_created", realm=realm, external_id=external_id)
        return external_id

    async def _notify(self, tenant: Tenant, external_id: str, invitation: TenantInvitation) -> None:
        try:
            sent = await self._broker.send_notification_email(
                tenant.realm_name or "",
                external_id,
                list(LOCAL_ACCOUNT_ACTIONS),
                client_id=self._client_id,
                redirect_uri=self._redirect_uri,
            )
        except IdentityBrokerError as e:
            logger.warning(
                "invitation_notification_failed", invitation_id=invitation.id, error=str(e)
            )
            return
        if not sent:
            logger.warning("invitation_notification_failed", invitation_id=invitation.id)

    # Cross-tenant lookups

    async def get_by_token(self, store: AuthStore, token: str) -> TenantInvitation:
        """Find an invitation by token in any tenant.

        Raises:
            NotFoundError: If no invitation has this token.
        """
        invitation = await self._lookup(store).find_one("invitation_token", token)
        if invitation is None:
            raise NotFoundError("Invitation not found")
        return invitation

    async def list_for_email(self, store: AuthStore, email: str) -> Sequence[TenantInvitation]:
        """All invitations addressed to an email, across tenants."""
        return await self._lookup(store).find_all("email", email.lower())

    async def find_pending_for_email(
        self, store: AuthStore, email: str, tenant_id: int
    ) -> TenantInvitation | None:
        """The newest usable invitation for (email, tenant), if any."""
        now = self._clock()
        candidates = await self._lookup(store).find_all(
            "email",
            email.lower(),
            extra={"tenant_id": tenant_id, "status": InvitationStatus.PENDING},
        )
        usable = [inv for inv in candidates if not inv.is_expired(now)]
        return usable[-1] if usable else None

    # Acceptance

    async def accept(
        self,
        store: AuthStore,
        token: str,
        *,
        user_id: UUID,
        external_user_id: str | None,
        email: str | None,
    ) -> TenantInvitation:
        """Accept an invitation and create the membership it grants.

        Must run in the same transaction as the caller's user upsert so that
        membership creation and the status change commit together.

        Raises:
            NotFoundError: Unknown token.
            InvitationInvalidOrExpiredError: Already accepted or expired.
            EmailMismatchError: Invitation is for a different email.
            AlreadyMemberError: User already belongs to the tenant.
        """
        invitation = await self.get_by_token(store, token)
        now = self._clock()
        if not invitation.is_usable(now):
            raise InvitationInvalidOrExpiredError("Invalid or expired invitation")
        if not email or email.strip().casefold() != invitation.email.casefold():
            raise EmailMismatchError(
                "Email mismatch - this invitation is for a different email address"
            )
        if await store.memberships.get_membership(user_id, invitation.tenant_id):
            raise AlreadyMemberError("You are already a member of this tenant")

        await store.memberships.add_membership(
            user_id,
            invitation.tenant_id,
            is_admin=invitation.is_admin,
            external_user_id=external_user_id,
        )
        try:
            accepted = await self._scoped(store).update(
                invitation.tenant_id,
                invitation.id,
                {
                    "status": InvitationStatus.ACCEPTED,
                    "accepted_at": now,
                    "accepted_by_user_id": user_id,
                },
                expected={"status": InvitationStatus.PENDING},
            )
        except NotFoundError:
            # Another transaction accepted it first.
            raise InvitationInvalidOrExpiredError("Invalid or expired invitation") from None

        logger.info(
            "invitation_accepted",
            invitation_id=accepted.id,
            tenant_id=accepted.tenant_id,
            user_id=str(user_id),
            is_admin=accepted.is_admin,
        )
        return accepted

    # Tenant-scoped administration

    async def get(self, store: AuthStore, tenant_id: int, invitation_id: int) -> TenantInvitation:
        return await self._scoped(store).get(tenant_id, invitation_id)

    async def list(
        self, store: AuthStore, tenant_id: int, *, pending_only: bool = False
    ) -> Sequence[TenantInvitation]:
        """Invitations of one tenant, newest first.

        With ``pending_only`` expired invitations are left out as well.
        """
        filters = {"status": InvitationStatus.PENDING} if pending_only else None
        rows = await self._scoped(store).find(tenant_id, filters, descending=True)
        if pending_only:
            now = self._clock()
            rows = [row for row in rows if not row.is_expired(now)]
        return rows

    async def _get_pending(
        self, store: AuthStore, tenant_id: int, invitation_id: int, action: str
    ) -> TenantInvitation:
        invitation = await self.get(store, tenant_id, invitation_id)
        if invitation.status == InvitationStatus.ACCEPTED:
            raise ConflictError(f"Cannot {action} an invitation that has already been accepted")
        return invitation

    async def update(
        self,
        store: AuthStore,
        tenant_id: int,
        invitation_id: int,
        *,
        is_admin: bool | None = None,
        expiration_days: int | None = None,
    ) -> TenantInvitation:
        """Change the admin flag or push out the expiry of a pending invitation."""
        await self._get_pending(store, tenant_id, invitation_id, "update")
        changes: dict[str, object] = {}
        if is_admin is not None:
            changes["is_admin"] = is_admin
        if expiration_days is not None:
            if not 1 <= expiration_days <= 365:
                raise ValidationError("Expiration must be between 1 and 365 days")
            changes["expires_at"] = get_expiry(expiration_days, self._clock())
        if not changes:
            return await self.get(store, tenant_id, invitation_id)
        return await self._scoped(store).update(tenant_id, invitation_id, changes)

    async def resend(
        self,
        store: AuthStore,
        tenant_id: int,
        invitation_id: int,
        *,
        expiration_days: int = DEFAULT_INVITATION_DAYS,
    ) -> TenantInvitation:
        """Extend a pending invitation and repeat the account notification."""
        invitation = await self.update(
            store, tenant_id, invitation_id, expiration_days=expiration_days
        )
        tenant = await store.tenants.get_tenant(tenant_id)
        if tenant is not None and tenant.is_enterprise:
            external_id = await self._broker.get_user_id_by_email(
                tenant.realm_name or "", invitation.email
            )
            if external_id:
                await self._notify(tenant, external_id, invitation)
        logger.info("invitation_resent", invitation_id=invitation_id, tenant_id=tenant_id)
        return invitation

    async def delete(self, store: AuthStore, tenant_id: int, invitation_id: int) -> None:
        """Withdraw a pending invitation."""
        await self._get_pending(store, tenant_id, invitation_id, "delete")
        await self._scoped(store).delete(tenant_id, invitation_id)
        logger.info("invitation_deleted", invitation_id=invitation_id, tenant_id=tenant_id)
