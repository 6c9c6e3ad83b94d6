"""Post-authentication callback state machine.

After the identity provider redirects back with an authorization code, the
orchestrator:

1. Decodes the opaque state (flow, realm, tokens); a bad state falls back to
   the default realm and flow instead of failing the login.
2. Exchanges the code with the identity broker and reads the subject claim.
3. Resolves the provider account to an existing local user, or a fresh
   candidate id.
4. Runs exactly one flow handler inside one transaction. The handler
   upserts the local user and performs its membership mutation; any
   exception rolls all of it back.
5. Mints a session token after the transaction has committed.

Domain errors become structured failure results. Unexpected errors are
logged and reported with a generic message.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, assert_never
from uuid import uuid4

import structlog

from tenantgate.config import DEFAULT_REALM
from tenantgate.core.auth.jwt import read_unverified_claims
from tenantgate.core.auth.state import (
    UNAUTHORIZED_SSO_ACCESS,
    UNKNOWN_FLOW,
    AuthFlow,
    CallbackState,
    decode_state,
)
from tenantgate.core.auth.types import (
    AuthCallbackResult,
    IdentityProfile,
    Tenant,
    TenantSelection,
    TenantType,
)
from tenantgate.core.auth.users import Principal, ensure_local_user
from tenantgate.core.exceptions import (
    AlreadyHasAdministratorError,
    AlreadyMemberError,
    AuthenticationError,
    AuthorizationDenied,
    ConfigurationError,
    IdentityBrokerError,
    NotFoundError,
    SsoAccessDenied,
    TenantGateError,
    ValidationError,
)

if TYPE_CHECKING:
    from tenantgate.core.auth.invitations import InvitationLedger
    from tenantgate.core.auth.join_links import JoinLinkLedger
    from tenantgate.core.auth.jwt import TokenIssuer
    from tenantgate.core.interfaces import AuthStore, IdentityBroker, UnitOfWork
    from tenantgate.core.sso.matcher import SsoAutoJoinMatcher

logger = structlog.get_logger()

FALLBACK_ORGANIZATION_NAME = "My Organization"
ALREADY_HAS_ADMINISTRATOR_MESSAGE = (
    "This enterprise tenant already has an administrator. "
    "Please contact them for an invitation."
)

INTERNAL_ERROR_MESSAGES: dict[AuthFlow, str] = {
    AuthFlow.INVITATION: "An unexpected error occurred while accepting the invitation",
    AuthFlow.JOIN_LINK: "An unexpected error occurred while joining the organization",
    AuthFlow.ENTERPRISE_FIRST_ADMIN: "An unexpected error occurred during enterprise setup",
    AuthFlow.NEW_ORG: "An unexpected error occurred while creating the organization",
    AuthFlow.DEFAULT: "An unexpected error occurred during sign in",
}


def organization_name(first_name: str | None) -> str:
    """Default name for a user's first organization."""
    if first_name and first_name.strip():
        return f"{first_name.strip()}'s Organization"
    return FALLBACK_ORGANIZATION_NAME


@dataclass
class FlowOutcome:
    """What a flow handler decided, before any token is minted."""

    tenant_id: int | None = None
    tenant_name: str | None = None
    is_new_organization: bool = False
    available_tenants: list[TenantSelection] | None = None
    message: str | None = None


def failure_result(flow: str, error: TenantGateError) -> AuthCallbackResult:
    """Result for a domain error."""
    return AuthCallbackResult(
        success=False,
        flow=flow,
        error_message=error.message,
        error_code=error.code,
    )


class AuthFlowOrchestrator:
    """Resolves an identity provider callback into a tenant-scoped session."""

    def __init__(
        self,
        uow: UnitOfWork,
        broker: IdentityBroker,
        token_issuer: TokenIssuer,
        invitations: InvitationLedger,
        join_links: JoinLinkLedger,
        sso_matcher: SsoAutoJoinMatcher,
        *,
        default_realm: str = DEFAULT_REALM,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            uow: Opens the one transaction each callback runs in.
            broker: Identity provider.
            token_issuer: Mints session tokens.
            invitations: Invitation ledger.
            join_links: Join link ledger.
            sso_matcher: Decides enterprise SSO admission.
            default_realm: Realm used when the state does not name one.
        """
        self._uow = uow
        self._broker = broker
        self._tokens = token_issuer
        self._invitations = invitations
        self._join_links = join_links
        self._sso = sso_matcher
        self._default_realm = default_realm

    async def handle_callback(
        self, code: str, state: str | None, redirect_uri: str
    ) -> AuthCallbackResult:
        """Handle the identity provider redirect.

        Args:
            code: Authorization code.
            state: Opaque state produced by the URL builder.
            redirect_uri: Redirect URI used for the authorization request.

        Returns:
            Token result, tenant selection request, or structured failure.

        Raises:
            ConfigurationError: If the deployment is misconfigured.
        """
        decoded = decode_state(state)
        callback_state = decoded or CallbackState()
        realm = callback_state.realm or self._default_realm
        flow = callback_state.flow
        log = logger.bind(flow=flow.value, realm=realm)

        try:
            profile, claims = await self._authenticate(code, redirect_uri, realm)
        except ConfigurationError:
            raise
        except AuthenticationError as e:
            log.warning("auth_callback_authentication_failed", error=e.message)
            return failure_result(flow.value if decoded else UNKNOWN_FLOW, e)
        except Exception:
            log.exception("auth_callback_broker_failed")
            return AuthCallbackResult(
                success=False,
                flow=flow.value if decoded else UNKNOWN_FLOW,
                error_message=INTERNAL_ERROR_MESSAGES[flow],
                error_code="internal_error",
            )

        log = log.bind(external_id=profile.id)
        try:
            async with self._uow.transaction() as store:
                principal = await self._resolve_principal(store, realm, profile)
                log = log.bind(user_id=str(principal.user_id))
                outcome = await self._dispatch(store, flow, callback_state, principal)
        except ConfigurationError:
            raise
        except SsoAccessDenied as e:
            log.warning("auth_callback_sso_denied", error=e.message)
            return failure_result(UNAUTHORIZED_SSO_ACCESS, e)
        except TenantGateError as e:
            log.warning("auth_callback_rejected", error=e.message, error_code=e.code)
            return failure_result(flow.value, e)
        except Exception:
            log.exception("auth_callback_failed")
            return AuthCallbackResult(
                success=False,
                flow=flow.value,
                error_message=INTERNAL_ERROR_MESSAGES[flow],
                error_code="internal_error",
            )

        return self._success(flow, principal, outcome, claims, log)

    async def _authenticate(
        self, code: str, redirect_uri: str, realm: str
    ) -> tuple[IdentityProfile, dict[str, Any]]:
        tokens = await self._broker.exchange_code_for_tokens(code, redirect_uri, realm)
        if tokens is None:
            raise AuthenticationError("Failed to exchange authorization code for tokens")
        claims = read_unverified_claims(tokens.access_token)
        subject = claims.get("sub")
        if not subject:
            raise AuthenticationError("Failed to extract user ID from token")
        profile = await self._broker.get_user_by_id(str(subject), realm)
        if profile is None:
            raise AuthenticationError("User not found in authentication system")
        return profile, claims

    async def _resolve_principal(
        self, store: AuthStore, realm: str, profile: IdentityProfile
    ) -> Principal:
        user_id = await store.users.find_user_id_by_identity(realm, profile.id)
        if user_id is not None:
            return Principal(user_id=user_id, realm=realm, profile=profile, is_known=True)
        return Principal(user_id=uuid4(), realm=realm, profile=profile)

    def _success(
        self,
        flow: AuthFlow,
        principal: Principal,
        outcome: FlowOutcome,
        claims: dict[str, Any],
        log: Any,
    ) -> AuthCallbackResult:
        if outcome.available_tenants is not None:
            log.info(
                "auth_callback_requires_tenant_selection",
                count=len(outcome.available_tenants),
            )
            return AuthCallbackResult(
                success=True,
                flow=flow.value,
                requires_tenant_selection=True,
                available_tenants=outcome.available_tenants,
                message=outcome.message,
            )
        if outcome.tenant_id is None:
            raise RuntimeError("Flow handler produced neither a tenant nor a selection")

        token = self._tokens.issue(principal.user_id, outcome.tenant_id, claims)
        log.info(
            "auth_callback_succeeded",
            tenant_id=outcome.tenant_id,
            is_new_organization=outcome.is_new_organization,
        )
        return AuthCallbackResult(
            success=True,
            flow=flow.value,
            token=token,
            tenant_id=outcome.tenant_id,
            tenant_name=outcome.tenant_name,
            is_new_organization=outcome.is_new_organization,
            message=outcome.message,
        )

    async def _dispatch(
        self,
        store: AuthStore,
        flow: AuthFlow,
        state: CallbackState,
        principal: Principal,
    ) -> FlowOutcome:
        if flow is AuthFlow.INVITATION:
            return await self._invitation_flow(store, state, principal)
        if flow is AuthFlow.JOIN_LINK:
            return await self._join_link_flow(store, state, principal)
        if flow is AuthFlow.ENTERPRISE_FIRST_ADMIN:
            return await self._enterprise_first_admin_flow(store, principal)
        if flow is AuthFlow.NEW_ORG:
            return await self._new_org_flow(store, principal)
        if flow is AuthFlow.DEFAULT:
            return await self._default_flow(store, principal)
        assert_never(flow)

    # Flow handlers

    async def _invitation_flow(
        self, store: AuthStore, state: CallbackState, principal: Principal
    ) -> FlowOutcome:
        if not state.invitation_token:
            raise ValidationError("Login state is missing the invitation token")
        await ensure_local_user(store, principal)
        invitation = await self._invitations.accept(
            store,
            state.invitation_token,
            user_id=principal.user_id,
            external_user_id=principal.external_id,
            email=principal.verified_email,
        )
        tenant = await self._require_tenant(store, invitation.tenant_id)
        return FlowOutcome(
            tenant_id=tenant.id,
            tenant_name=tenant.name,
            message=f"You have joined {tenant.name}",
        )

    async def _join_link_flow(
        self, store: AuthStore, state: CallbackState, principal: Principal
    ) -> FlowOutcome:
        if not state.join_token:
            raise ValidationError("Login state is missing the join token")
        await ensure_local_user(store, principal)
        link, _ = await self._join_links.join(
            store,
            state.join_token,
            user_id=principal.user_id,
            external_user_id=principal.external_id,
        )
        tenant = await self._require_tenant(store, link.tenant_id)
        return FlowOutcome(
            tenant_id=tenant.id,
            tenant_name=tenant.name,
            message=f"You have joined {tenant.name}",
        )

    async def _enterprise_first_admin_flow(
        self, store: AuthStore, principal: Principal
    ) -> FlowOutcome:
        tenant = await store.tenants.get_enterprise_tenant_by_realm(principal.realm)
        if tenant is None or not tenant.is_active:
            raise NotFoundError("Enterprise tenant not found for this realm")

        # Concurrent first logins queue here; the loser then sees the member.
        await store.tenants.lock_tenant(tenant.id)
        if await store.memberships.tenant_has_members(tenant.id):
            raise AlreadyHasAdministratorError(ALREADY_HAS_ADMINISTRATOR_MESSAGE)

        await ensure_local_user(store, principal)
        try:
            await store.memberships.add_membership(
                principal.user_id,
                tenant.id,
                is_admin=True,
                external_user_id=principal.external_id,
            )
        except AlreadyMemberError:
            raise AlreadyHasAdministratorError(ALREADY_HAS_ADMINISTRATOR_MESSAGE) from None

        logger.info(
            "enterprise_first_admin_assigned",
            tenant_id=tenant.id,
            user_id=str(principal.user_id),
        )
        await self._disable_registration(tenant)
        return FlowOutcome(
            tenant_id=tenant.id,
            tenant_name=tenant.name,
            message=f"You are now the administrator of {tenant.name}",
        )

    async def _disable_registration(self, tenant: Tenant) -> None:
        realm = tenant.realm_name or ""
        try:
            disabled = await self._broker.disable_realm_registration(realm)
        except IdentityBrokerError as e:
            logger.warning("realm_registration_disable_failed", realm=realm, error=str(e))
            return
        if not disabled:
            logger.warning("realm_registration_disable_failed", realm=realm)

    async def _new_org_flow(self, store: AuthStore, principal: Principal) -> FlowOutcome:
        if await store.tenants.get_enterprise_tenant_by_realm(principal.realm) is not None:
            raise ValidationError("Organizations cannot be created from an enterprise realm")
        return await self._create_organization(store, principal)

    async def _create_organization(self, store: AuthStore, principal: Principal) -> FlowOutcome:
        user = await ensure_local_user(store, principal)
        tenant = await store.tenants.create_tenant(
            name=organization_name(user.first_name),
            tenant_type=TenantType.STANDARD,
            realm_name=principal.realm,
        )
        await store.memberships.add_membership(
            user.id,
            tenant.id,
            is_admin=True,
            external_user_id=principal.external_id,
        )
        logger.info("organization_created", tenant_id=tenant.id, user_id=str(user.id))
        return FlowOutcome(
            tenant_id=tenant.id,
            tenant_name=tenant.name,
            is_new_organization=True,
            message=f"Welcome! {tenant.name} has been created",
        )

    async def _default_flow(self, store: AuthStore, principal: Principal) -> FlowOutcome:
        memberships = await store.memberships.list_for_user(principal.user_id)

        if not memberships:
            tenant = await store.tenants.get_enterprise_tenant_by_realm(principal.realm)
            if tenant is None:
                return await self._create_organization(store, principal)
            if not tenant.is_active:
                raise AuthorizationDenied("This organization is not active")
            await ensure_local_user(store, principal)
            await self._sso.authorize(store, principal, tenant)
            return FlowOutcome(
                tenant_id=tenant.id,
                tenant_name=tenant.name,
                message=f"You have joined {tenant.name}",
            )

        await ensure_local_user(store, principal)
        if len(memberships) == 1:
            only = memberships[0]
            return FlowOutcome(tenant_id=only.tenant_id, tenant_name=only.tenant_name)

        return FlowOutcome(
            available_tenants=[
                TenantSelection(
                    tenant_id=m.tenant_id, tenant_name=m.tenant_name, is_admin=m.is_admin
                )
                for m in memberships
            ],
            message="Please select a tenant",
        )

    @staticmethod
    async def _require_tenant(store: AuthStore, tenant_id: int) -> Tenant:
        tenant = await store.tenants.get_tenant(tenant_id)
        if tenant is None:
            raise NotFoundError(f"Tenant {tenant_id} not found")
        return tenant
