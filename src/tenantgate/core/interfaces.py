"""Protocols for the collaborators the core depends on.

The core never imports a concrete database or identity provider. Adapters
in ``tenantgate.adapters`` implement these protocols (Postgres via asyncpg,
Keycloak via httpx, and an in-memory store for tests).
"""

from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from typing import TYPE_CHECKING, Protocol, TypeVar, runtime_checkable
from uuid import UUID

if TYPE_CHECKING:
    from tenantgate.core.auth.types import (
        IdentityProfile,
        Membership,
        NewIdentityUser,
        RealmSpec,
        Tenant,
        TenantMembership,
        TenantType,
        TokenSet,
        User,
    )
    from tenantgate.core.rbac.types import Role
    from tenantgate.core.tenancy import RecordBackend, TenantEntity

E = TypeVar("E", bound="TenantEntity")


@runtime_checkable
class IdentityBroker(Protocol):
    """External identity provider.

    Remote, fallible and not idempotent. Responses are trusted as given.
    """

    async def exchange_code_for_tokens(
        self, code: str, redirect_uri: str, realm: str
    ) -> TokenSet | None:
        """Exchange an authorization code. None on any failure."""
        ...

    async def get_user_by_id(self, external_id: str, realm: str) -> IdentityProfile | None:
        """Fetch a provider account by its subject id."""
        ...

    async def get_user_id_by_email(self, realm: str, email: str) -> str | None:
        """Find a provider account id by exact email."""
        ...

    async def create_user(self, realm: str, user: NewIdentityUser) -> str | None:
        """Create a provider account and return its id."""
        ...

    async def assign_role(self, realm: str, external_id: str, role_name: str) -> bool:
        """Grant a realm role to a provider account."""
        ...

    async def send_notification_email(
        self,
        realm: str,
        external_id: str,
        actions: list[str],
        *,
        client_id: str | None = None,
        redirect_uri: str | None = None,
    ) -> bool:
        """Ask the provider to email the account a required-actions link."""
        ...

    async def create_realm(self, spec: RealmSpec) -> None:
        """Create a realm with a login client. Raises on failure."""
        ...

    async def delete_realm(self, realm: str) -> bool:
        """Delete a realm."""
        ...

    async def disable_realm_registration(self, realm: str) -> bool:
        """Turn off self-registration on a realm."""
        ...


class UserRepository(Protocol):
    """Local users and their links to provider accounts."""

    async def get_user(self, user_id: UUID) -> User | None:
        """Get user by ID."""
        ...

    async def find_user_id_by_identity(self, realm: str, external_id: str) -> UUID | None:
        """Resolve a provider account to a local user."""
        ...

    async def upsert_user(self, user: User) -> User:
        """Insert the user if absent; return the stored row either way."""
        ...

    async def link_identity(self, user_id: UUID, realm: str, external_id: str) -> None:
        """Link a provider account to a user. No-op when already linked."""
        ...


class TenantRepository(Protocol):
    """Tenants."""

    async def get_tenant(self, tenant_id: int) -> Tenant | None:
        """Get tenant by ID."""
        ...

    async def get_enterprise_tenant_by_realm(self, realm: str) -> Tenant | None:
        """Get the enterprise tenant that owns a realm."""
        ...

    async def get_tenant_by_custom_domain(self, domain: str) -> Tenant | None:
        """Get the tenant bound to a custom domain."""
        ...

    async def lock_tenant(self, tenant_id: int) -> None:
        """Serialize concurrent writers on a tenant until the transaction ends."""
        ...

    async def create_tenant(
        self,
        *,
        name: str,
        tenant_type: TenantType,
        realm_name: str | None,
        description: str | None = None,
        parent_tenant_id: int | None = None,
        custom_domain: str | None = None,
        sso_auto_join_domains: list[str] | None = None,
    ) -> Tenant:
        """Create a tenant."""
        ...

    async def update_sso_settings(
        self, tenant_id: int, domains: list[str], role_id: int | None
    ) -> Tenant | None:
        """Replace a tenant's SSO auto-join settings."""
        ...


class MembershipRepository(Protocol):
    """User to tenant memberships."""

    async def get_membership(self, user_id: UUID, tenant_id: int) -> Membership | None:
        """Get one membership."""
        ...

    async def list_for_user(self, user_id: UUID) -> list[TenantMembership]:
        """All memberships of a user, with tenant names."""
        ...

    async def tenant_has_members(self, tenant_id: int) -> bool:
        """Whether any membership exists for the tenant."""
        ...

    async def add_membership(
        self,
        user_id: UUID,
        tenant_id: int,
        *,
        is_admin: bool,
        external_user_id: str | None,
    ) -> Membership:
        """Create a membership.

        Raises:
            AlreadyMemberError: If (user_id, tenant_id) already exists.
        """
        ...


class RoleRepository(Protocol):
    """Roles and the role -> policy -> permission mappings."""

    async def get_role(self, tenant_id: int, role_id: int) -> Role | None:
        """Get a role of a tenant."""
        ...

    async def get_role_id_by_name(self, tenant_id: int, name: str) -> int | None:
        """Find a role of a tenant by name."""
        ...

    async def assign_role(self, user_id: UUID, tenant_id: int, role_id: int) -> bool:
        """Attach a role to a user. False when it could not be assigned."""
        ...

    async def get_user_role_ids(self, user_id: UUID) -> list[int]:
        """Ids of every role attached to the user, across its tenants."""
        ...

    async def get_permissions_for_role_ids(self, role_ids: list[int]) -> set[str]:
        """Distinct permission names reachable from the given roles."""
        ...

    async def add_role_policy(self, role_id: int, policy_id: int) -> None:
        """Attach a policy to a role."""
        ...

    async def remove_role_policy(self, role_id: int, policy_id: int) -> bool:
        """Detach a policy from a role."""
        ...

    async def add_policy_permission(self, policy_id: int, permission_id: int) -> None:
        """Add a permission to a policy."""
        ...

    async def remove_policy_permission(self, policy_id: int, permission_id: int) -> bool:
        """Remove a permission from a policy."""
        ...


class AuthStore(Protocol):
    """Everything one unit of work can touch."""

    @property
    def users(self) -> UserRepository: ...

    @property
    def tenants(self) -> TenantRepository: ...

    @property
    def memberships(self) -> MembershipRepository: ...

    @property
    def roles(self) -> RoleRepository: ...

    def table(self, model: type[E]) -> RecordBackend[E]:
        """Row storage for a tenant entity (invitations, join links)."""
        ...


class UnitOfWork(Protocol):
    """Opens transactions.

    ``transaction()`` yields an AuthStore bound to one transaction. Leaving
    the block normally commits; an exception rolls everything back and
    propagates.
    """

    def transaction(self) -> AbstractAsyncContextManager[AuthStore]:
        """Open a transaction."""
        ...
