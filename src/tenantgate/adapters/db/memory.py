"""In-memory store for testing and local development.

Implements the same contracts as the Postgres adapters. Transactions are
serialized with an ``asyncio.Lock`` and work on a deep copy of the state:
leaving the block normally swaps the copy in, an exception discards it.
That gives the same all-or-nothing visibility the Postgres unit of work
provides, which the flow tests rely on.
"""

from __future__ import annotations

import asyncio
import copy
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar
from uuid import UUID

import structlog

from tenantgate.core.auth.types import (
    Membership,
    Tenant,
    TenantMembership,
    TenantType,
    User,
    utc_now,
)
from tenantgate.core.exceptions import AlreadyMemberError, ConflictError
from tenantgate.core.rbac.types import Permission, Policy, Role
from tenantgate.core.tenancy import TenantEntity

logger = structlog.get_logger()

E = TypeVar("E", bound=TenantEntity)

# Columns that must be unique per table, keyed by model name.
UNIQUE_COLUMNS: dict[str, tuple[str, ...]] = {
    "TenantInvitation": ("invitation_token",),
    "TenantJoinLink": ("join_token",),
}


@dataclass
class _State:
    users: dict[UUID, User] = field(default_factory=dict)
    identities: dict[tuple[str, str], UUID] = field(default_factory=dict)
    tenants: dict[int, Tenant] = field(default_factory=dict)
    memberships: dict[tuple[UUID, int], Membership] = field(default_factory=dict)
    roles: dict[int, Role] = field(default_factory=dict)
    user_roles: set[tuple[UUID, int, int]] = field(default_factory=set)
    policies: dict[int, str] = field(default_factory=dict)
    permissions: dict[int, str] = field(default_factory=dict)
    role_policies: set[tuple[int, int]] = field(default_factory=set)
    policy_permissions: set[tuple[int, int]] = field(default_factory=set)
    rows: dict[str, dict[int, dict[str, Any]]] = field(default_factory=dict)
    sequences: dict[str, int] = field(default_factory=dict)

    def next_id(self, sequence: str) -> int:
        value = self.sequences.get(sequence, 0) + 1
        self.sequences[sequence] = value
        return value


def _matches(row: Mapping[str, Any], filters: Mapping[str, Any]) -> bool:
    return all(row.get(key) == value for key, value in filters.items())


class MemoryTable(Generic[E]):
    """RecordBackend over a dict of rows."""

    def __init__(self, state: _State, model: type[E]) -> None:
        self._state = state
        self._model = model
        self._name = model.__name__
        self._rows = state.rows.setdefault(self._name, {})

    @property
    def model(self) -> type[E]:
        return self._model

    async def select(
        self,
        filters: Mapping[str, Any],
        *,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[E]:
        rows = [row for row in self._rows.values() if _matches(row, filters)]
        if order_by:
            rows.sort(key=lambda r: r[order_by], reverse=descending)
        end = None if limit is None else offset + limit
        return [self._model.model_validate(row) for row in rows[offset:end]]

    async def count(self, filters: Mapping[str, Any]) -> int:
        return sum(1 for row in self._rows.values() if _matches(row, filters))

    def _check_unique(self, row: Mapping[str, Any], row_id: int) -> None:
        for column in UNIQUE_COLUMNS.get(self._name, ()):
            for other_id, other in self._rows.items():
                if other_id != row_id and other.get(column) == row.get(column):
                    raise ConflictError(f"{self._name}.{column} must be unique")

    async def insert(self, values: Mapping[str, Any]) -> E:
        row_id = self._state.next_id(self._name)
        entity = self._model.model_validate({**values, "id": row_id})
        row = entity.model_dump()
        self._check_unique(row, row_id)
        self._rows[row_id] = row
        return entity

    async def update(self, filters: Mapping[str, Any], values: Mapping[str, Any]) -> E | None:
        for row_id, row in self._rows.items():
            if _matches(row, filters):
                entity = self._model.model_validate({**row, **values})
                updated = entity.model_dump()
                self._check_unique(updated, row_id)
                self._rows[row_id] = updated
                return entity
        return None

    async def delete(self, filters: Mapping[str, Any]) -> bool:
        for row_id, row in list(self._rows.items()):
            if _matches(row, filters):
                del self._rows[row_id]
                return True
        return False


class MemoryUserRepository:
    """Users and identity links."""

    def __init__(self, state: _State) -> None:
        self._state = state

    async def get_user(self, user_id: UUID) -> User | None:
        return self._state.users.get(user_id)

    async def find_user_id_by_identity(self, realm: str, external_id: str) -> UUID | None:
        return self._state.identities.get((realm, external_id))

    async def upsert_user(self, user: User) -> User:
        return self._state.users.setdefault(user.id, user)

    async def link_identity(self, user_id: UUID, realm: str, external_id: str) -> None:
        self._state.identities.setdefault((realm, external_id), user_id)


class MemoryTenantRepository:
    """Tenants."""

    def __init__(self, state: _State) -> None:
        self._state = state

    async def get_tenant(self, tenant_id: int) -> Tenant | None:
        return self._state.tenants.get(tenant_id)

    async def get_enterprise_tenant_by_realm(self, realm: str) -> Tenant | None:
        for tenant in self._state.tenants.values():
            if tenant.is_enterprise and tenant.realm_name == realm:
                return tenant
        return None

    async def get_tenant_by_custom_domain(self, domain: str) -> Tenant | None:
        domain = domain.lower()
        for tenant in self._state.tenants.values():
            if tenant.custom_domain and tenant.custom_domain.lower() == domain:
                return tenant
        return None

    async def lock_tenant(self, tenant_id: int) -> None:
        # Transactions are already serialized by the unit of work.
        return None

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
        if tenant_type == TenantType.ENTERPRISE and realm_name:
            if await self.get_enterprise_tenant_by_realm(realm_name):
                raise ConflictError(f"Realm {realm_name} already belongs to a tenant")
        tenant = Tenant(
            id=self._state.next_id("tenants"),
            name=name,
            description=description,
            tenant_type=tenant_type,
            parent_tenant_id=parent_tenant_id,
            realm_name=realm_name,
            custom_domain=custom_domain,
            sso_auto_join_domains=list(sso_auto_join_domains or []),
        )
        self._state.tenants[tenant.id] = tenant
        return tenant

    async def update_sso_settings(
        self, tenant_id: int, domains: list[str], role_id: int | None
    ) -> Tenant | None:
        tenant = self._state.tenants.get(tenant_id)
        if tenant is None:
            return None
        updated = tenant.model_copy(
            update={"sso_auto_join_domains": list(domains), "sso_auto_join_role_id": role_id}
        )
        self._state.tenants[tenant_id] = updated
        return updated


class MemoryMembershipRepository:
    """Memberships, unique per (user, tenant)."""

    def __init__(self, state: _State) -> None:
        self._state = state

    async def get_membership(self, user_id: UUID, tenant_id: int) -> Membership | None:
        return self._state.memberships.get((user_id, tenant_id))

    async def list_for_user(self, user_id: UUID) -> list[TenantMembership]:
        result = []
        for (member_id, tenant_id), membership in sorted(
            self._state.memberships.items(), key=lambda item: item[0][1]
        ):
            if member_id != user_id:
                continue
            tenant = self._state.tenants[tenant_id]
            result.append(TenantMembership(**membership.model_dump(), tenant_name=tenant.name))
        return result

    async def tenant_has_members(self, tenant_id: int) -> bool:
        return any(key[1] == tenant_id for key in self._state.memberships)

    async def add_membership(
        self,
        user_id: UUID,
        tenant_id: int,
        *,
        is_admin: bool,
        external_user_id: str | None,
    ) -> Membership:
        key = (user_id, tenant_id)
        if key in self._state.memberships:
            raise AlreadyMemberError("You are already a member of this tenant")
        membership = Membership(
            user_id=user_id,
            tenant_id=tenant_id,
            is_admin=is_admin,
            external_user_id=external_user_id,
            joined_at=utc_now(),
        )
        self._state.memberships[key] = membership
        return membership


class MemoryRoleRepository:
    """Roles, user roles and the policy mappings."""

    def __init__(self, state: _State) -> None:
        self._state = state

    async def get_role(self, tenant_id: int, role_id: int) -> Role | None:
        role = self._state.roles.get(role_id)
        if role is None or role.tenant_id != tenant_id:
            return None
        return role

    async def get_role_id_by_name(self, tenant_id: int, name: str) -> int | None:
        for role in self._state.roles.values():
            if role.tenant_id == tenant_id and role.name == name:
                return role.id
        return None

    async def assign_role(self, user_id: UUID, tenant_id: int, role_id: int) -> bool:
        if await self.get_role(tenant_id, role_id) is None:
            logger.warning("role_assignment_failed", role_id=role_id, tenant_id=tenant_id)
            return False
        self._state.user_roles.add((user_id, tenant_id, role_id))
        return True

    async def get_user_role_ids(self, user_id: UUID) -> list[int]:
        return sorted(
            {role_id for member_id, _, role_id in self._state.user_roles if member_id == user_id}
        )

    async def get_permissions_for_role_ids(self, role_ids: list[int]) -> set[str]:
        policy_ids = {p for r, p in self._state.role_policies if r in role_ids}
        return {
            self._state.permissions[perm_id]
            for policy_id, perm_id in self._state.policy_permissions
            if policy_id in policy_ids
        }

    async def add_role_policy(self, role_id: int, policy_id: int) -> None:
        self._state.role_policies.add((role_id, policy_id))

    async def remove_role_policy(self, role_id: int, policy_id: int) -> bool:
        if (role_id, policy_id) not in self._state.role_policies:
            return False
        self._state.role_policies.discard((role_id, policy_id))
        return True

    async def add_policy_permission(self, policy_id: int, permission_id: int) -> None:
        self._state.policy_permissions.add((policy_id, permission_id))

    async def remove_policy_permission(self, policy_id: int, permission_id: int) -> bool:
        if (policy_id, permission_id) not in self._state.policy_permissions:
            return False
        self._state.policy_permissions.discard((policy_id, permission_id))
        return True


class InMemoryAuthStore:
    """AuthStore bound to one in-memory transaction."""

    def __init__(self, state: _State) -> None:
        self._state = state
        self.users = MemoryUserRepository(state)
        self.tenants = MemoryTenantRepository(state)
        self.memberships = MemoryMembershipRepository(state)
        self.roles = MemoryRoleRepository(state)

    def table(self, model: type[E]) -> MemoryTable[E]:
        return MemoryTable(self._state, model)


class InMemoryDatabase:
    """Committed state plus seeding and inspection helpers for tests."""

    def __init__(self) -> None:
        self.state = _State()
        self.lock = asyncio.Lock()
        self.commits = 0
        self.rollbacks = 0

    # Seeding
    def add_tenant(
        self,
        name: str,
        *,
        tenant_type: TenantType = TenantType.STANDARD,
        realm_name: str | None = None,
        is_active: bool = True,
        sso_auto_join_domains: list[str] | None = None,
        sso_auto_join_role_id: int | None = None,
        custom_domain: str | None = None,
    ) -> Tenant:
        tenant = Tenant(
            id=self.state.next_id("tenants"),
            name=name,
            tenant_type=tenant_type,
            realm_name=realm_name,
            is_active=is_active,
            sso_auto_join_domains=sso_auto_join_domains or [],
            sso_auto_join_role_id=sso_auto_join_role_id,
            custom_domain=custom_domain,
        )
        self.state.tenants[tenant.id] = tenant
        return tenant

    def add_user(
        self, user: User, *, realm: str | None = None, external_id: str | None = None
    ) -> User:
        self.state.users[user.id] = user
        if realm and external_id:
            self.state.identities[(realm, external_id)] = user.id
        return user

    def add_membership(
        self, user_id: UUID, tenant_id: int, *, is_admin: bool = False
    ) -> Membership:
        membership = Membership(user_id=user_id, tenant_id=tenant_id, is_admin=is_admin)
        self.state.memberships[(user_id, tenant_id)] = membership
        return membership

    def add_role(self, tenant_id: int, name: str) -> Role:
        role = Role(id=self.state.next_id("roles"), tenant_id=tenant_id, name=name)
        self.state.roles[role.id] = role
        return role

    def add_policy(self, name: str) -> Policy:
        policy = Policy(id=self.state.next_id("policies"), name=name)
        self.state.policies[policy.id] = name
        return policy

    def add_permission(self, name: str) -> Permission:
        permission = Permission(id=self.state.next_id("permissions"), name=name)
        self.state.permissions[permission.id] = name
        return permission

    def grant(self, user_id: UUID, role: Role) -> None:
        self.state.user_roles.add((user_id, role.tenant_id, role.id))

    # Inspection
    def memberships_of(self, tenant_id: int) -> list[Membership]:
        return [m for (_, t), m in self.state.memberships.items() if t == tenant_id]

    def rows(self, model: type[E]) -> list[E]:
        rows = self.state.rows.get(model.__name__, {})
        return [model.model_validate(row) for row in rows.values()]


class InMemoryUnitOfWork:
    """UnitOfWork over an InMemoryDatabase."""

    def __init__(self, db: InMemoryDatabase | None = None) -> None:
        self.db = db or InMemoryDatabase()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[InMemoryAuthStore]:
        async with self.db.lock:
            working = copy.deepcopy(self.db.state)
            try:
                yield InMemoryAuthStore(working)
            except BaseException:
                self.db.rollbacks += 1
                raise
            self.db.state = working
            self.db.commits += 1
