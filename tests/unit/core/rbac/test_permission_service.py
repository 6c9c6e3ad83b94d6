"""Tests for permission resolution."""

from __future__ import annotations

from dataclasses import dataclass
from unittest.mock import AsyncMock
from uuid import UUID, uuid4

import pytest

from tenantgate.adapters.db.memory import (
    InMemoryDatabase,
    InMemoryUnitOfWork,
    MemoryRoleRepository,
)
from tenantgate.config import Settings
from tenantgate.core.rbac.cache import PermissionCache
from tenantgate.core.rbac.permission_service import PermissionResolver


@dataclass
class Seeded:
    """Ids of a small role -> policy -> permission graph."""

    user_id: UUID
    role_id: int
    policy_id: int
    invite_id: int
    billing_id: int


@pytest.fixture
def seeded(memory_db: InMemoryDatabase) -> Seeded:
    """Editor role granting invitations.create through one policy."""
    tenant = memory_db.add_tenant("Acme")
    user_id = uuid4()
    role = memory_db.add_role(tenant.id, "Editor")
    policy = memory_db.add_policy("Invite people")
    invite = memory_db.add_permission("invitations.create")
    billing = memory_db.add_permission("billing.read")
    memory_db.grant(user_id, role)
    memory_db.state.role_policies.add((role.id, policy.id))
    memory_db.state.policy_permissions.add((policy.id, invite.id))
    return Seeded(user_id, role.id, policy.id, invite.id, billing.id)


@pytest.fixture
def resolver(uow: InMemoryUnitOfWork) -> PermissionResolver:
    """Return a resolver with a fresh cache."""
    return PermissionResolver(uow, PermissionCache())


class TestGetUserPermissions:
    """Test permission expansion."""

    @pytest.mark.asyncio
    async def test_expands_roles(self, seeded: Seeded, resolver: PermissionResolver) -> None:
        """Should follow role -> policy -> permission."""
        assert await resolver.get_user_permissions(seeded.user_id) == {"invitations.create"}

    @pytest.mark.asyncio
    async def test_user_without_roles(self, resolver: PermissionResolver) -> None:
        """Should return an empty set."""
        assert await resolver.get_user_permissions(uuid4()) == frozenset()

    @pytest.mark.asyncio
    async def test_second_read_is_cached(
        self, seeded: Seeded, memory_db: InMemoryDatabase, resolver: PermissionResolver
    ) -> None:
        """Should not reach the store again for a cached user."""
        await resolver.get_user_permissions(seeded.user_id)
        commits = memory_db.commits

        await resolver.get_user_permissions(seeded.user_id)

        assert memory_db.commits == commits

    @pytest.mark.asyncio
    async def test_same_role_name_in_another_tenant(
        self, memory_db: InMemoryDatabase, resolver: PermissionResolver
    ) -> None:
        """Should expand only the roles attached to the user, not roles sharing their name."""
        acme = memory_db.add_tenant("Acme")
        initech = memory_db.add_tenant("Initech")
        acme_member = memory_db.add_role(acme.id, "Member")
        initech_member = memory_db.add_role(initech.id, "Member")
        policy = memory_db.add_policy("Billing admin")
        billing = memory_db.add_permission("billing.write")
        memory_db.state.role_policies.add((initech_member.id, policy.id))
        memory_db.state.policy_permissions.add((policy.id, billing.id))
        user_id = uuid4()
        memory_db.grant(user_id, acme_member)

        assert await resolver.get_user_permissions(user_id) == frozenset()
        assert not await resolver.has_permission(user_id, "billing.write")


class TestCacheConfiguration:
    """Test which cache the resolver uses."""

    @pytest.mark.asyncio
    async def test_keeps_injected_empty_cache(
        self, seeded: Seeded, uow: InMemoryUnitOfWork
    ) -> None:
        """Should store expansions in the cache it was given, even while it is empty."""
        cache = PermissionCache(ttl_seconds=5)
        resolver = PermissionResolver(uow, cache)

        await resolver.get_user_permissions(seeded.user_id)

        assert cache.get(seeded.user_id) == {"invitations.create"}

    @pytest.mark.asyncio
    async def test_resolvers_share_a_cache(
        self, seeded: Seeded, memory_db: InMemoryDatabase, uow: InMemoryUnitOfWork
    ) -> None:
        """Should let a second resolver read what the first one cached."""
        cache = PermissionCache()
        await PermissionResolver(uow, cache).get_user_permissions(seeded.user_id)
        commits = memory_db.commits

        await PermissionResolver(uow, cache).get_user_permissions(seeded.user_id)

        assert memory_db.commits == commits

    @pytest.mark.asyncio
    async def test_from_settings_applies_ttl(
        self,
        seeded: Seeded,
        memory_db: InMemoryDatabase,
        uow: InMemoryUnitOfWork,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """Should use PERMISSION_CACHE_TTL_SECONDS for cached expansions."""
        monkeypatch.setenv("PERMISSION_CACHE_TTL_SECONDS", "0")
        resolver = PermissionResolver.from_settings(uow, Settings())

        await resolver.get_user_permissions(seeded.user_id)
        commits = memory_db.commits
        await resolver.get_user_permissions(seeded.user_id)

        assert memory_db.commits == commits + 1


class TestPermissionChecks:
    """Test has_permission and has_any_permission."""

    @pytest.mark.asyncio
    async def test_has_permission(self, seeded: Seeded, resolver: PermissionResolver) -> None:
        """Should answer from the expansion."""
        assert await resolver.has_permission(seeded.user_id, "invitations.create")
        assert not await resolver.has_permission(seeded.user_id, "billing.read")

    @pytest.mark.asyncio
    async def test_role_claim_grants_directly(self, resolver: PermissionResolver) -> None:
        """Should accept a permission carried as a role claim."""
        assert await resolver.has_permission(uuid4(), "billing.read", role_claims=["billing.read"])

    @pytest.mark.asyncio
    async def test_any_permission(self, seeded: Seeded, resolver: PermissionResolver) -> None:
        """Should pass when one of several permissions is held."""
        assert await resolver.has_any_permission(
            seeded.user_id, ["billing.read", "invitations.create"]
        )
        assert not await resolver.has_any_permission(seeded.user_id, ["billing.read"])

    @pytest.mark.asyncio
    async def test_empty_request_is_denied(
        self, seeded: Seeded, resolver: PermissionResolver
    ) -> None:
        """Should deny when no permission is asked for."""
        assert not await resolver.has_any_permission(seeded.user_id, [])

    @pytest.mark.asyncio
    async def test_lookup_failure_is_denied(
        self, monkeypatch: pytest.MonkeyPatch, resolver: PermissionResolver
    ) -> None:
        """Should fail closed when the store errors."""
        monkeypatch.setattr(
            MemoryRoleRepository,
            "get_user_role_ids",
            AsyncMock(side_effect=RuntimeError("connection lost")),
        )

        assert not await resolver.has_any_permission(uuid4(), ["billing.read"])


class TestMappingChanges:
    """Test that mapping changes are visible immediately."""

    @pytest.mark.asyncio
    async def test_grant_permission(self, seeded: Seeded, resolver: PermissionResolver) -> None:
        """Should see a newly granted permission on the next read."""
        assert not await resolver.has_permission(seeded.user_id, "billing.read")

        await resolver.grant_permission(seeded.policy_id, seeded.billing_id)

        assert await resolver.has_permission(seeded.user_id, "billing.read")

    @pytest.mark.asyncio
    async def test_revoke_permission(self, seeded: Seeded, resolver: PermissionResolver) -> None:
        """Should drop a revoked permission on the next read."""
        await resolver.get_user_permissions(seeded.user_id)

        assert await resolver.revoke_permission(seeded.policy_id, seeded.invite_id)
        assert await resolver.get_user_permissions(seeded.user_id) == frozenset()
        assert not await resolver.revoke_permission(seeded.policy_id, seeded.invite_id)

    @pytest.mark.asyncio
    async def test_detach_and_attach_policy(
        self, seeded: Seeded, resolver: PermissionResolver
    ) -> None:
        """Should follow policies moving on and off a role."""
        assert await resolver.detach_policy(seeded.role_id, seeded.policy_id)
        assert not await resolver.has_permission(seeded.user_id, "invitations.create")

        await resolver.attach_policy(seeded.role_id, seeded.policy_id)
        assert await resolver.has_permission(seeded.user_id, "invitations.create")

    @pytest.mark.asyncio
    async def test_change_clears_every_user(
        self, seeded: Seeded, memory_db: InMemoryDatabase, uow: InMemoryUnitOfWork
    ) -> None:
        """Should clear cached entries of unrelated users as well."""
        cache = PermissionCache()
        resolver = PermissionResolver(uow, cache)
        await resolver.get_user_permissions(seeded.user_id)
        await resolver.get_user_permissions(uuid4())
        assert len(cache) == 2

        await resolver.grant_permission(seeded.policy_id, seeded.billing_id)

        assert len(cache) == 0
