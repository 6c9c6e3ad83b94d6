"""Tests for the join link ledger."""

from __future__ import annotations

from datetime import timedelta
from uuid import uuid4

import pytest

from tenantgate.adapters.db.memory import InMemoryDatabase, InMemoryUnitOfWork
from tenantgate.core.auth.join_links import JoinLinkLedger
from tenantgate.core.auth.types import utc_now
from tenantgate.core.exceptions import (
    AlreadyMemberError,
    ExpiredOrRevokedError,
    NotFoundError,
    ValidationError,
)


class TestCreateJoinLink:
    """Test join link creation."""

    @pytest.mark.asyncio
    async def test_creates_usable_link(
        self,
        memory_db: InMemoryDatabase,
        uow: InMemoryUnitOfWork,
        join_link_ledger: JoinLinkLedger,
    ) -> None:
        """Should create a link that is not revoked and expires in the future."""
        tenant = memory_db.add_tenant("Acme")

        async with uow.transaction() as store:
            link = await join_link_ledger.create(store, tenant.id, expiration_days=3)

        assert link.tenant_id == tenant.id
        assert not link.is_revoked
        assert link.is_usable()
        assert link.expires_at < utc_now() + timedelta(days=3, minutes=1)

    @pytest.mark.asyncio
    async def test_validates_input(
        self,
        memory_db: InMemoryDatabase,
        uow: InMemoryUnitOfWork,
        join_link_ledger: JoinLinkLedger,
    ) -> None:
        """Should reject bad expiry, unknown tenants and foreign roles."""
        tenant = memory_db.add_tenant("Acme")
        other = memory_db.add_tenant("Initech")
        foreign_role = memory_db.add_role(other.id, "Member")

        async with uow.transaction() as store:
            with pytest.raises(ValidationError):
                await join_link_ledger.create(store, tenant.id, expiration_days=0)
            with pytest.raises(NotFoundError):
                await join_link_ledger.create(store, 999)
            with pytest.raises(NotFoundError):
                await join_link_ledger.create(store, tenant.id, default_role_id=foreign_role.id)


class TestJoin:
    """Test using join links."""

    @pytest.mark.asyncio
    async def test_link_is_multi_use(
        self,
        memory_db: InMemoryDatabase,
        uow: InMemoryUnitOfWork,
        join_link_ledger: JoinLinkLedger,
    ) -> None:
        """Should admit every new user and stay valid."""
        tenant = memory_db.add_tenant("Acme")
        async with uow.transaction() as store:
            link = await join_link_ledger.create(store, tenant.id)

        users = [uuid4() for _ in range(3)]
        for user_id in users:
            async with uow.transaction() as store:
                await join_link_ledger.join(
                    store, link.join_token, user_id=user_id, external_user_id=None
                )

        members = memory_db.memberships_of(tenant.id)
        assert {m.user_id for m in members} == set(users)
        assert not any(m.is_admin for m in members)
        async with uow.transaction() as store:
            assert (await join_link_ledger.resolve(store, link.join_token)).id == link.id

    @pytest.mark.asyncio
    async def test_assigns_default_role(
        self,
        memory_db: InMemoryDatabase,
        uow: InMemoryUnitOfWork,
        join_link_ledger: JoinLinkLedger,
    ) -> None:
        """Should attach the link's default role to the new member."""
        tenant = memory_db.add_tenant("Acme")
        role = memory_db.add_role(tenant.id, "Viewer")
        user_id = uuid4()

        async with uow.transaction() as store:
            link = await join_link_ledger.create(store, tenant.id, default_role_id=role.id)
            await join_link_ledger.join(
                store, link.join_token, user_id=user_id, external_user_id="kc-3"
            )

        assert (user_id, tenant.id, role.id) in memory_db.state.user_roles

    @pytest.mark.asyncio
    async def test_already_member(
        self,
        memory_db: InMemoryDatabase,
        uow: InMemoryUnitOfWork,
        join_link_ledger: JoinLinkLedger,
    ) -> None:
        """Should refuse a second join by the same user."""
        tenant = memory_db.add_tenant("Acme")
        user_id = uuid4()
        memory_db.add_membership(user_id, tenant.id)

        async with uow.transaction() as store:
            link = await join_link_ledger.create(store, tenant.id)
            with pytest.raises(AlreadyMemberError):
                await join_link_ledger.join(
                    store, link.join_token, user_id=user_id, external_user_id=None
                )

    @pytest.mark.asyncio
    async def test_revoked_link(
        self,
        memory_db: InMemoryDatabase,
        uow: InMemoryUnitOfWork,
        join_link_ledger: JoinLinkLedger,
    ) -> None:
        """Should reject a revoked link without adding a member."""
        tenant = memory_db.add_tenant("Acme")

        async with uow.transaction() as store:
            link = await join_link_ledger.create(store, tenant.id)
            await join_link_ledger.revoke(store, tenant.id, link.id)

            with pytest.raises(ExpiredOrRevokedError, match="revoked"):
                await join_link_ledger.join(
                    store, link.join_token, user_id=uuid4(), external_user_id=None
                )

        assert memory_db.memberships_of(tenant.id) == []

    @pytest.mark.asyncio
    async def test_expired_link(
        self,
        memory_db: InMemoryDatabase,
        uow: InMemoryUnitOfWork,
    ) -> None:
        """Should reject a link past its expiry."""
        tenant = memory_db.add_tenant("Acme")
        past = utc_now() - timedelta(days=30)

        async with uow.transaction() as store:
            link = await JoinLinkLedger(clock=lambda: past).create(store, tenant.id)
            with pytest.raises(ExpiredOrRevokedError):
                await JoinLinkLedger().resolve(store, link.join_token)

    @pytest.mark.asyncio
    async def test_unknown_token(
        self, uow: InMemoryUnitOfWork, join_link_ledger: JoinLinkLedger
    ) -> None:
        """Should raise NotFoundError for an unknown token."""
        async with uow.transaction() as store:
            with pytest.raises(NotFoundError, match="Join link not found"):
                await join_link_ledger.resolve(store, "missing")


class TestJoinLinkAdministration:
    """Test tenant-scoped administration."""

    @pytest.mark.asyncio
    async def test_list_hides_revoked(
        self,
        memory_db: InMemoryDatabase,
        uow: InMemoryUnitOfWork,
        join_link_ledger: JoinLinkLedger,
    ) -> None:
        """Should list active links by default and all links on request."""
        tenant = memory_db.add_tenant("Acme")

        async with uow.transaction() as store:
            active = await join_link_ledger.create(store, tenant.id)
            revoked = await join_link_ledger.create(store, tenant.id)
            await join_link_ledger.revoke(store, tenant.id, revoked.id)

            default = await join_link_ledger.list(store, tenant.id)
            everything = await join_link_ledger.list(store, tenant.id, include_revoked=True)

        assert [link.id for link in default] == [active.id]
        assert [link.id for link in everything] == [revoked.id, active.id]

    @pytest.mark.asyncio
    async def test_other_tenant_cannot_revoke(
        self,
        memory_db: InMemoryDatabase,
        uow: InMemoryUnitOfWork,
        join_link_ledger: JoinLinkLedger,
    ) -> None:
        """Should hide a link from every other tenant."""
        acme = memory_db.add_tenant("Acme")
        initech = memory_db.add_tenant("Initech")

        async with uow.transaction() as store:
            link = await join_link_ledger.create(store, acme.id)

            with pytest.raises(NotFoundError):
                await join_link_ledger.revoke(store, initech.id, link.id)
            assert (await join_link_ledger.get(store, acme.id, link.id)).is_usable()
