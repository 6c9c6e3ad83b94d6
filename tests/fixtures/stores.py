"""In-memory stores and wired services."""

from __future__ import annotations

from uuid import uuid4

import pytest

from tenantgate.adapters.db.memory import InMemoryDatabase, InMemoryUnitOfWork
from tenantgate.core.auth.invitations import InvitationLedger
from tenantgate.core.auth.join_links import JoinLinkLedger
from tenantgate.core.auth.jwt import TokenIssuer
from tenantgate.core.auth.orchestrator import AuthFlowOrchestrator
from tenantgate.core.auth.types import User
from tenantgate.core.sso.matcher import SsoAutoJoinMatcher
from tests.fixtures.identity import FakeIdentityBroker

SESSION_SECRET = "session-secret-for-tests-at-least-32-bytes-long"
SHARED_REALM = "groundup"
REDIRECT_URI = "https://app.example.com/auth/callback"


def make_user(email: str = "admin@example.com", first_name: str | None = "Ada") -> User:
    """Local user with a fresh id."""
    return User(id=uuid4(), email=email, username=email, first_name=first_name)


@pytest.fixture
def memory_db() -> InMemoryDatabase:
    """Return an empty in-memory database."""
    return InMemoryDatabase()


@pytest.fixture
def uow(memory_db: InMemoryDatabase) -> InMemoryUnitOfWork:
    """Return a unit of work over the in-memory database."""
    return InMemoryUnitOfWork(memory_db)


@pytest.fixture
def token_issuer() -> TokenIssuer:
    """Return a session token issuer with a test secret."""
    return TokenIssuer(SESSION_SECRET)


@pytest.fixture
def invitation_ledger(identity_broker: FakeIdentityBroker) -> InvitationLedger:
    """Return an invitation ledger backed by the fake provider."""
    return InvitationLedger(identity_broker, client_id="tenantgate-web")


@pytest.fixture
def join_link_ledger() -> JoinLinkLedger:
    """Return a join link ledger."""
    return JoinLinkLedger()


@pytest.fixture
def sso_matcher(invitation_ledger: InvitationLedger) -> SsoAutoJoinMatcher:
    """Return an SSO matcher sharing the invitation ledger."""
    return SsoAutoJoinMatcher(invitation_ledger)


@pytest.fixture
def orchestrator(
    uow: InMemoryUnitOfWork,
    identity_broker: FakeIdentityBroker,
    token_issuer: TokenIssuer,
    invitation_ledger: InvitationLedger,
    join_link_ledger: JoinLinkLedger,
    sso_matcher: SsoAutoJoinMatcher,
) -> AuthFlowOrchestrator:
    """Return a fully wired callback orchestrator."""
    return AuthFlowOrchestrator(
        uow,
        identity_broker,
        token_issuer,
        invitation_ledger,
        join_link_ledger,
        sso_matcher,
        default_realm=SHARED_REALM,
    )
