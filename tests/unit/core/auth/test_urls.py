"""Tests for authorization URL building."""

from urllib.parse import parse_qs, urlsplit

import pytest

from tenantgate.adapters.db.memory import InMemoryDatabase, InMemoryUnitOfWork
from tenantgate.core.auth.state import AuthFlow, CallbackState, decode_state
from tenantgate.core.auth.types import TenantType
from tenantgate.core.auth.urls import AuthUrlBuilder
from tenantgate.core.exceptions import NotFoundError
from tests.fixtures.stores import REDIRECT_URI, SHARED_REALM


@pytest.fixture
def urls() -> AuthUrlBuilder:
    """Return a URL builder for the shared realm."""
    return AuthUrlBuilder("https://id.example.com/", "tenantgate-web", default_realm=SHARED_REALM)


def _parse(url: str) -> tuple[str, dict[str, str], CallbackState]:
    parts = urlsplit(url)
    query = {key: values[0] for key, values in parse_qs(parts.query).items()}
    state = decode_state(query["state"])
    assert state is not None
    return parts.path, query, state


class TestAuthUrlBuilder:
    """Test AuthUrlBuilder."""

    def test_login_url(self, urls: AuthUrlBuilder) -> None:
        """Should target the shared realm's auth endpoint with the default flow."""
        url = urls.login_url(REDIRECT_URI)
        path, query, state = _parse(url)

        assert url.startswith("https://id.example.com/realms/")
        assert path == f"/realms/{SHARED_REALM}/protocol/openid-connect/auth"
        assert query["client_id"] == "tenantgate-web"
        assert query["response_type"] == "code"
        assert query["scope"] == "openid email profile"
        assert query["redirect_uri"] == REDIRECT_URI
        assert state == CallbackState(flow=AuthFlow.DEFAULT, realm=SHARED_REALM)

    def test_registration_url(self, urls: AuthUrlBuilder) -> None:
        """Should send sign ups to the registration page with the new_org flow."""
        path, _, state = _parse(urls.registration_url(REDIRECT_URI))

        assert path.endswith("/openid-connect/registrations")
        assert state.flow is AuthFlow.NEW_ORG

    def test_invitation_url(self, urls: AuthUrlBuilder) -> None:
        """Should carry the invitation token and prefill the email."""
        path, query, state = _parse(
            urls.invitation_url(REDIRECT_URI, "abc123", "carol@x.com", realm="tenant_x_0001")
        )

        assert path.startswith("/realms/tenant_x_0001/")
        assert query["login_hint"] == "carol@x.com"
        assert state.flow is AuthFlow.INVITATION
        assert state.invitation_token == "abc123"
        assert state.realm == "tenant_x_0001"

    def test_join_link_url(self, urls: AuthUrlBuilder) -> None:
        """Should carry the join token."""
        _, query, state = _parse(urls.join_link_url(REDIRECT_URI, "j-1"))

        assert "login_hint" not in query
        assert state.flow is AuthFlow.JOIN_LINK
        assert state.join_token == "j-1"

    def test_enterprise_first_admin_url(self, urls: AuthUrlBuilder) -> None:
        """Should open the registration page of the enterprise realm."""
        path, _, state = _parse(urls.enterprise_first_admin_url(REDIRECT_URI, "tenant_acme_0a1b"))

        assert path == "/realms/tenant_acme_0a1b/protocol/openid-connect/registrations"
        assert state.flow is AuthFlow.ENTERPRISE_FIRST_ADMIN


class TestLoginUrlForDomain:
    """Test custom domain routing."""

    @pytest.mark.asyncio
    async def test_routes_to_tenant_realm(
        self, memory_db: InMemoryDatabase, uow: InMemoryUnitOfWork, urls: AuthUrlBuilder
    ) -> None:
        """Should sign in to the realm of the tenant owning the domain."""
        memory_db.add_tenant(
            "Acme",
            tenant_type=TenantType.ENTERPRISE,
            realm_name="tenant_acme_0a1b",
            custom_domain="login.acme.com",
        )

        async with uow.transaction() as store:
            url = await urls.login_url_for_domain(store, "LOGIN.acme.com", REDIRECT_URI)

        _, _, state = _parse(url)
        assert state.realm == "tenant_acme_0a1b"

    @pytest.mark.asyncio
    async def test_unknown_or_inactive_domain(
        self, memory_db: InMemoryDatabase, uow: InMemoryUnitOfWork, urls: AuthUrlBuilder
    ) -> None:
        """Should raise NotFoundError for unknown and inactive tenants."""
        memory_db.add_tenant(
            "Dormant",
            tenant_type=TenantType.ENTERPRISE,
            realm_name="tenant_dormant_0001",
            custom_domain="login.dormant.com",
            is_active=False,
        )

        async with uow.transaction() as store:
            with pytest.raises(NotFoundError):
                await urls.login_url_for_domain(store, "login.nowhere.com", REDIRECT_URI)
            with pytest.raises(NotFoundError):
                await urls.login_url_for_domain(store, "login.dormant.com", REDIRECT_URI)
