"""Identity provider authorization URLs carrying callback state."""

from __future__ import annotations

from typing import TYPE_CHECKING
from urllib.parse import urlencode

from tenantgate.core.auth.state import AuthFlow, CallbackState, encode_state
from tenantgate.core.exceptions import NotFoundError

if TYPE_CHECKING:
    from tenantgate.config import Settings
    from tenantgate.core.interfaces import AuthStore

DEFAULT_SCOPES = ("openid", "email", "profile")


class AuthUrlBuilder:
    """Builds login and registration URLs for each auth flow."""

    def __init__(
        self,
        base_url: str,
        client_id: str,
        *,
        default_realm: str,
        scopes: tuple[str, ...] = DEFAULT_SCOPES,
    ) -> None:
        """Initialize the builder.

        Args:
            base_url: Public identity provider URL, e.g. ``https://id.example.com``.
            client_id: OAuth client the browser authenticates against.
            default_realm: Shared realm for standard tenants.
            scopes: Requested scopes.
        """
        self._base_url = base_url.rstrip("/")
        self._client_id = client_id
        self._default_realm = default_realm
        self._scopes = scopes

    @classmethod
    def from_settings(cls, settings: Settings) -> AuthUrlBuilder:
        return cls(
            settings.keycloak_public_url,
            settings.keycloak_client_id,
            default_realm=settings.default_realm,
        )

    def _url(
        self,
        realm: str,
        redirect_uri: str,
        state: CallbackState,
        *,
        registration: bool = False,
        login_hint: str | None = None,
    ) -> str:
        endpoint = "registrations" if registration else "auth"
        params = {
            "client_id": self._client_id,
            "response_type": "code",
            "scope": " ".join(self._scopes),
            "redirect_uri": redirect_uri,
            "state": encode_state(state),
        }
        if login_hint:
            params["login_hint"] = login_hint
        return (
            f"{self._base_url}/realms/{realm}/protocol/openid-connect/{endpoint}"
            f"?{urlencode(params)}"
        )

    def login_url(self, redirect_uri: str, *, realm: str | None = None) -> str:
        """Plain sign in; the default flow decides what happens next."""
        realm = realm or self._default_realm
        return self._url(realm, redirect_uri, CallbackState(flow=AuthFlow.DEFAULT, realm=realm))

    def registration_url(self, redirect_uri: str) -> str:
        """Sign up in the shared realm and create a new organization."""
        realm = self._default_realm
        return self._url(
            realm,
            redirect_uri,
            CallbackState(flow=AuthFlow.NEW_ORG, realm=realm),
            registration=True,
        )

    def invitation_url(
        self,
        redirect_uri: str,
        invitation_token: str,
        email: str,
        *,
        realm: str | None = None,
    ) -> str:
        """Accept an invitation, prefilling the invited email."""
        realm = realm or self._default_realm
        state = CallbackState(
            flow=AuthFlow.INVITATION, realm=realm, invitation_token=invitation_token
        )
        return self._url(realm, redirect_uri, state, login_hint=email)

    def join_link_url(
        self, redirect_uri: str, join_token: str, *, realm: str | None = None
    ) -> str:
        """Use a join link."""
        realm = realm or self._default_realm
        state = CallbackState(flow=AuthFlow.JOIN_LINK, realm=realm, join_token=join_token)
        return self._url(realm, redirect_uri, state)

    def enterprise_first_admin_url(self, redirect_uri: str, realm: str) -> str:
        """Registration page of a fresh enterprise realm for its first administrator."""
        state = CallbackState(flow=AuthFlow.ENTERPRISE_FIRST_ADMIN, realm=realm)
        return self._url(realm, redirect_uri, state, registration=True)

    async def login_url_for_domain(self, store: AuthStore, domain: str, redirect_uri: str) -> str:
        """Sign in to the enterprise tenant bound to a custom domain.

        Raises:
            NotFoundError: No active tenant uses the domain.
        """
        tenant = await store.tenants.get_tenant_by_custom_domain(domain)
        if tenant is None or not tenant.is_active or not tenant.realm_name:
            raise NotFoundError(f"No organization is configured for {domain}")
        return self.login_url(redirect_uri, realm=tenant.realm_name)
