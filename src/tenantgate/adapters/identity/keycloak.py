"""Keycloak identity broker.

Talks to two Keycloak surfaces:

* the OpenID Connect token endpoint of each realm, for the authorization
  code exchange, and
* the admin REST API, authenticated with a service-account client in the
  admin realm (client_credentials grant).

Keycloak is not transactional. Callers decide what a failed call means;
this adapter only reports it, either as ``None``/``False`` or as an
``IdentityBrokerError``.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx

from tenantgate.core.auth.types import IdentityProfile, NewIdentityUser, RealmSpec, TokenSet
from tenantgate.core.exceptions import ConflictError, IdentityBrokerError

if TYPE_CHECKING:
    from tenantgate.config import Settings

logger = logging.getLogger(__name__)

# Refresh the admin token this many seconds before Keycloak says it expires.
TOKEN_REFRESH_MARGIN = 10


@dataclass
class KeycloakConfig:
    """Keycloak connection configuration."""

    server_url: str
    client_id: str
    client_secret: str
    admin_client_id: str
    admin_client_secret: str
    admin_realm: str = "master"
    timeout: float = 10.0

    @classmethod
    def from_settings(cls, settings: Settings) -> KeycloakConfig:
        """Build config from settings, failing fast when values are missing."""
        settings.require_identity_provider()
        return cls(
            server_url=settings.keycloak_url,
            client_id=settings.keycloak_client_id,
            client_secret=settings.keycloak_client_secret,
            admin_client_id=settings.keycloak_admin_client_id,
            admin_client_secret=settings.keycloak_admin_client_secret,
            admin_realm=settings.keycloak_admin_realm,
            timeout=settings.keycloak_timeout,
        )


def _profile_from_representation(data: dict[str, Any]) -> IdentityProfile:
    return IdentityProfile(
        id=data["id"],
        username=data.get("username"),
        email=data.get("email"),
        email_verified=bool(data.get("emailVerified", False)),
        first_name=data.get("firstName"),
        last_name=data.get("lastName"),
        enabled=bool(data.get("enabled", True)),
    )


class KeycloakIdentityBroker:
    """IdentityBroker backed by the Keycloak REST APIs."""

    def __init__(self, config: KeycloakConfig, client: httpx.AsyncClient | None = None) -> None:
        """Initialize the broker.

        Args:
            config: Keycloak configuration.
            client: Optional HTTP client. One is created (and owned) if not given.
        """
        self._config = config
        self._base_url = config.server_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=config.timeout)
        self._admin_token: str | None = None
        self._admin_token_expires_at = 0.0

    async def aclose(self) -> None:
        """Close the HTTP client if this broker created it."""
        if self._owns_client:
            await self._client.aclose()

    # Admin API plumbing

    async def _get_admin_token(self) -> str:
        if self._admin_token and time.monotonic() < self._admin_token_expires_at:
            return self._admin_token

        url = (
            f"{self._base_url}/realms/{self._config.admin_realm}"
            "/protocol/openid-connect/token"
        )
        try:
            response = await self._client.post(
                url,
                data={
                    "grant_type": "client_credentials",
                    "client_id": self._config.admin_client_id,
                    "client_secret": self._config.admin_client_secret,
                },
            )
        except httpx.HTTPError as e:
            raise IdentityBrokerError(f"Admin token request failed: {e}", endpoint=url) from e
        if response.status_code != 200:
            raise IdentityBrokerError(
                "Admin token request rejected",
                status_code=response.status_code,
                endpoint=url,
            )

        data = response.json()
        self._admin_token = data["access_token"]
        expires_in = int(data.get("expires_in", 60))
        self._admin_token_expires_at = time.monotonic() + max(expires_in - TOKEN_REFRESH_MARGIN, 0)
        return self._admin_token

    async def _admin_request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
    ) -> httpx.Response:
        """Send an authenticated admin API request.

        Transport failures are raised as IdentityBrokerError; HTTP status
        handling is left to the caller.
        """
        token = await self._get_admin_token()
        url = f"{self._base_url}/admin/realms{path}"
        try:
            return await self._client.request(
                method,
                url,
                json=json,
                params=params,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as e:
            raise IdentityBrokerError(f"Request failed: {e}", endpoint=url) from e

    @staticmethod
    def _raise_for_status(response: httpx.Response, action: str) -> None:
        if response.is_success:
            return
        raise IdentityBrokerError(
            f"Failed to {action}: {response.text[:200]}",
            status_code=response.status_code,
            endpoint=str(response.request.url),
        )

    # IdentityBroker

    async def exchange_code_for_tokens(
        self, code: str, redirect_uri: str, realm: str
    ) -> TokenSet | None:
        """Exchange an authorization code for tokens. None on any failure."""
        url = f"{self._base_url}/realms/{realm}/protocol/openid-connect/token"
        try:
            response = await self._client.post(
                url,
                data={
                    "grant_type": "authorization_code",
                    "code": code,
                    "redirect_uri": redirect_uri,
                    "client_id": self._config.client_id,
                    "client_secret": self._config.client_secret,
                },
            )
        except httpx.HTTPError as e:
            logger.warning(f"Code exchange with realm {realm} failed: {e}")
            return None
        if response.status_code != 200:
            logger.warning(
                f"Code exchange with realm {realm} rejected: {response.status_code}"
            )
            return None

        data = response.json()
        if "access_token" not in data:
            logger.warning(f"Code exchange with realm {realm} returned no access token")
            return None
        return TokenSet(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            id_token=data.get("id_token"),
            token_type=data.get("token_type", "Bearer"),
            expires_in=data.get("expires_in", 0),
        )

    async def get_user_by_id(self, external_id: str, realm: str) -> IdentityProfile | None:
        """Fetch a user representation."""
        response = await self._admin_request("GET", f"/{realm}/users/{external_id}")
        if response.status_code == 404:
            return None
        self._raise_for_status(response, f"fetch user {external_id}")
        return _profile_from_representation(response.json())

    async def get_user_id_by_email(self, realm: str, email: str) -> str | None:
        """Find a user id by exact email match."""
        response = await self._admin_request(
            "GET", f"/{realm}/users", params={"email": email, "exact": "true"}
        )
        self._raise_for_status(response, "search users")
        users = response.json()
        if not users:
            return None
        user_id: str = users[0]["id"]
        return user_id

    async def create_user(self, realm: str, user: NewIdentityUser) -> str | None:
        """Create a user and return its id, read from the Location header."""
        payload = {
            "username": user.username,
            "email": user.email,
            "firstName": user.first_name,
            "lastName": user.last_name,
            "enabled": user.enabled,
            "emailVerified": user.email_verified,
        }
        response = await self._admin_request("POST", f"/{realm}/users", json=payload)
        if response.status_code == 409:
            logger.info(f"User {user.email} already exists in realm {realm}")
            return await self.get_user_id_by_email(realm, user.email)
        if response.status_code != 201:
            logger.error(
                f"Failed to create user {user.email} in realm {realm}: {response.status_code}"
            )
            return None
        location = response.headers.get("Location", "")
        user_id = location.rstrip("/").rsplit("/", 1)[-1] if location else ""
        if not user_id:
            return await self.get_user_id_by_email(realm, user.email)
        return user_id

    async def assign_role(self, realm: str, external_id: str, role_name: str) -> bool:
        """Grant a realm role to a user."""
        role = await self._admin_request("GET", f"/{realm}/roles/{role_name}")
        if role.status_code != 200:
            logger.warning(f"Realm role {role_name} not found in {realm}")
            return False
        response = await self._admin_request(
            "POST",
            f"/{realm}/users/{external_id}/role-mappings/realm",
            json=[role.json()],
        )
        if not response.is_success:
            logger.warning(
                f"Failed to assign role {role_name} to {external_id}: {response.status_code}"
            )
            return False
        return True

    async def send_notification_email(
        self,
        realm: str,
        external_id: str,
        actions: list[str],
        *,
        client_id: str | None = None,
        redirect_uri: str | None = None,
    ) -> bool:
        """Trigger Keycloak's execute-actions email."""
        params: dict[str, Any] = {}
        if client_id:
            params["client_id"] = client_id
        if redirect_uri:
            params["redirect_uri"] = redirect_uri
        response = await self._admin_request(
            "PUT",
            f"/{realm}/users/{external_id}/execute-actions-email",
            json=actions,
            params=params or None,
        )
        if not response.is_success:
            logger.warning(
                f"Failed to send actions email to {external_id}: {response.status_code}"
            )
            return False
        return True

    async def create_realm(self, spec: RealmSpec) -> None:
        """Create a realm and its login client."""
        realm_payload: dict[str, Any] = {
            "realm": spec.realm,
            "displayName": spec.display_name,
            "enabled": True,
            "registrationAllowed": spec.registration_allowed,
            "registrationEmailAsUsername": True,
            "verifyEmail": spec.verify_email,
            "loginWithEmailAllowed": True,
        }
        if spec.frontend_url:
            realm_payload["attributes"] = {"frontendUrl": spec.frontend_url}

        response = await self._admin_request("POST", "", json=realm_payload)
        if response.status_code == 409:
            raise ConflictError(f"Realm {spec.realm} already exists")
        self._raise_for_status(response, f"create realm {spec.realm}")

        client_payload = {
            "clientId": spec.client_id,
            "enabled": True,
            "protocol": "openid-connect",
            "publicClient": False,
            "secret": self._config.client_secret,
            "standardFlowEnabled": True,
            "redirectUris": spec.redirect_uris,
            "webOrigins": spec.web_origins,
        }
        try:
            response = await self._admin_request(
                "POST", f"/{spec.realm}/clients", json=client_payload
            )
            self._raise_for_status(response, f"create client in realm {spec.realm}")
        except IdentityBrokerError:
            logger.error(f"Client creation failed in realm {spec.realm}, deleting the realm")
            try:
                await self.delete_realm(spec.realm)
            except IdentityBrokerError as e:
                logger.error(f"Failed to delete realm {spec.realm}: {e}")
            raise
        logger.info(f"Created realm {spec.realm}")

    async def delete_realm(self, realm: str) -> bool:
        """Delete a realm."""
        response = await self._admin_request("DELETE", f"/{realm}")
        if response.status_code == 404:
            return True
        if not response.is_success:
            logger.error(f"Failed to delete realm {realm}: {response.status_code}")
            return False
        return True

    async def disable_realm_registration(self, realm: str) -> bool:
        """Turn off self-registration in a realm."""
        response = await self._admin_request(
            "PUT", f"/{realm}", json={"registrationAllowed": False}
        )
        if not response.is_success:
            logger.warning(
                f"Failed to disable registration for realm {realm}: {response.status_code}"
            )
            return False
        return True
