"""Identity provider adapters."""

from tenantgate.adapters.identity.keycloak import KeycloakConfig, KeycloakIdentityBroker

__all__ = ["KeycloakConfig", "KeycloakIdentityBroker"]
