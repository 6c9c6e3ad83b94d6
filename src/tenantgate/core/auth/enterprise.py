"""Enterprise tenant signup.

Signup spans two systems. The realm is created in the identity provider
first, then the tenant row is written in one transaction. If anything after
realm creation fails the realm is deleted again; that compensation is best
effort and a failure to delete is only logged.
"""

from __future__ import annotations

import re
import secrets
from typing import TYPE_CHECKING

import structlog
from pydantic import ValidationError as PydanticValidationError

from tenantgate.core.auth.types import (
    EnterpriseSignupRequest,
    EnterpriseSignupResult,
    RealmSpec,
    TenantType,
)
from tenantgate.core.exceptions import IdentityBrokerError, ValidationError
from tenantgate.core.sso.settings import normalize_domains

if TYPE_CHECKING:
    from tenantgate.core.auth.urls import AuthUrlBuilder
    from tenantgate.core.interfaces import IdentityBroker, UnitOfWork

logger = structlog.get_logger()


def realm_slug(request: EnterpriseSignupRequest) -> str:
    """Realm-safe slug from the requested subdomain or the company name."""
    source = request.requested_subdomain or request.company_name
    slug = re.sub(r"[^a-z0-9]+", "", source.lower())[:40]
    if not slug:
        raise ValidationError("Company name must contain letters or digits")
    return slug


def generate_realm_name(request: EnterpriseSignupRequest) -> str:
    """``tenant_{slug}_{4 hex}``; the suffix keeps retried signups apart."""
    return f"tenant_{realm_slug(request)}_{secrets.token_hex(2)}"


class EnterpriseSignupService:
    """Provisions an enterprise tenant with its own realm."""

    def __init__(
        self,
        uow: UnitOfWork,
        broker: IdentityBroker,
        urls: AuthUrlBuilder,
        *,
        client_id: str,
    ) -> None:
        """Initialize the service.

        Args:
            uow: Unit of work for the tenant insert.
            broker: Identity provider that owns realms.
            urls: Builds the first administrator's registration URL.
            client_id: Login client created inside each new realm.
        """
        self._uow = uow
        self._broker = broker
        self._urls = urls
        self._client_id = client_id

    async def signup(
        self,
        request: EnterpriseSignupRequest | dict[str, object],
        redirect_uri: str,
    ) -> EnterpriseSignupResult:
        """Create realm and tenant, return where the first admin registers.

        Raises:
            ValidationError: Malformed request.
            IdentityBrokerError: Realm could not be created.
            ConflictError: Realm name already belongs to a tenant.
        """
        if not isinstance(request, EnterpriseSignupRequest):
            try:
                request = EnterpriseSignupRequest.model_validate(request)
            except PydanticValidationError as e:
                raise ValidationError(f"Invalid signup: {e.errors()[0]['msg']}") from None

        domains = normalize_domains(request.sso_auto_join_domains)
        realm = generate_realm_name(request)
        frontend_url = f"https://{request.custom_domain}" if request.custom_domain else None

        try:
            await self._broker.create_realm(
                RealmSpec(
                    realm=realm,
                    display_name=request.company_name,
                    client_id=self._client_id,
                    redirect_uris=[redirect_uri],
                    web_origins=[frontend_url] if frontend_url else [],
                    frontend_url=frontend_url,
                )
            )
        except IdentityBrokerError:
            # The realm may exist even though setup failed.
            logger.exception("enterprise_realm_creation_failed", realm=realm)
            await self._compensate(realm)
            raise
        logger.info("enterprise_realm_created", realm=realm)

        try:
            async with self._uow.transaction() as store:
                tenant = await store.tenants.create_tenant(
                    name=request.company_name,
                    tenant_type=TenantType.ENTERPRISE,
                    realm_name=realm,
                    custom_domain=request.custom_domain,
                    sso_auto_join_domains=domains,
                )
        except Exception:
            logger.exception("enterprise_tenant_creation_failed", realm=realm)
            await self._compensate(realm)
            raise

        url = self._urls.enterprise_first_admin_url(redirect_uri, realm)
        logger.info(
            "enterprise_signup_completed",
            tenant_id=tenant.id,
            realm=realm,
            contact_email=str(request.contact_email),
        )
        return EnterpriseSignupResult(
            tenant_id=tenant.id,
            tenant_name=tenant.name,
            realm_name=realm,
            invitation_url=url,
            message="Enterprise tenant created. Register the first administrator to finish setup.",
        )

    async def _compensate(self, realm: str) -> None:
        try:
            deleted = await self._broker.delete_realm(realm)
        except IdentityBrokerError as e:
            logger.error("enterprise_realm_cleanup_failed", realm=realm, error=str(e))
            return
        if deleted:
            logger.info("enterprise_realm_cleaned_up", realm=realm)
        else:
            logger.error("enterprise_realm_cleanup_failed", realm=realm)
