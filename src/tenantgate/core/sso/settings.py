"""Enterprise tenant SSO auto-join settings."""

from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING

import structlog

from tenantgate.core.exceptions import NotFoundError, ValidationError

if TYPE_CHECKING:
    from tenantgate.core.auth.types import Tenant
    from tenantgate.core.interfaces import AuthStore

logger = structlog.get_logger()


def normalize_domains(domains: Iterable[str]) -> list[str]:
    """Lowercase, strip a leading ``@`` and drop blanks and duplicates."""
    seen: dict[str, None] = {}
    for raw in domains:
        domain = raw.strip().lower().lstrip("@")
        if not domain:
            continue
        if "." not in domain or " " in domain or "@" in domain:
            raise ValidationError(f"Invalid email domain: {raw!r}")
        seen.setdefault(domain, None)
    return list(seen)


class SsoSettingsService:
    """Reads and replaces a tenant's SSO auto-join configuration."""

    async def configure(
        self,
        store: AuthStore,
        tenant_id: int,
        domains: Iterable[str],
        role_id: int | None = None,
    ) -> Tenant:
        """Replace the auto-join domains and default role of an enterprise tenant.

        Raises:
            NotFoundError: Unknown tenant, or a role outside the tenant.
            ValidationError: Tenant is not enterprise, or a domain is malformed.
        """
        tenant = await store.tenants.get_tenant(tenant_id)
        if tenant is None:
            raise NotFoundError(f"Tenant {tenant_id} not found")
        if not tenant.is_enterprise:
            raise ValidationError("SSO auto-join is only available for enterprise tenants")
        normalized = normalize_domains(domains)
        if role_id is not None and await store.roles.get_role(tenant_id, role_id) is None:
            raise NotFoundError(f"Role {role_id} not found")

        updated = await store.tenants.update_sso_settings(tenant_id, normalized, role_id)
        if updated is None:
            raise NotFoundError(f"Tenant {tenant_id} not found")
        logger.info(
            "sso_settings_updated", tenant_id=tenant_id, domains=normalized, role_id=role_id
        )
        return updated
