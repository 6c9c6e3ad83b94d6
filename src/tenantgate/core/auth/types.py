"""Auth domain types."""

from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field

from tenantgate.core.tenancy import TenantEntity

DEFAULT_INVITATION_DAYS = 7
DEFAULT_JOIN_LINK_DAYS = 7


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def _aware(value: datetime) -> datetime:
    # Handle timezone-naive datetimes from drivers that strip tzinfo
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class TenantType(str, Enum):
    """Kinds of tenant."""

    STANDARD = "standard"
    ENTERPRISE = "enterprise"


class InvitationStatus(str, Enum):
    """Invitation lifecycle. Pending -> Accepted is terminal."""

    PENDING = "pending"
    ACCEPTED = "accepted"


class User(BaseModel):
    """Local user, created on first successful authentication."""

    id: UUID
    email: str | None = None
    username: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    display_name: str | None = None
    is_active: bool = True
    created_at: datetime = Field(default_factory=utc_now)


class Tenant(BaseModel):
    """Organizational scope."""

    id: int
    name: str
    description: str | None = None
    tenant_type: TenantType = TenantType.STANDARD
    parent_tenant_id: int | None = None
    is_active: bool = True
    realm_name: str | None = None
    custom_domain: str | None = None
    sso_auto_join_domains: list[str] = Field(default_factory=list)
    sso_auto_join_role_id: int | None = None
    created_at: datetime = Field(default_factory=utc_now)

    @property
    def is_enterprise(self) -> bool:
        """Whether this tenant owns its own realm."""
        return self.tenant_type == TenantType.ENTERPRISE

    def allows_auto_join(self, domain: str) -> bool:
        """Whether principals from this email domain may join via SSO."""
        domain = domain.strip().lower()
        return bool(domain) and domain in {d.lower() for d in self.sso_auto_join_domains}


class Membership(BaseModel):
    """A user's access to one tenant."""

    user_id: UUID
    tenant_id: int
    is_admin: bool = False
    joined_at: datetime = Field(default_factory=utc_now)
    external_user_id: str | None = None


class TenantMembership(Membership):
    """Membership joined with its tenant's name."""

    tenant_name: str


class TenantInvitation(TenantEntity):
    """Single-use, email-targeted offer to join a tenant."""

    email: str
    invitation_token: str
    expires_at: datetime
    status: InvitationStatus = InvitationStatus.PENDING
    is_admin: bool = False
    created_by_user_id: UUID
    accepted_by_user_id: UUID | None = None
    accepted_at: datetime | None = None
    created_at: datetime = Field(default_factory=utc_now)

    def is_expired(self, now: datetime | None = None) -> bool:
        """Expiry is computed at read time; status is never set to expired."""
        return _aware(self.expires_at) <= (now or utc_now())

    def is_usable(self, now: datetime | None = None) -> bool:
        """Pending and not yet expired."""
        return self.status == InvitationStatus.PENDING and not self.is_expired(now)


class TenantJoinLink(TenantEntity):
    """Multi-use offer to join a tenant, valid until revoked or expired."""

    join_token: str
    expires_at: datetime
    is_revoked: bool = False
    default_role_id: int | None = None
    created_at: datetime = Field(default_factory=utc_now)

    def is_usable(self, now: datetime | None = None) -> bool:
        return not self.is_revoked and _aware(self.expires_at) > (now or utc_now())


class IdentityProfile(BaseModel):
    """Account as seen by the identity provider."""

    id: str
    username: str | None = None
    email: str | None = None
    email_verified: bool = False
    first_name: str | None = None
    last_name: str | None = None
    enabled: bool = True

    @property
    def verified_email(self) -> str | None:
        """Email only when the provider vouches for it."""
        if self.email and self.email_verified:
            return self.email
        return None


class TokenSet(BaseModel):
    """Tokens returned by the code exchange."""

    access_token: str
    refresh_token: str | None = None
    id_token: str | None = None
    token_type: str = "Bearer"
    expires_in: int = 0


class NewIdentityUser(BaseModel):
    """Provider-side account to create for a local-account invitation."""

    username: str
    email: str
    first_name: str | None = None
    last_name: str | None = None
    enabled: bool = True
    email_verified: bool = False


class RealmSpec(BaseModel):
    """Provider-side realm to create for an enterprise tenant."""

    realm: str
    display_name: str
    client_id: str
    redirect_uris: list[str] = Field(default_factory=list)
    web_origins: list[str] = Field(default_factory=list)
    registration_allowed: bool = True
    verify_email: bool = True
    frontend_url: str | None = None


class InvitationRequest(BaseModel):
    """Input for creating an invitation."""

    email: EmailStr
    is_admin: bool = False
    expiration_days: int = Field(default=DEFAULT_INVITATION_DAYS, ge=1, le=365)
    is_local_account: bool = True


class EnterpriseSignupRequest(BaseModel):
    """Input for provisioning a new enterprise tenant."""

    company_name: str = Field(min_length=1, max_length=255)
    contact_email: EmailStr
    contact_name: str | None = None
    requested_subdomain: str | None = Field(default=None, pattern=r"^[a-zA-Z0-9-]{1,63}$")
    custom_domain: str | None = None
    sso_auto_join_domains: list[str] = Field(default_factory=list)


class EnterpriseSignupResult(BaseModel):
    """Outcome of an enterprise signup."""

    tenant_id: int
    tenant_name: str
    realm_name: str
    invitation_url: str
    message: str


class TenantSelection(BaseModel):
    """One tenant a user may choose to enter."""

    tenant_id: int
    tenant_name: str
    is_admin: bool


class AuthCallbackResult(BaseModel):
    """Uniform outcome of an authentication callback or tenant selection."""

    success: bool
    flow: str
    token: str | None = None
    tenant_id: int | None = None
    tenant_name: str | None = None
    requires_tenant_selection: bool = False
    available_tenants: list[TenantSelection] | None = None
    is_new_organization: bool | None = None
    error_message: str | None = None
    error_code: str | None = None
    message: str | None = None

    def to_response(self) -> dict[str, Any]:
        """Serialize without unset optional fields."""
        return self.model_dump(mode="json", exclude_none=True)
