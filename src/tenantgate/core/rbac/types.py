"""RBAC domain types."""

from dataclasses import dataclass, field

# Role name the SSO auto-join falls back to when a tenant has no default role.
MEMBER_ROLE_NAME = "Member"


@dataclass(frozen=True)
class Role:
    """A named role inside one tenant."""

    id: int
    tenant_id: int
    name: str
    description: str | None = None


@dataclass(frozen=True)
class Policy:
    """A named bundle of permissions."""

    id: int
    name: str
    permission_names: frozenset[str] = field(default_factory=frozenset)


@dataclass(frozen=True)
class Permission:
    """A single permission name, e.g. ``invitations.create``."""

    id: int
    name: str
