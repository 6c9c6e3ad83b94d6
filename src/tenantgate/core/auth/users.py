"""Local user provisioning from identity provider accounts."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING
from uuid import UUID

import structlog

from tenantgate.core.auth.types import IdentityProfile, User

if TYPE_CHECKING:
    from tenantgate.core.interfaces import AuthStore

logger = structlog.get_logger()


@dataclass(frozen=True)
class Principal:
    """An authenticated provider account resolved to a (candidate) local user.

    ``user_id`` may not be persisted yet; ``is_known`` tells whether it came
    from an existing identity link.
    """

    user_id: UUID
    realm: str
    profile: IdentityProfile
    is_known: bool = False

    @property
    def external_id(self) -> str:
        return self.profile.id

    @property
    def verified_email(self) -> str | None:
        return self.profile.verified_email


def user_from_profile(user_id: UUID, profile: IdentityProfile) -> User:
    """Build a local user row from a provider profile."""
    display = " ".join(p for p in (profile.first_name, profile.last_name) if p) or None
    return User(
        id=user_id,
        email=profile.email.lower() if profile.email else None,
        username=profile.username,
        first_name=profile.first_name,
        last_name=profile.last_name,
        display_name=display or profile.username,
        is_active=profile.enabled,
    )


async def ensure_local_user(store: AuthStore, principal: Principal) -> User:
    """Idempotently create the local user and link the provider account.

    Repeated calls for the same (user id, realm, external id) leave exactly one
    user row and one identity link.
    """
    user = await store.users.upsert_user(user_from_profile(principal.user_id, principal.profile))
    await store.users.link_identity(user.id, principal.realm, principal.external_id)
    if not principal.is_known:
        logger.info(
            "local_user_provisioned",
            user_id=str(user.id),
            realm=principal.realm,
            external_id=principal.external_id,
        )
    return user
