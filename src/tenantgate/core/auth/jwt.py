"""Session token creation and validation."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any
from uuid import UUID

import jwt

from tenantgate.core.exceptions import AuthenticationError, ConfigurationError

if TYPE_CHECKING:
    from tenantgate.config import Settings

ALGORITHM = "HS256"
SESSION_TOKEN_LIFETIME = timedelta(hours=1)

# Registered claims of the broker token that must not leak into ours.
EXCLUDED_CLAIMS = frozenset({"iss", "aud", "exp", "nbf", "iat", "jti"})


class TokenError(Exception):
    """Raised when session token validation fails."""

    pass


@dataclass(frozen=True)
class SessionClaims:
    """Decoded session token."""

    user_id: UUID
    tenant_id: int
    roles: tuple[str, ...] = ()
    claims: dict[str, Any] = field(default_factory=dict)


def read_unverified_claims(token: str) -> dict[str, Any]:
    """Read claims from a broker token without checking its signature.

    The token was just obtained from the broker over a back channel, so its
    content is trusted as given.

    Raises:
        AuthenticationError: If the token cannot be parsed.
    """
    try:
        claims: dict[str, Any] = jwt.decode(
            token,
            options={"verify_signature": False, "verify_exp": False, "verify_aud": False},
        )
    except jwt.InvalidTokenError as e:
        raise AuthenticationError(f"Unreadable token from identity provider: {e}") from None
    return claims


def extract_role_claims(claims: dict[str, Any]) -> tuple[str, ...]:
    """Collect role names from a top-level ``roles`` claim and ``realm_access.roles``."""
    roles: list[str] = []
    direct = claims.get("roles")
    if isinstance(direct, list):
        roles.extend(str(r) for r in direct)
    realm_access = claims.get("realm_access")
    if isinstance(realm_access, dict) and isinstance(realm_access.get("roles"), list):
        roles.extend(str(r) for r in realm_access["roles"])
    return tuple(dict.fromkeys(roles))


class TokenIssuer:
    """Mints session tokens scoped to one tenant."""

    def __init__(
        self,
        secret: str,
        *,
        issuer: str | None = None,
        audience: str | None = None,
        lifetime: timedelta = SESSION_TOKEN_LIFETIME,
    ) -> None:
        """Initialize the issuer.

        Args:
            secret: HMAC signing key.
            issuer: Optional ``iss`` claim to set and require.
            audience: Optional ``aud`` claim to set and require.
            lifetime: Token lifetime.
        """
        if not secret:
            raise ConfigurationError("JWT secret is not configured")
        self._secret = secret
        self._issuer = issuer
        self._audience = audience
        self._lifetime = lifetime

    @classmethod
    def from_settings(cls, settings: Settings) -> TokenIssuer:
        settings.require_jwt_secret()
        return cls(
            settings.jwt_secret,
            issuer=settings.jwt_issuer or None,
            audience=settings.jwt_audience or None,
        )

    def issue(self, user_id: UUID, tenant_id: int, claims: dict[str, Any] | None = None) -> str:
        """Create a session token.

        Args:
            user_id: Local user id.
            tenant_id: Tenant the session is scoped to.
            claims: Broker token claims to pass through (profile and roles).

        Returns:
            Encoded JWT string.
        """
        now = datetime.now(UTC)
        payload = {k: v for k, v in (claims or {}).items() if k not in EXCLUDED_CLAIMS}
        payload["tenant_id"] = str(tenant_id)
        payload["user_id"] = str(user_id)
        payload["iat"] = int(now.timestamp())
        payload["exp"] = int((now + self._lifetime).timestamp())
        if self._issuer:
            payload["iss"] = self._issuer
        if self._audience:
            payload["aud"] = self._audience
        return jwt.encode(payload, self._secret, algorithm=ALGORITHM)

    def decode(self, token: str) -> SessionClaims:
        """Decode and validate a session token.

        Raises:
            TokenError: If the token is invalid, expired or lacks tenant scope.
        """
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[ALGORITHM],
                issuer=self._issuer,
                audience=self._audience,
                options={"verify_aud": self._audience is not None},
            )
        except jwt.ExpiredSignatureError:
            raise TokenError("Token has expired") from None
        except jwt.InvalidTokenError as e:
            raise TokenError(f"Invalid token: {e}") from None

        try:
            user_id = UUID(str(payload["user_id"]))
            tenant_id = int(payload["tenant_id"])
        except (KeyError, ValueError):
            raise TokenError("Token is missing tenant scope") from None

        return SessionClaims(
            user_id=user_id,
            tenant_id=tenant_id,
            roles=extract_role_claims(payload),
            claims=payload,
        )
