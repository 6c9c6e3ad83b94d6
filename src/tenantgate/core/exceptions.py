"""Domain-specific exceptions.

All exceptions in tenantgate inherit from TenantGateError, so callers can
catch every system error with one clause while still handling the specific
cases. Each class carries a short machine-readable ``code`` that the auth
flow results expose to clients alongside the human message.
"""

from __future__ import annotations


class TenantGateError(Exception):
    """Base exception for all tenantgate errors."""

    code = "tenantgate_error"

    def __init__(self, message: str) -> None:
        """Initialize the error.

        Args:
            message: Human readable description, safe to show to end users.
        """
        super().__init__(message)
        self.message = message


class ConfigurationError(TenantGateError):
    """Required configuration is missing or invalid.

    This is a FATAL error. It is raised at construction time (for example
    when identity provider settings are absent) and is never turned into a
    flow result.
    """

    code = "configuration_error"


class ValidationError(TenantGateError):
    """Input failed validation.

    Covers malformed callback state (a flow that needs a token the state
    does not carry) and invalid request fields. Recoverable by restarting
    the login.
    """

    code = "validation_error"


class AuthenticationError(TenantGateError):
    """The identity provider did not authenticate the principal.

    Raised when the authorization code cannot be exchanged or the returned
    token has no subject claim. Surfaced to the caller, never retried.
    """

    code = "authentication_error"


class NotFoundError(TenantGateError):
    """Referenced entity does not exist in the caller's scope.

    Tenant-scoped reads raise this for rows owned by another tenant, so the
    existence of foreign rows is never revealed.
    """

    code = "not_found"


class ExpiredOrRevokedError(TenantGateError):
    """Entity exists but can no longer be used (expired, revoked, consumed)."""

    code = "expired_or_revoked"


class InvitationInvalidOrExpiredError(ExpiredOrRevokedError):
    """Invitation was already accepted or is past its expiry."""

    code = "invalid_or_expired_invitation"


class ConflictError(TenantGateError):
    """Operation conflicts with current state. No mutation was made."""

    code = "conflict"


class AlreadyMemberError(ConflictError):
    """User already holds a membership in the tenant."""

    code = "already_member"


class AlreadyHasAdministratorError(ConflictError):
    """Enterprise tenant already has its first administrator."""

    code = "already_has_administrator"


class AuthorizationDenied(TenantGateError):
    """Authenticated principal is not allowed into the tenant."""

    code = "authorization_denied"


class EmailMismatchError(AuthorizationDenied):
    """Invitation targets a different email address than the principal's."""

    code = "email_mismatch"


class SsoAccessDenied(AuthorizationDenied):
    """Enterprise SSO principal matched neither an auto-join domain nor an invitation."""

    code = "sso_access_denied"


class IdentityBrokerError(TenantGateError):
    """Call to the identity provider failed.

    Attributes:
        status_code: HTTP status returned by the provider, if any.
        endpoint: Provider endpoint that was called.
    """

    code = "identity_broker_error"

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        endpoint: str | None = None,
    ) -> None:
        """Initialize IdentityBrokerError.

        Args:
            message: Error description.
            status_code: HTTP status code from the provider.
            endpoint: Provider endpoint path.
        """
        super().__init__(message)
        self.status_code = status_code
        self.endpoint = endpoint

    def __str__(self) -> str:
        """Include status and endpoint when known."""
        parts = [self.message]
        if self.status_code is not None:
            parts.append(f"status={self.status_code}")
        if self.endpoint:
            parts.append(f"endpoint={self.endpoint}")
        return " ".join(parts)
