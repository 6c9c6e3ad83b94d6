"""Request dependencies for session verification and permission checks."""

from tenantgate.entrypoints.api.middleware.jwt_auth import (
    SessionContext,
    require_permission,
    verify_session,
)

__all__ = ["SessionContext", "require_permission", "verify_session"]
