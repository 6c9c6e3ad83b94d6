"""Session token authentication dependencies."""

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Annotated, Any
from uuid import UUID

import structlog
from fastapi import Depends, HTTPException, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from tenantgate.core.auth.jwt import TokenError, TokenIssuer
from tenantgate.core.rbac.permission_service import PermissionResolver

logger = structlog.get_logger()

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass
class SessionContext:
    """Context from a verified session token."""

    user_id: UUID
    tenant_id: int
    roles: tuple[str, ...] = ()
    claims: dict[str, Any] = field(default_factory=dict)


async def verify_session(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Security(bearer_scheme),  # noqa: B008
) -> SessionContext:
    """Verify the session token and return its context.

    Expects ``app.state.token_issuer`` to hold a TokenIssuer.

    Raises:
        HTTPException: 401 if the token is missing or invalid.
    """
    if not credentials:
        raise HTTPException(
            status_code=401,
            detail="Missing authentication token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    issuer: TokenIssuer = request.app.state.token_issuer
    try:
        session = issuer.decode(credentials.credentials)
    except TokenError as e:
        logger.warning("session_token_rejected", reason=str(e))
        raise HTTPException(
            status_code=401,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        ) from None

    context = SessionContext(
        user_id=session.user_id,
        tenant_id=session.tenant_id,
        roles=session.roles,
        claims=session.claims,
    )
    request.state.session = context

    logger.debug(
        "session_verified",
        user_id=str(context.user_id),
        tenant_id=context.tenant_id,
    )
    return context


def require_permission(*permissions: str) -> Callable[..., Any]:
    """Dependency requiring at least one of the named permissions.

    Usage:
        @router.post("/invitations")
        async def invite(
            auth: Annotated[SessionContext, Depends(require_permission("users:invite"))],
        ):
            ...
    """

    async def permission_checker(
        request: Request,
        auth: Annotated[SessionContext, Depends(verify_session)],
    ) -> SessionContext:
        resolver: PermissionResolver = request.app.state.permission_resolver
        allowed = await resolver.has_any_permission(
            auth.user_id, permissions, role_claims=auth.roles
        )
        if not allowed:
            logger.info(
                "permission_denied",
                user_id=str(auth.user_id),
                required=list(permissions),
            )
            raise HTTPException(
                status_code=403,
                detail=f"One of {', '.join(permissions)} required",
            )
        return auth

    return permission_checker
