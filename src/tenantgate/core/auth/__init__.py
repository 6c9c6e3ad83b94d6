"""Authentication flows: callback orchestration, invitations and join links."""

from tenantgate.core.auth.enterprise import EnterpriseSignupService
from tenantgate.core.auth.invitations import InvitationLedger
from tenantgate.core.auth.join_links import JoinLinkLedger
from tenantgate.core.auth.jwt import SessionClaims, TokenError, TokenIssuer
from tenantgate.core.auth.orchestrator import AuthFlowOrchestrator
from tenantgate.core.auth.session import TenantSessionService
from tenantgate.core.auth.state import AuthFlow, CallbackState, decode_state, encode_state
from tenantgate.core.auth.types import (
    AuthCallbackResult,
    IdentityProfile,
    InvitationRequest,
    InvitationStatus,
    Membership,
    Tenant,
    TenantInvitation,
    TenantJoinLink,
    TenantSelection,
    TenantType,
    User,
)
from tenantgate.core.auth.urls import AuthUrlBuilder

__all__ = [
    "AuthCallbackResult",
    "AuthFlow",
    "AuthFlowOrchestrator",
    "AuthUrlBuilder",
    "CallbackState",
    "EnterpriseSignupService",
    "IdentityProfile",
    "InvitationLedger",
    "InvitationRequest",
    "InvitationStatus",
    "JoinLinkLedger",
    "Membership",
    "SessionClaims",
    "Tenant",
    "TenantInvitation",
    "TenantJoinLink",
    "TenantSelection",
    "TenantSessionService",
    "TenantType",
    "TokenError",
    "TokenIssuer",
    "User",
    "decode_state",
    "encode_state",
]
