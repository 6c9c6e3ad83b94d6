"""Enterprise SSO: auto-join by email domain and tenant SSO settings."""

from tenantgate.core.sso.matcher import SsoAutoJoinMatcher, SsoDecision, SsoJoinPath
from tenantgate.core.sso.settings import SsoSettingsService, normalize_domains

__all__ = [
    "SsoAutoJoinMatcher",
    "SsoDecision",
    "SsoJoinPath",
    "SsoSettingsService",
    "normalize_domains",
]
