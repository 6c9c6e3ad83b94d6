"""tenantgate - resolve identity provider logins into tenant-scoped sessions."""

__version__ = "0.1.0"
