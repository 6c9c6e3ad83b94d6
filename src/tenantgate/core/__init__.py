"""Core domain logic: auth flows, tenancy isolation, SSO matching and RBAC."""
