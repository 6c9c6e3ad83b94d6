"""Entrypoints into tenantgate."""
