"""Adapters for the database and the identity provider."""
