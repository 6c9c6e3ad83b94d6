"""Database adapters."""

from tenantgate.adapters.db.app_db import AppDatabase
from tenantgate.adapters.db.memory import InMemoryDatabase, InMemoryUnitOfWork
from tenantgate.adapters.db.unit_of_work import PostgresAuthStore, PostgresUnitOfWork

__all__ = [
    "AppDatabase",
    "InMemoryDatabase",
    "InMemoryUnitOfWork",
    "PostgresAuthStore",
    "PostgresUnitOfWork",
]
