"""Application database adapter using asyncpg."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import asyncpg
import structlog

logger = structlog.get_logger()

SCHEMA_PATH = Path(__file__).with_name("schema.sql")


class AppDatabase:
    """Connection pool for tenants, users, memberships, invitations and RBAC tables."""

    def __init__(self, dsn: str, *, min_size: int = 2, max_size: int = 10):
        """Initialize the app database adapter."""
        self.dsn = dsn
        self.min_size = min_size
        self.max_size = max_size
        self.pool: asyncpg.Pool[asyncpg.Connection[asyncpg.Record]] | None = None

    async def connect(self) -> None:
        """Create connection pool."""
        self.pool = await asyncpg.create_pool(
            self.dsn,
            min_size=self.min_size,
            max_size=self.max_size,
            command_timeout=60,
        )
        logger.info("app_database_connected", dsn=self.dsn.split("@")[-1])

    async def close(self) -> None:
        """Close connection pool."""
        if self.pool:
            await self.pool.close()
            logger.info("app_database_disconnected")

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[asyncpg.Connection[asyncpg.Record]]:
        """Acquire a connection from the pool."""
        if self.pool is None:
            raise RuntimeError("Database pool not initialized")
        async with self.pool.acquire() as conn:
            yield conn

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[asyncpg.Connection[asyncpg.Record]]:
        """Acquire a connection and run the block in one transaction."""
        async with self.acquire() as conn:
            async with conn.transaction():
                yield conn

    async def fetch_one(self, query: str, *args: Any) -> dict[str, Any] | None:
        """Fetch a single row."""
        async with self.acquire() as conn:
            row = await conn.fetchrow(query, *args)
            if row:
                return dict(row)
            return None

    async def execute(self, query: str, *args: Any) -> str:
        """Execute a query and return status."""
        async with self.acquire() as conn:
            result: str = await conn.execute(query, *args)
            return result

    async def apply_schema(self) -> None:
        """Create tables if they do not exist."""
        await self.execute(SCHEMA_PATH.read_text())
        logger.info("app_database_schema_applied")
