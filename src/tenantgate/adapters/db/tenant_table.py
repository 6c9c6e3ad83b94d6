"""asyncpg row storage for tenant entities."""

from __future__ import annotations

from collections.abc import Mapping
from enum import Enum
from typing import TYPE_CHECKING, Any, Generic, TypeVar

import asyncpg

from tenantgate.core.exceptions import ConflictError
from tenantgate.core.tenancy import TenantEntity

if TYPE_CHECKING:
    from asyncpg import Connection

E = TypeVar("E", bound=TenantEntity)


def _param(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


class PostgresTable(Generic[E]):
    """RecordBackend over one table.

    Column names are checked against the model's fields before they are
    interpolated into SQL; values are always bound parameters.
    """

    def __init__(self, conn: Connection, table: str, model: type[E]) -> None:
        """Initialize the table.

        Args:
            conn: Connection, usually inside a transaction.
            table: Table name.
            model: Model rows are returned as.
        """
        self._conn = conn
        self._table = table
        self._model = model
        self._columns = frozenset(model.model_fields)

    @property
    def model(self) -> type[E]:
        return self._model

    def _column(self, name: str) -> str:
        if name not in self._columns:
            raise ValueError(f"Unknown column {name!r} for {self._table}")
        return name

    def _where(self, filters: Mapping[str, Any], params: list[Any]) -> str:
        if not filters:
            return ""
        clauses = []
        for name, value in filters.items():
            params.append(_param(value))
            clauses.append(f"{self._column(name)} = ${len(params)}")
        return " WHERE " + " AND ".join(clauses)

    async def select(
        self,
        filters: Mapping[str, Any],
        *,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[E]:
        params: list[Any] = []
        query = f"SELECT * FROM {self._table}{self._where(filters, params)}"
        if order_by:
            query += f" ORDER BY {self._column(order_by)} {'DESC' if descending else 'ASC'}"
        if limit is not None:
            params.append(limit)
            query += f" LIMIT ${len(params)}"
        if offset:
            params.append(offset)
            query += f" OFFSET ${len(params)}"
        rows = await self._conn.fetch(query, *params)
        return [self._model.model_validate(dict(row)) for row in rows]

    async def count(self, filters: Mapping[str, Any]) -> int:
        params: list[Any] = []
        query = f"SELECT COUNT(*) FROM {self._table}{self._where(filters, params)}"
        result = await self._conn.fetchval(query, *params)
        return int(result or 0)

    async def insert(self, values: Mapping[str, Any]) -> E:
        columns = [self._column(name) for name in values]
        placeholders = ", ".join(f"${i}" for i in range(1, len(columns) + 1))
        query = (
            f"INSERT INTO {self._table} ({', '.join(columns)}) "
            f"VALUES ({placeholders}) RETURNING *"
        )
        try:
            row = await self._conn.fetchrow(query, *(_param(v) for v in values.values()))
        except asyncpg.UniqueViolationError as e:
            raise ConflictError(f"Duplicate {self._model.__name__}: {e.constraint_name}") from e
        assert row is not None, "INSERT RETURNING should always return a row"
        return self._model.model_validate(dict(row))

    async def update(self, filters: Mapping[str, Any], values: Mapping[str, Any]) -> E | None:
        if not values:
            rows = await self.select(filters, limit=1)
            return rows[0] if rows else None
        params: list[Any] = []
        assignments = []
        for name, value in values.items():
            params.append(_param(value))
            assignments.append(f"{self._column(name)} = ${len(params)}")
        query = (
            f"UPDATE {self._table} SET {', '.join(assignments)}"
            f"{self._where(filters, params)} RETURNING *"
        )
        row = await self._conn.fetchrow(query, *params)
        return self._model.model_validate(dict(row)) if row else None

    async def delete(self, filters: Mapping[str, Any]) -> bool:
        params: list[Any] = []
        query = f"DELETE FROM {self._table}{self._where(filters, params)} RETURNING id"
        row = await self._conn.fetchrow(query, *params)
        return row is not None
