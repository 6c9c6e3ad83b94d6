"""Tenant-scoped data access.

Every entity that carries a ``tenant_id`` is a tenant entity. Reads and
writes on tenant entities go through ``TenantScopedStore``, which takes the
tenant id as an explicit argument and composes two small strategies:

* ``FilterByTenant`` intersects every read/update/delete with the tenant id.
* ``StampTenantOnCreate`` writes the tenant id onto new rows, overwriting any
  value the caller supplied.

A row owned by another tenant is indistinguishable from a missing row: the
store raises ``NotFoundError`` rather than a permission error.

The only sanctioned bypass is ``CrossTenantLookup``, restricted to an
explicit set of fields (invitation token, join token, email).
"""

from __future__ import annotations

import builtins
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Generic, Protocol, TypeVar

import structlog
from pydantic import BaseModel

from tenantgate.core.exceptions import NotFoundError

logger = structlog.get_logger()

TENANT_COLUMN = "tenant_id"
MAX_PAGE_SIZE = 500


class TenantEntity(BaseModel):
    """Capability marker for models owned by exactly one tenant."""

    id: int
    tenant_id: int


def is_tenant_entity(model: type[BaseModel]) -> bool:
    """Return True if the model carries a tenant identifier field."""
    return TENANT_COLUMN in model.model_fields


T = TypeVar("T", bound=TenantEntity)


class RecordBackend(Protocol[T]):
    """Row storage for one entity type.

    Filters are equality matches on column names. Backends know nothing about
    tenants; isolation is applied by the store on top of them.
    """

    @property
    def model(self) -> type[T]:
        """Model class rows are returned as."""
        ...

    async def select(
        self,
        filters: Mapping[str, Any],
        *,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[T]:
        """Return rows matching all filters."""
        ...

    async def count(self, filters: Mapping[str, Any]) -> int:
        """Count rows matching all filters."""
        ...

    async def insert(self, values: Mapping[str, Any]) -> T:
        """Insert a row and return it."""
        ...

    async def update(self, filters: Mapping[str, Any], values: Mapping[str, Any]) -> T | None:
        """Update the single row matching filters; None when nothing matched."""
        ...

    async def delete(self, filters: Mapping[str, Any]) -> bool:
        """Delete the row matching filters; False when nothing matched."""
        ...


@dataclass(frozen=True)
class FilterByTenant:
    """Restrict a filter set to one tenant."""

    column: str = TENANT_COLUMN

    def apply(self, tenant_id: int, filters: Mapping[str, Any] | None) -> dict[str, Any]:
        scoped = dict(filters or {})
        scoped[self.column] = tenant_id
        return scoped


@dataclass(frozen=True)
class StampTenantOnCreate:
    """Write the ambient tenant id onto values for a new row."""

    column: str = TENANT_COLUMN

    def apply(self, tenant_id: int, values: Mapping[str, Any]) -> dict[str, Any]:
        stamped = dict(values)
        supplied = stamped.get(self.column)
        if supplied is not None and supplied != tenant_id:
            logger.warning(
                "tenant_id_overwritten_on_create",
                supplied_tenant_id=supplied,
                tenant_id=tenant_id,
            )
        stamped[self.column] = tenant_id
        return stamped


@dataclass
class Page(Generic[T]):
    """One page of a tenant-scoped listing."""

    items: list[T]
    total: int
    page: int
    page_size: int

    @property
    def has_next(self) -> bool:
        """Whether another page follows this one."""
        return self.page * self.page_size < self.total


class TenantScopedStore(Generic[T]):
    """CRUD over a tenant entity, isolated by an explicit tenant id."""

    def __init__(
        self,
        backend: RecordBackend[T],
        *,
        tenant_filter: FilterByTenant | None = None,
        tenant_stamp: StampTenantOnCreate | None = None,
    ) -> None:
        """Initialize the store.

        Args:
            backend: Row storage for the entity.
            tenant_filter: Strategy narrowing reads and writes to a tenant.
            tenant_stamp: Strategy stamping the tenant on created rows.

        Raises:
            TypeError: If the backend's model is not a tenant entity.
        """
        if not is_tenant_entity(backend.model):
            raise TypeError(f"{backend.model.__name__} does not carry a tenant id")
        self._backend = backend
        self._filter = tenant_filter or FilterByTenant()
        self._stamp = tenant_stamp or StampTenantOnCreate()

    @property
    def entity_name(self) -> str:
        """Human name of the entity, used in not-found messages."""
        return self._backend.model.__name__

    def _not_found(self, entity_id: int) -> NotFoundError:
        return NotFoundError(f"{self.entity_name} {entity_id} not found")

    async def list(
        self,
        tenant_id: int,
        *,
        filters: Mapping[str, Any] | None = None,
        order_by: str | None = "id",
        descending: bool = False,
        page: int = 1,
        page_size: int = 50,
    ) -> Page[T]:
        """List rows of one tenant, paginated."""
        page = max(page, 1)
        page_size = min(max(page_size, 1), MAX_PAGE_SIZE)
        scoped = self._filter.apply(tenant_id, filters)
        total = await self._backend.count(scoped)
        items = await self._backend.select(
            scoped,
            order_by=order_by,
            descending=descending,
            limit=page_size,
            offset=(page - 1) * page_size,
        )
        return Page(items=items, total=total, page=page, page_size=page_size)

    async def find(
        self,
        tenant_id: int,
        filters: Mapping[str, Any] | None = None,
        *,
        order_by: str | None = "id",
        descending: bool = False,
    ) -> builtins.list[T]:
        """Return every row of one tenant matching filters."""
        return await self._backend.select(
            self._filter.apply(tenant_id, filters),
            order_by=order_by,
            descending=descending,
        )

    async def get(self, tenant_id: int, entity_id: int) -> T:
        """Get a row by id within a tenant.

        Raises:
            NotFoundError: If no row with this id belongs to the tenant.
        """
        rows = await self._backend.select(self._filter.apply(tenant_id, {"id": entity_id}))
        if not rows:
            raise self._not_found(entity_id)
        return rows[0]

    async def create(self, tenant_id: int, values: Mapping[str, Any]) -> T:
        """Create a row owned by the tenant, ignoring any supplied tenant id."""
        row = await self._backend.insert(self._stamp.apply(tenant_id, values))
        logger.debug("tenant_entity_created", entity=self.entity_name, tenant_id=tenant_id)
        return row

    async def update(
        self,
        tenant_id: int,
        entity_id: int,
        values: Mapping[str, Any],
        *,
        expected: Mapping[str, Any] | None = None,
    ) -> T:
        """Update a row within a tenant.

        Args:
            tenant_id: Owning tenant.
            entity_id: Row id.
            values: Columns to change. ``tenant_id`` and ``id`` are dropped;
                rows never move between tenants.
            expected: Extra equality conditions the row must still satisfy.

        Raises:
            NotFoundError: If the row is missing, foreign, or no longer
                matches ``expected``.
        """
        changes = {k: v for k, v in values.items() if k not in (self._filter.column, "id")}
        filters = self._filter.apply(tenant_id, {**(expected or {}), "id": entity_id})
        row = await self._backend.update(filters, changes)
        if row is None:
            raise self._not_found(entity_id)
        return row

    async def delete(self, tenant_id: int, entity_id: int) -> None:
        """Delete a row within a tenant.

        Raises:
            NotFoundError: If no row with this id belongs to the tenant.
        """
        deleted = await self._backend.delete(self._filter.apply(tenant_id, {"id": entity_id}))
        if not deleted:
            raise self._not_found(entity_id)

    async def export(
        self,
        tenant_id: int,
        filters: Mapping[str, Any] | None = None,
    ) -> builtins.list[dict[str, Any]]:
        """Return all rows of a tenant as plain dicts, ready for formatting."""
        rows = await self.find(tenant_id, filters)
        return [row.model_dump(mode="json") for row in rows]


@dataclass
class CrossTenantLookup(Generic[T]):
    """Lookups that deliberately ignore tenant boundaries.

    Only the fields listed in ``allowed_fields`` can be searched; anything
    else raises ``ValueError`` so new bypasses cannot appear by accident.
    """

    backend: RecordBackend[T]
    allowed_fields: frozenset[str] = field(default_factory=frozenset)

    def _check(self, field_name: str) -> None:
        if field_name not in self.allowed_fields:
            raise ValueError(
                f"Cross-tenant lookup on {self.backend.model.__name__}.{field_name} "
                "is not allowed"
            )

    async def find_one(self, field_name: str, value: Any) -> T | None:
        """Return the single row whose field equals value, from any tenant."""
        self._check(field_name)
        rows = await self.backend.select({field_name: value}, limit=1)
        return rows[0] if rows else None

    async def find_all(
        self,
        field_name: str,
        value: Any,
        *,
        extra: Mapping[str, Any] | None = None,
        order_by: str | None = "id",
    ) -> Sequence[T]:
        """Return every row whose field equals value, from any tenant."""
        self._check(field_name)
        return await self.backend.select({**(extra or {}), field_name: value}, order_by=order_by)
