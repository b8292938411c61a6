"""Tenant-scoped access to tenant-owned tables.

``TenantScopedStore`` is the only sanctioned path to rows that carry a
``tenant_id``. Every read conjoins the ambient tenant into the WHERE clause
and every write checks the row's tenant against it first.
"""

from __future__ import annotations

import builtins
from typing import TYPE_CHECKING, Any, Generic, TypeVar

import structlog
from sqlalchemy import delete, func
from sqlmodel import SQLModel, col, select

from tenantguard.exceptions import NotFound, TenantMismatch
from tenantguard.models.database import TENANT_OWNED_MODELS, _utc_now
from tenantguard.tenancy.context import require_tenant_id

if TYPE_CHECKING:
    from sqlalchemy.sql.elements import ColumnElement
    from sqlmodel.ext.asyncio.session import AsyncSession

logger = structlog.get_logger(__name__)

T = TypeVar("T", bound=SQLModel)


class TenantScopedStore(Generic[T]):
    """Reads and writes one tenant-owned model under the ambient tenant."""

    def __init__(self, session: AsyncSession, model: type[T]) -> None:
        if model not in TENANT_OWNED_MODELS:
            msg = f"{model.__name__} is not a tenant-owned model"
            raise TypeError(msg)
        self._session = session
        self._model = model

    @property
    def session(self) -> AsyncSession:
        return self._session

    def _column(self, name: str) -> Any:
        return col(getattr(self._model, name))

    def _where_tenant(self, *conditions: ColumnElement[bool]) -> list[ColumnElement[bool]]:
        return [self._column("tenant_id") == require_tenant_id(), *conditions]

    async def find(self, entity_id: str) -> T | None:
        """Return the entity with ``entity_id`` if it belongs to the current tenant."""
        stmt = select(self._model).where(*self._where_tenant(self._column("id") == entity_id))
        result = await self._session.execute(stmt)
        return result.scalars().first()

    async def list(
        self,
        *conditions: ColumnElement[bool],
        order_by: Any = None,
        limit: int | None = None,
        offset: int | None = None,
        for_update: bool = False,
    ) -> builtins.list[T]:
        stmt = select(self._model).where(*self._where_tenant(*conditions))
        if order_by is not None:
            stmt = stmt.order_by(order_by)
        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        if for_update:
            # Rendered as nothing on SQLite
            stmt = stmt.with_for_update()
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def first(self, *conditions: ColumnElement[bool]) -> T | None:
        rows = await self.list(*conditions, limit=1)
        return rows[0] if rows else None

    async def count(self, *conditions: ColumnElement[bool]) -> int:
        stmt = select(func.count()).select_from(self._model).where(*self._where_tenant(*conditions))
        result = await self._session.execute(stmt)
        return int(result.scalar_one())

    async def create(self, entity: T) -> T:
        """Persist ``entity`` for the current tenant.

        An unset or empty ``tenant_id`` is stamped from the context; a
        different, explicit one is rejected and nothing is written.
        """
        tenant_id = require_tenant_id()
        owner = getattr(entity, "tenant_id", None)
        if not owner:
            entity.tenant_id = tenant_id  # type: ignore[attr-defined]
        elif owner != tenant_id:
            logger.warning(
                "tenant_mismatch_on_create",
                model=self._model.__name__,
                context_tenant=tenant_id,
            )
            raise TenantMismatch(f"Cannot create {self._model.__name__} for another tenant")
        self._session.add(entity)
        await self._session.flush()
        return entity

    async def update(self, entity: T) -> T:
        await self._check_owner(entity)
        if hasattr(entity, "updated_at"):
            entity.updated_at = _utc_now()  # type: ignore[attr-defined]
        self._session.add(entity)
        await self._session.flush()
        return entity

    async def remove(self, entity: T) -> None:
        await self._check_owner(entity)
        await self._session.delete(entity)
        await self._session.flush()

    async def remove_where(self, *conditions: ColumnElement[bool]) -> int:
        """Bulk-delete the current tenant's rows matching ``conditions``."""
        stmt = delete(self._model).where(*self._where_tenant(*conditions))
        result = await self._session.execute(stmt)
        return int(result.rowcount or 0)

    async def _check_owner(self, entity: T) -> None:
        tenant_id = require_tenant_id()
        entity_id = entity.id  # type: ignore[attr-defined]
        stmt = select(self._column("tenant_id")).where(self._column("id") == entity_id)
        # Pending in-memory changes must not leak into the ownership read
        with self._session.no_autoflush:
            result = await self._session.execute(stmt)
            persisted = result.scalar_one_or_none()
        if persisted is None:
            raise NotFound(f"{self._model.__name__} not found")
        if persisted != tenant_id or entity.tenant_id != persisted:  # type: ignore[attr-defined]
            logger.warning(
                "tenant_mismatch_on_write",
                model=self._model.__name__,
                context_tenant=tenant_id,
            )
            raise TenantMismatch
