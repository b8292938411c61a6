"""Tenant registry: the global table of tenants.

Tenants are not tenant-owned, so this module talks to the session directly.
Resolution only needs the id, identifier and active flag, and those are
cached per process as immutable snapshots and dropped on every write.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import delete as sa_delete
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from tenantguard.exceptions import DuplicateName, NotFound, TenantNotEmpty
from tenantguard.models.database import (
    Permission,
    Role,
    RolePermission,
    SectionDefinition,
    Tenant,
    User,
    _utc_now,
)
from tenantguard.models.domain import TenantDraft, validated
from tenantguard.storage.database import unit_of_work
from tenantguard.storage.scoped import TenantScopedStore
from tenantguard.tenancy.context import TenantContext, tenant_scope

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class TenantSnapshot:
    id: str
    identifier: str
    name: str
    is_active: bool

    @classmethod
    def of(cls, tenant: Tenant) -> TenantSnapshot:
        return cls(
            id=tenant.id,
            identifier=tenant.identifier,
            name=tenant.name,
            is_active=tenant.is_active,
        )


class TenantRegistry:
    """Creates, looks up and retires tenants."""

    def __init__(
        self, engine: AsyncEngine, on_delete: Callable[[], None] | None = None
    ) -> None:
        self._engine = engine
        # Called after a tenant is deleted, e.g. to drop cached permissions
        self._on_delete = on_delete
        self._by_id: dict[str, TenantSnapshot] = {}
        self._by_identifier: dict[str, TenantSnapshot] = {}

    # -- cached lookups used by tenant resolution ---------------------------

    async def lookup_by_id(self, tenant_id: str) -> TenantSnapshot | None:
        cached = self._by_id.get(tenant_id)
        if cached is not None:
            return cached
        tenant = await self.get(tenant_id)
        return self._remember(tenant) if tenant else None

    async def lookup_by_identifier(self, identifier: str) -> TenantSnapshot | None:
        key = identifier.strip().lower()
        cached = self._by_identifier.get(key)
        if cached is not None:
            return cached
        tenant = await self.get_by_identifier(key)
        return self._remember(tenant) if tenant else None

    def invalidate(self) -> None:
        self._by_id.clear()
        self._by_identifier.clear()

    def _remember(self, tenant: Tenant) -> TenantSnapshot:
        snapshot = TenantSnapshot.of(tenant)
        self._by_id[snapshot.id] = snapshot
        self._by_identifier[snapshot.identifier] = snapshot
        return snapshot

    # -- reads ---------------------------------------------------------------

    async def get(self, tenant_id: str) -> Tenant | None:
        async with AsyncSession(self._engine) as session:
            return await session.get(Tenant, tenant_id)

    async def get_by_identifier(self, identifier: str) -> Tenant | None:
        async with AsyncSession(self._engine) as session:
            stmt = select(Tenant).where(col(Tenant.identifier) == identifier.strip().lower())
            result = await session.execute(stmt)
            return result.scalars().first()

    async def list(
        self, include_inactive: bool = False, page: int = 1, page_size: int = 20
    ) -> tuple[list[Tenant], int]:
        page = max(page, 1)
        page_size = min(max(page_size, 1), 100)
        conditions = [] if include_inactive else [col(Tenant.is_active).is_(True)]
        async with AsyncSession(self._engine) as session:
            total_stmt = select(func.count()).select_from(Tenant).where(*conditions)
            total = int((await session.execute(total_stmt)).scalar_one())
            stmt = (
                select(Tenant)
                .where(*conditions)
                .order_by(col(Tenant.name))
                .offset((page - 1) * page_size)
                .limit(page_size)
            )
            result = await session.execute(stmt)
            return list(result.scalars().all()), total

    async def is_identifier_available(
        self, identifier: str, exclude_tenant_id: str | None = None
    ) -> bool:
        existing = await self.get_by_identifier(identifier)
        return existing is None or existing.id == exclude_tenant_id

    # -- writes --------------------------------------------------------------

    async def create(self, name: str, identifier: str) -> Tenant:
        draft = validated(TenantDraft, name=name, identifier=identifier.strip().lower())
        async with unit_of_work(self._engine) as session:
            await self._ensure_identifier_free(session, draft.identifier)
            tenant = Tenant(name=draft.name, identifier=draft.identifier)
            session.add(tenant)
            try:
                await session.flush()
            except IntegrityError as exc:
                raise DuplicateName(
                    f"Tenant identifier '{draft.identifier}' is already in use"
                ) from exc
        self.invalidate()
        logger.info("tenant_created", tenant_id=tenant.id, identifier=tenant.identifier)
        return tenant

    async def rename(self, tenant_id: str, name: str) -> Tenant:
        draft = validated(TenantDraft, name=name, identifier="placeholder")
        return await self._modify(tenant_id, name=draft.name)

    async def change_identifier(self, tenant_id: str, identifier: str) -> Tenant:
        draft = validated(TenantDraft, name="placeholder", identifier=identifier.strip().lower())
        return await self._modify(tenant_id, identifier=draft.identifier)

    async def activate(self, tenant_id: str) -> Tenant:
        return await self._modify(tenant_id, is_active=True)

    async def deactivate(self, tenant_id: str) -> Tenant:
        """Block every user of the tenant without deleting any data."""
        return await self._modify(tenant_id, is_active=False)

    async def delete(self, tenant_id: str) -> None:
        """Delete a tenant that owns no users and no sections."""
        async with unit_of_work(self._engine) as session:
            tenant = await session.get(Tenant, tenant_id)
            if tenant is None:
                raise NotFound("Tenant not found")
            with tenant_scope(TenantContext(tenant_id=tenant.id, identifier=tenant.identifier)):
                users = await TenantScopedStore(session, User).count()
                sections = await TenantScopedStore(session, SectionDefinition).count()
                if users or sections:
                    raise TenantNotEmpty(
                        "Tenant still owns users or sections and cannot be deleted"
                    )
                # Roles may outlive every user; they go with the tenant
                await TenantScopedStore(session, RolePermission).remove_where()
                await TenantScopedStore(session, Role).remove_where()
            await session.execute(
                sa_delete(Permission).where(col(Permission.tenant_id) == tenant.id)
            )
            await session.delete(tenant)
        self.invalidate()
        if self._on_delete is not None:
            self._on_delete()
        logger.info("tenant_deleted", tenant_id=tenant_id)

    async def _modify(
        self,
        tenant_id: str,
        *,
        name: str | None = None,
        identifier: str | None = None,
        is_active: bool | None = None,
    ) -> Tenant:
        async with unit_of_work(self._engine) as session:
            tenant = await session.get(Tenant, tenant_id)
            if tenant is None:
                raise NotFound("Tenant not found")
            if name is not None:
                tenant.name = name
            if identifier is not None and identifier != tenant.identifier:
                await self._ensure_identifier_free(session, identifier)
                tenant.identifier = identifier
            if is_active is not None:
                tenant.is_active = is_active
            tenant.updated_at = _utc_now()
            session.add(tenant)
            try:
                await session.flush()
            except IntegrityError as exc:
                raise DuplicateName(f"Tenant identifier '{identifier}' is already in use") from exc
        self.invalidate()
        logger.info(
            "tenant_updated",
            tenant_id=tenant_id,
            renamed=name is not None,
            identifier_changed=identifier is not None,
            is_active=tenant.is_active,
        )
        return tenant

    @staticmethod
    async def _ensure_identifier_free(session: AsyncSession, identifier: str) -> None:
        stmt = select(Tenant.id).where(col(Tenant.identifier) == identifier)
        result = await session.execute(stmt)
        if result.first() is not None:
            raise DuplicateName(f"Tenant identifier '{identifier}' is already in use")
