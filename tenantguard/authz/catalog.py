"""Permission catalog.

Permissions are global rows. Reads are served from a per-process cache of
immutable snapshots that is dropped on every write made through this class.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from tenantguard.authz.permissions import SYSTEM_PERMISSIONS
from tenantguard.exceptions import (
    DuplicateName,
    ImmutablePermission,
    NotFound,
    PermissionInUse,
)
from tenantguard.models.database import Permission, RolePermission, _utc_now
from tenantguard.models.domain import PermissionDraft, validated
from tenantguard.storage.database import unit_of_work

if TYPE_CHECKING:
    from collections.abc import Mapping

    from sqlalchemy.ext.asyncio import AsyncEngine

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class PermissionInfo:
    id: str
    name: str
    description: str
    is_system: bool
    tenant_id: str | None = None

    @classmethod
    def of(cls, permission: Permission) -> PermissionInfo:
        return cls(
            id=permission.id,
            name=permission.name,
            description=permission.description,
            is_system=permission.is_system,
            tenant_id=permission.tenant_id,
        )


async def ensure_permissions_in(
    session: AsyncSession, specs: Mapping[str, str], *, is_system: bool = False
) -> list[Permission]:
    """Return the permissions named in ``specs``, creating missing ones.

    Runs inside the caller's transaction. ``specs`` maps name to description;
    existing rows are returned untouched.
    """
    names = list(specs)
    for name in names:
        validated(PermissionDraft, name=name, description=specs[name])
    stmt = select(Permission).where(col(Permission.name).in_(names))
    existing = {p.name: p for p in (await session.execute(stmt)).scalars().all()}
    created = []
    for name in names:
        if name not in existing:
            permission = Permission(name=name, description=specs[name], is_system=is_system)
            session.add(permission)
            existing[name] = permission
            created.append(name)
    if created:
        try:
            await session.flush()
        except IntegrityError as exc:
            raise DuplicateName("A permission with this name was created concurrently") from exc
        logger.info("permissions_created", names=created, is_system=is_system)
    return [existing[name] for name in names]


class PermissionCatalog:
    """Global permission definitions."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine
        self._cache: dict[str, PermissionInfo] | None = None

    def invalidate(self) -> None:
        self._cache = None

    async def _snapshots(self) -> dict[str, PermissionInfo]:
        if self._cache is None:
            async with AsyncSession(self._engine) as session:
                result = await session.execute(select(Permission).order_by(col(Permission.name)))
                self._cache = {p.name: PermissionInfo.of(p) for p in result.scalars().all()}
        return self._cache

    async def seed_system_permissions(self) -> list[PermissionInfo]:
        """Insert any missing system permission. Safe to call repeatedly."""
        async with unit_of_work(self._engine) as session:
            rows = await ensure_permissions_in(session, SYSTEM_PERMISSIONS, is_system=True)
            infos = [PermissionInfo.of(p) for p in rows]
        self.invalidate()
        return infos

    async def list_permissions(self, include_tenant_scoped: bool = True) -> list[PermissionInfo]:
        snapshots = (await self._snapshots()).values()
        if include_tenant_scoped:
            return list(snapshots)
        return [p for p in snapshots if p.tenant_id is None]

    async def get_permission(self, permission_id: str) -> PermissionInfo | None:
        for info in (await self._snapshots()).values():
            if info.id == permission_id:
                return info
        return None

    async def get_by_name(self, name: str) -> PermissionInfo | None:
        return (await self._snapshots()).get(name)

    async def ensure_permissions(self, specs: Mapping[str, str]) -> list[PermissionInfo]:
        async with unit_of_work(self._engine) as session:
            rows = await ensure_permissions_in(session, specs)
            infos = [PermissionInfo.of(p) for p in rows]
        self.invalidate()
        return infos

    async def create_permission(
        self, name: str, description: str = "", tenant_id: str | None = None
    ) -> PermissionInfo:
        draft = validated(PermissionDraft, name=name, description=description)
        async with unit_of_work(self._engine) as session:
            await self._ensure_name_free(session, draft.name)
            permission = Permission(
                name=draft.name, description=draft.description, tenant_id=tenant_id
            )
            session.add(permission)
            try:
                await session.flush()
            except IntegrityError as exc:
                raise DuplicateName(f"Permission '{draft.name}' already exists") from exc
            info = PermissionInfo.of(permission)
        self.invalidate()
        logger.info("permission_created", name=info.name, tenant_scoped=tenant_id is not None)
        return info

    async def rename_permission(self, permission_id: str, name: str) -> PermissionInfo:
        draft = validated(PermissionDraft, name=name)
        async with unit_of_work(self._engine) as session:
            permission = await self._mutable(session, permission_id)
            if draft.name != permission.name:
                await self._ensure_name_free(session, draft.name)
                permission.name = draft.name
            permission.updated_at = _utc_now()
            session.add(permission)
            try:
                await session.flush()
            except IntegrityError as exc:
                raise DuplicateName(f"Permission '{draft.name}' already exists") from exc
            info = PermissionInfo.of(permission)
        self.invalidate()
        return info

    async def update_permission_description(
        self, permission_id: str, description: str
    ) -> PermissionInfo:
        async with unit_of_work(self._engine) as session:
            permission = await self._mutable(session, permission_id)
            draft = validated(PermissionDraft, name=permission.name, description=description)
            permission.description = draft.description
            permission.updated_at = _utc_now()
            session.add(permission)
            info = PermissionInfo.of(permission)
        self.invalidate()
        return info

    async def delete_permission(self, permission_id: str) -> None:
        async with unit_of_work(self._engine) as session:
            permission = await self._mutable(session, permission_id)
            # Assignments of every tenant count, so this is a global query
            stmt = (
                select(func.count())
                .select_from(RolePermission)
                .where(col(RolePermission.permission_id) == permission.id)
            )
            if (await session.execute(stmt)).scalar_one():
                raise PermissionInUse(
                    f"Permission '{permission.name}' is assigned to roles and cannot be deleted"
                )
            await session.delete(permission)
        self.invalidate()
        logger.info("permission_deleted", permission_id=permission_id)

    @staticmethod
    async def _mutable(session: AsyncSession, permission_id: str) -> Permission:
        permission = await session.get(Permission, permission_id)
        if permission is None:
            raise NotFound("Permission not found")
        if permission.is_system:
            raise ImmutablePermission(f"System permission '{permission.name}' cannot be changed")
        return permission

    @staticmethod
    async def _ensure_name_free(session: AsyncSession, name: str) -> None:
        stmt = select(Permission.id).where(col(Permission.name) == name)
        if (await session.execute(stmt)).first() is not None:
            raise DuplicateName(f"Permission '{name}' already exists")

