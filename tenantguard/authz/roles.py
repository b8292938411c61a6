"""Roles of the current tenant and the permissions granted to them."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from sqlalchemy.exc import IntegrityError
from sqlmodel import col, select

from tenantguard.exceptions import (
    DuplicateName,
    NotFound,
    ProtectedRole,
    RoleInUse,
    TenantMismatch,
)
from tenantguard.models.database import Permission, Role, RolePermission, UserRole
from tenantguard.models.domain import RoleDraft, normalize_name, validated
from tenantguard.storage.database import unit_of_work
from tenantguard.storage.scoped import TenantScopedStore

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from sqlalchemy.ext.asyncio import AsyncEngine
    from sqlmodel.ext.asyncio.session import AsyncSession

logger = structlog.get_logger(__name__)


async def require_role(session: AsyncSession, role_id: str) -> Role:
    role = await TenantScopedStore(session, Role).find(role_id)
    if role is None:
        raise NotFound("Role not found")
    return role


async def grant_permissions(
    session: AsyncSession, role: Role, permissions: Sequence[Permission]
) -> int:
    """Link ``permissions`` to ``role``, skipping links that already exist.

    Every permission is checked before the first link is written. Returns the
    number of new links.
    """
    for permission in permissions:
        if permission.tenant_id is not None and permission.tenant_id != role.tenant_id:
            raise TenantMismatch(f"Permission '{permission.name}' belongs to another tenant")
    links = TenantScopedStore(session, RolePermission)
    held = {
        link.permission_id for link in await links.list(col(RolePermission.role_id) == role.id)
    }
    added = 0
    for permission in permissions:
        if permission.id in held:
            continue
        await links.create(RolePermission(role_id=role.id, permission_id=permission.id))
        held.add(permission.id)
        added += 1
    return added


async def permission_names_for_roles(session: AsyncSession, role_ids: Iterable[str]) -> set[str]:
    ids = list(role_ids)
    if not ids:
        return set()
    links = await TenantScopedStore(session, RolePermission).list(
        col(RolePermission.role_id).in_(ids)
    )
    permission_ids = {link.permission_id for link in links}
    if not permission_ids:
        return set()
    stmt = select(Permission.name).where(col(Permission.id).in_(list(permission_ids)))
    return set((await session.execute(stmt)).scalars().all())


async def load_permissions(
    session: AsyncSession, permission_ids: Iterable[str]
) -> list[Permission]:
    """Fetch permissions by id, raising :class:`NotFound` if any is unknown."""
    wanted = list(dict.fromkeys(permission_ids))
    if not wanted:
        return []
    stmt = select(Permission).where(col(Permission.id).in_(wanted))
    found = {p.id: p for p in (await session.execute(stmt)).scalars().all()}
    missing = [pid for pid in wanted if pid not in found]
    if missing:
        raise NotFound(f"Unknown permission id(s): {', '.join(missing)}")
    return [found[pid] for pid in wanted]


class RoleService:
    """Role management inside the ambient tenant."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def create_role(
        self, name: str, description: str | None = None, is_admin: bool = False
    ) -> Role:
        draft = validated(RoleDraft, name=name, description=description)
        normalized = normalize_name(draft.name)
        async with unit_of_work(self._engine) as session:
            roles = TenantScopedStore(session, Role)
            if await roles.first(col(Role.normalized_name) == normalized):
                raise DuplicateName(f"Role '{draft.name}' already exists")
            role = Role(
                name=draft.name,
                normalized_name=normalized,
                description=draft.description,
                is_admin=is_admin,
            )
            try:
                await roles.create(role)
            except IntegrityError as exc:
                raise DuplicateName(f"Role '{draft.name}' already exists") from exc
        logger.info("role_created", role_id=role.id, is_admin=is_admin)
        return role

    async def get_role(self, role_id: str) -> Role | None:
        async with unit_of_work(self._engine) as session:
            return await TenantScopedStore(session, Role).find(role_id)

    async def get_role_by_name(self, name: str) -> Role | None:
        async with unit_of_work(self._engine) as session:
            return await TenantScopedStore(session, Role).first(
                col(Role.normalized_name) == normalize_name(name)
            )

    async def is_role_name_available(
        self, name: str, exclude_role_id: str | None = None
    ) -> bool:
        conditions = [col(Role.normalized_name) == normalize_name(name)]
        if exclude_role_id:
            conditions.append(col(Role.id) != exclude_role_id)
        async with unit_of_work(self._engine) as session:
            return await TenantScopedStore(session, Role).first(*conditions) is None

    async def list_roles(self, include_inactive: bool = True) -> list[Role]:
        conditions = [] if include_inactive else [col(Role.is_active).is_(True)]
        async with unit_of_work(self._engine) as session:
            return await TenantScopedStore(session, Role).list(
                *conditions, order_by=col(Role.name)
            )

    async def rename_role(self, role_id: str, name: str) -> Role:
        draft = validated(RoleDraft, name=name)
        normalized = normalize_name(draft.name)
        async with unit_of_work(self._engine) as session:
            roles = TenantScopedStore(session, Role)
            role = await require_role(session, role_id)
            if role.is_admin:
                raise ProtectedRole("The administrative role cannot be renamed")
            clash = await roles.first(
                col(Role.normalized_name) == normalized, col(Role.id) != role.id
            )
            if clash:
                raise DuplicateName(f"Role '{draft.name}' already exists")
            role.name = draft.name
            role.normalized_name = normalized
            try:
                await roles.update(role)
            except IntegrityError as exc:
                raise DuplicateName(f"Role '{draft.name}' already exists") from exc
        return role

    async def update_role_description(self, role_id: str, description: str | None) -> Role:
        async with unit_of_work(self._engine) as session:
            role = await require_role(session, role_id)
            draft = validated(RoleDraft, name=role.name, description=description)
            role.description = draft.description
            await TenantScopedStore(session, Role).update(role)
        return role

    async def activate_role(self, role_id: str) -> Role:
        return await self._set_active(role_id, True)

    async def deactivate_role(self, role_id: str) -> Role:
        """Inactive roles keep their assignments but grant nothing."""
        return await self._set_active(role_id, False)

    async def _set_active(self, role_id: str, active: bool) -> Role:
        async with unit_of_work(self._engine) as session:
            role = await require_role(session, role_id)
            if role.is_admin and not active:
                raise ProtectedRole("The administrative role cannot be deactivated")
            role.is_active = active
            await TenantScopedStore(session, Role).update(role)
        logger.info("role_status_changed", role_id=role_id, is_active=active)
        return role

    async def delete_role(self, role_id: str) -> None:
        async with unit_of_work(self._engine) as session:
            role = await require_role(session, role_id)
            if role.is_admin:
                raise ProtectedRole("The administrative role cannot be deleted")
            holders = await TenantScopedStore(session, UserRole).count(
                col(UserRole.role_id) == role.id
            )
            if holders:
                raise RoleInUse(f"Role '{role.name}' is assigned to {holders} user(s)")
            await TenantScopedStore(session, RolePermission).remove_where(
                col(RolePermission.role_id) == role.id
            )
            await TenantScopedStore(session, Role).remove(role)
        logger.info("role_deleted", role_id=role_id)

    async def assign_permissions(self, role_id: str, permission_ids: Iterable[str]) -> int:
        async with unit_of_work(self._engine) as session:
            role = await require_role(session, role_id)
            permissions = await load_permissions(session, permission_ids)
            added = await grant_permissions(session, role, permissions)
        logger.info("role_permissions_assigned", role_id=role_id, added=added)
        return added

    async def remove_permissions(self, role_id: str, permission_ids: Iterable[str]) -> int:
        ids = list(permission_ids)
        async with unit_of_work(self._engine) as session:
            role = await require_role(session, role_id)
            removed = await TenantScopedStore(session, RolePermission).remove_where(
                col(RolePermission.role_id) == role.id,
                col(RolePermission.permission_id).in_(ids),
            )
        logger.info("role_permissions_removed", role_id=role_id, removed=removed)
        return removed

    async def permissions_of_role(self, role_id: str) -> set[str]:
        async with unit_of_work(self._engine) as session:
            role = await require_role(session, role_id)
            return await permission_names_for_roles(session, [role.id])
