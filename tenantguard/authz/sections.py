"""Section definitions and the permissions generated for them.

Creating a section ensures its four data permissions exist in the catalog
and grants them to roles of the tenant, all in one transaction.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from sqlalchemy.exc import IntegrityError
from sqlmodel import col, select

from tenantguard.authz.catalog import ensure_permissions_in
from tenantguard.authz.permissions import (
    normalize_section_name,
    section_permission_descriptions,
    section_permission_names,
)
from tenantguard.authz.roles import grant_permissions
from tenantguard.exceptions import DuplicateName, NotFound
from tenantguard.models.database import Permission, Role, RolePermission, SectionDefinition
from tenantguard.models.domain import SectionDraft, validated
from tenantguard.storage.database import unit_of_work
from tenantguard.storage.scoped import TenantScopedStore

if TYPE_CHECKING:
    from collections.abc import Iterable

    from sqlalchemy.ext.asyncio import AsyncEngine
    from sqlmodel.ext.asyncio.session import AsyncSession

    from tenantguard.authz.catalog import PermissionCatalog

logger = structlog.get_logger(__name__)


async def _require_section(session: AsyncSession, section_id: str) -> SectionDefinition:
    section = await TenantScopedStore(session, SectionDefinition).find(section_id)
    if section is None:
        raise NotFound("Section not found")
    return section


async def _grantees(session: AsyncSession, role_ids: Iterable[str] | None) -> list[Role]:
    roles = TenantScopedStore(session, Role)
    if role_ids is None:
        return await roles.list(col(Role.is_admin).is_(True))
    wanted = list(dict.fromkeys(role_ids))
    found = {role.id: role for role in await roles.list(col(Role.id).in_(wanted))}
    missing = [rid for rid in wanted if rid not in found]
    if missing:
        raise NotFound(f"Unknown role id(s): {', '.join(missing)}")
    return [found[rid] for rid in wanted]


class SectionService:
    """Section definitions of the ambient tenant."""

    def __init__(self, engine: AsyncEngine, catalog: PermissionCatalog) -> None:
        self._engine = engine
        self._catalog = catalog

    async def create_section(
        self,
        name: str,
        description: str | None = None,
        grant_to: Iterable[str] | None = None,
    ) -> SectionDefinition:
        """Create a section and grant its permissions.

        ``grant_to`` lists role ids; ``None`` means the tenant's
        administrative roles. Nothing is written if any step fails.
        """
        draft = validated(SectionDraft, name=name, description=description)
        normalized = normalize_section_name(draft.name)
        try:
            async with unit_of_work(self._engine) as session:
                section = await self._insert(session, draft, normalized)
                roles = await _grantees(session, grant_to)
                permissions = await ensure_permissions_in(
                    session, section_permission_descriptions(draft.name)
                )
                for role in roles:
                    await grant_permissions(session, role, permissions)
        finally:
            self._catalog.invalidate()
        logger.info(
            "section_created",
            section_id=section.id,
            permissions=[p.name for p in permissions],
            granted_roles=len(roles),
        )
        return section

    async def provision_section_permissions(
        self, section_id: str, role_ids: Iterable[str] | None = None
    ) -> list[str]:
        """Re-create missing section permissions and grants. Idempotent."""
        try:
            async with unit_of_work(self._engine) as session:
                section = await _require_section(session, section_id)
                roles = await _grantees(session, role_ids)
                permissions = await ensure_permissions_in(
                    session, section_permission_descriptions(section.name)
                )
                for role in roles:
                    await grant_permissions(session, role, permissions)
        finally:
            self._catalog.invalidate()
        return [p.name for p in permissions]

    async def get_section(self, section_id: str) -> SectionDefinition | None:
        async with unit_of_work(self._engine) as session:
            return await TenantScopedStore(session, SectionDefinition).find(section_id)

    async def list_sections(self, include_inactive: bool = True) -> list[SectionDefinition]:
        conditions = [] if include_inactive else [col(SectionDefinition.is_active).is_(True)]
        async with unit_of_work(self._engine) as session:
            return await TenantScopedStore(session, SectionDefinition).list(
                *conditions, order_by=col(SectionDefinition.name)
            )

    async def rename_section(self, section_id: str, name: str) -> SectionDefinition:
        """Rename a section and move its grants to the new permission names.

        Roles holding an operation on the old name get the same operation on
        the new one; the old links of this tenant are removed. Old permission
        rows stay in the catalog since other tenants may use the same name.
        """
        draft = validated(SectionDraft, name=name)
        normalized = normalize_section_name(draft.name)
        try:
            async with unit_of_work(self._engine) as session:
                sections = TenantScopedStore(session, SectionDefinition)
                section = await _require_section(session, section_id)
                if normalized != section.normalized_name:
                    clash = await sections.first(
                        col(SectionDefinition.normalized_name) == normalized
                    )
                    if clash:
                        raise DuplicateName(f"Section '{draft.name}' already exists")
                    await self._move_grants(session, section.name, draft.name)
                section.name = draft.name
                section.normalized_name = normalized
                try:
                    await sections.update(section)
                except IntegrityError as exc:
                    raise DuplicateName(f"Section '{draft.name}' already exists") from exc
        finally:
            self._catalog.invalidate()
        logger.info("section_renamed", section_id=section_id)
        return section

    async def update_section_description(
        self, section_id: str, description: str | None
    ) -> SectionDefinition:
        async with unit_of_work(self._engine) as session:
            section = await _require_section(session, section_id)
            draft = validated(SectionDraft, name=section.name, description=description)
            section.description = draft.description
            await TenantScopedStore(session, SectionDefinition).update(section)
        return section

    async def delete_section(self, section_id: str) -> None:
        """Delete a section. Its permissions and grants are left in place."""
        async with unit_of_work(self._engine) as session:
            section = await _require_section(session, section_id)
            await TenantScopedStore(session, SectionDefinition).remove(section)
        logger.info("section_deleted", section_id=section_id)

    async def _insert(
        self, session: AsyncSession, draft: SectionDraft, normalized: str
    ) -> SectionDefinition:
        sections = TenantScopedStore(session, SectionDefinition)
        if await sections.first(col(SectionDefinition.normalized_name) == normalized):
            raise DuplicateName(f"Section '{draft.name}' already exists")
        section = SectionDefinition(
            name=draft.name, normalized_name=normalized, description=draft.description
        )
        try:
            await sections.create(section)
        except IntegrityError as exc:
            raise DuplicateName(f"Section '{draft.name}' already exists") from exc
        return section

    @staticmethod
    async def _move_grants(session: AsyncSession, old_name: str, new_name: str) -> None:
        old_names = section_permission_names(old_name)
        stmt = select(Permission).where(col(Permission.name).in_(old_names))
        old_by_id = {p.id: p.name for p in (await session.execute(stmt)).scalars().all()}
        if not old_by_id:
            return
        new_permissions = await ensure_permissions_in(
            session, section_permission_descriptions(new_name)
        )
        # Same position in both tuples means the same operation
        replacement = dict(zip(old_names, new_permissions, strict=True))
        links = TenantScopedStore(session, RolePermission)
        held = await links.list(col(RolePermission.permission_id).in_(list(old_by_id)))
        roles = TenantScopedStore(session, Role)
        for link in held:
            role = await roles.find(link.role_id)
            if role is not None:
                await grant_permissions(session, role, [replacement[old_by_id[link.permission_id]]])
        await links.remove_where(col(RolePermission.permission_id).in_(list(old_by_id)))
