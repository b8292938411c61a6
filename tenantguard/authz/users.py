"""Users of the current tenant, their role assignments and effective permissions.

The last-administrator rule: a tenant that has an administrative role must
keep at least one active user holding it. Every operation that could drop
the count to zero checks it inside its own transaction.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from sqlalchemy.exc import IntegrityError
from sqlmodel import col

from tenantguard.authz.roles import permission_names_for_roles
from tenantguard.exceptions import (
    CannotDeleteSelf,
    DuplicateName,
    LastAdministratorProtected,
    NotFound,
    TenantMismatch,
)
from tenantguard.models.database import Role, User, UserRole
from tenantguard.models.domain import UserDraft, normalize_email, validated
from tenantguard.storage.database import unit_of_work
from tenantguard.storage.scoped import TenantScopedStore

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from sqlalchemy.ext.asyncio import AsyncEngine
    from sqlmodel.ext.asyncio.session import AsyncSession

logger = structlog.get_logger(__name__)


async def require_user(session: AsyncSession, user_id: str) -> User:
    user = await TenantScopedStore(session, User).find(user_id)
    if user is None:
        raise NotFound("User not found")
    return user


async def insert_user(session: AsyncSession, draft: UserDraft) -> User:
    users = TenantScopedStore(session, User)
    normalized = normalize_email(draft.email)
    if await users.first(col(User.normalized_email) == normalized):
        raise DuplicateName(f"A user with email '{draft.email}' already exists")
    user = User(
        user_name=draft.user_name,
        email=draft.email,
        normalized_email=normalized,
        full_name=draft.full_name,
    )
    try:
        await users.create(user)
    except IntegrityError as exc:
        raise DuplicateName(f"A user with email '{draft.email}' already exists") from exc
    return user


async def link_roles(session: AsyncSession, user: User, roles: Sequence[Role]) -> int:
    """Assign ``roles`` to ``user``, skipping ones already held."""
    for role in roles:
        if role.tenant_id != user.tenant_id:
            raise TenantMismatch(f"Role '{role.name}' belongs to another tenant")
    links = TenantScopedStore(session, UserRole)
    held = {link.role_id for link in await links.list(col(UserRole.user_id) == user.id)}
    added = 0
    for role in roles:
        if role.id in held:
            continue
        await links.create(UserRole(user_id=user.id, role_id=role.id))
        held.add(role.id)
        added += 1
    return added


async def active_roles_of(session: AsyncSession, user_id: str) -> list[Role]:
    links = await TenantScopedStore(session, UserRole).list(col(UserRole.user_id) == user_id)
    if not links:
        return []
    return await TenantScopedStore(session, Role).list(
        col(Role.id).in_([link.role_id for link in links]),
        col(Role.is_active).is_(True),
        order_by=col(Role.name),
    )


async def grants_of(session: AsyncSession, user_id: str) -> tuple[list[str], set[str]]:
    """Role names and permission names a user currently holds via active roles."""
    roles = await active_roles_of(session, user_id)
    permissions = await permission_names_for_roles(session, [role.id for role in roles])
    return [role.name for role in roles], permissions


async def ensure_admin_remains(
    session: AsyncSession, user_id: str, revoked_role_ids: Iterable[str] | None = None
) -> None:
    """Reject a change after which the tenant would have no active administrator.

    With ``revoked_role_ids`` the user loses only those roles; without it the
    user stops counting entirely (deactivated or deleted).
    """
    admin_ids = {
        role.id
        for role in await TenantScopedStore(session, Role).list(col(Role.is_admin).is_(True))
    }
    if not admin_ids:
        return
    links = TenantScopedStore(session, UserRole)
    held = {
        link.role_id
        for link in await links.list(
            col(UserRole.user_id) == user_id, col(UserRole.role_id).in_(list(admin_ids))
        )
    }
    if not held:
        return
    if revoked_role_ids is not None and held - set(revoked_role_ids):
        return
    # Lock the other holders so two concurrent revocations cannot both pass
    others = await links.list(
        col(UserRole.role_id).in_(list(admin_ids)),
        col(UserRole.user_id) != user_id,
        for_update=True,
    )
    other_ids = {link.user_id for link in others}
    active_others = (
        await TenantScopedStore(session, User).count(
            col(User.id).in_(list(other_ids)), col(User.is_active).is_(True)
        )
        if other_ids
        else 0
    )
    if active_others == 0:
        logger.info("last_administrator_protected", user_id=user_id)
        raise LastAdministratorProtected(
            "The tenant must keep at least one active administrator"
        )


class UserService:
    """User management inside the ambient tenant."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def create_user(self, user_name: str, email: str, full_name: str | None = None) -> User:
        draft = validated(UserDraft, user_name=user_name, email=email, full_name=full_name)
        async with unit_of_work(self._engine) as session:
            user = await insert_user(session, draft)
        logger.info("user_created", user_id=user.id)
        return user

    async def get_user(self, user_id: str) -> User | None:
        async with unit_of_work(self._engine) as session:
            return await TenantScopedStore(session, User).find(user_id)

    async def get_user_by_email(self, email: str) -> User | None:
        async with unit_of_work(self._engine) as session:
            return await TenantScopedStore(session, User).first(
                col(User.normalized_email) == normalize_email(email)
            )

    async def is_email_available(self, email: str, exclude_user_id: str | None = None) -> bool:
        conditions = [col(User.normalized_email) == normalize_email(email)]
        if exclude_user_id:
            conditions.append(col(User.id) != exclude_user_id)
        async with unit_of_work(self._engine) as session:
            return await TenantScopedStore(session, User).first(*conditions) is None

    async def list_users(
        self, include_inactive: bool = False, page: int = 1, page_size: int = 20
    ) -> tuple[list[User], int]:
        page = max(page, 1)
        page_size = min(max(page_size, 1), 100)
        conditions = [] if include_inactive else [col(User.is_active).is_(True)]
        async with unit_of_work(self._engine) as session:
            users = TenantScopedStore(session, User)
            total = await users.count(*conditions)
            rows = await users.list(
                *conditions,
                order_by=col(User.user_name),
                offset=(page - 1) * page_size,
                limit=page_size,
            )
        return rows, total

    async def update_full_name(self, user_id: str, full_name: str | None) -> User:
        async with unit_of_work(self._engine) as session:
            user = await require_user(session, user_id)
            draft = validated(
                UserDraft, user_name=user.user_name, email=user.email, full_name=full_name
            )
            user.full_name = draft.full_name
            await TenantScopedStore(session, User).update(user)
        return user

    async def update_user_name(self, user_id: str, user_name: str) -> User:
        async with unit_of_work(self._engine) as session:
            user = await require_user(session, user_id)
            draft = validated(
                UserDraft, user_name=user_name, email=user.email, full_name=user.full_name
            )
            user.user_name = draft.user_name
            await TenantScopedStore(session, User).update(user)
        return user

    async def update_email(self, user_id: str, email: str) -> User:
        async with unit_of_work(self._engine) as session:
            users = TenantScopedStore(session, User)
            user = await require_user(session, user_id)
            draft = validated(
                UserDraft, user_name=user.user_name, email=email, full_name=user.full_name
            )
            normalized = normalize_email(draft.email)
            clash = await users.first(
                col(User.normalized_email) == normalized, col(User.id) != user.id
            )
            if clash:
                raise DuplicateName(f"A user with email '{draft.email}' already exists")
            user.email = draft.email
            user.normalized_email = normalized
            try:
                await users.update(user)
            except IntegrityError as exc:
                raise DuplicateName(f"A user with email '{draft.email}' already exists") from exc
        return user

    async def activate_user(self, user_id: str) -> User:
        async with unit_of_work(self._engine) as session:
            user = await require_user(session, user_id)
            user.is_active = True
            await TenantScopedStore(session, User).update(user)
        logger.info("user_status_changed", user_id=user_id, is_active=True)
        return user

    async def deactivate_user(self, user_id: str) -> User:
        """Block a user without touching their role assignments."""
        async with unit_of_work(self._engine) as session:
            user = await require_user(session, user_id)
            if user.is_active:
                await ensure_admin_remains(session, user.id)
            user.is_active = False
            await TenantScopedStore(session, User).update(user)
        logger.info("user_status_changed", user_id=user_id, is_active=False)
        return user

    async def delete_user(self, user_id: str, acting_user_id: str) -> None:
        if user_id == acting_user_id:
            raise CannotDeleteSelf("Users cannot delete their own account")
        async with unit_of_work(self._engine) as session:
            user = await require_user(session, user_id)
            await ensure_admin_remains(session, user.id)
            await TenantScopedStore(session, UserRole).remove_where(
                col(UserRole.user_id) == user.id
            )
            await TenantScopedStore(session, User).remove(user)
        logger.info("user_deleted", user_id=user_id, acting_user_id=acting_user_id)

    async def assign_roles(self, user_id: str, role_ids: Iterable[str]) -> int:
        wanted = list(dict.fromkeys(role_ids))
        async with unit_of_work(self._engine) as session:
            user = await require_user(session, user_id)
            found = {
                role.id: role
                for role in await TenantScopedStore(session, Role).list(col(Role.id).in_(wanted))
            }
            missing = [rid for rid in wanted if rid not in found]
            if missing:
                raise NotFound(f"Unknown role id(s): {', '.join(missing)}")
            added = await link_roles(session, user, [found[rid] for rid in wanted])
        logger.info("user_roles_assigned", user_id=user_id, added=added)
        return added

    async def revoke_roles(self, user_id: str, role_ids: Iterable[str]) -> int:
        """Revoke ``role_ids`` from a user; every id must name a role of this tenant."""
        ids = list(dict.fromkeys(role_ids))
        async with unit_of_work(self._engine) as session:
            user = await require_user(session, user_id)
            known = {
                role.id
                for role in await TenantScopedStore(session, Role).list(col(Role.id).in_(ids))
            }
            missing = [rid for rid in ids if rid not in known]
            if missing:
                raise NotFound(f"Unknown role id(s): {', '.join(missing)}")
            await ensure_admin_remains(session, user.id, revoked_role_ids=ids)
            removed = await TenantScopedStore(session, UserRole).remove_where(
                col(UserRole.user_id) == user.id, col(UserRole.role_id).in_(ids)
            )
        logger.info("user_roles_revoked", user_id=user_id, removed=removed)
        return removed

    async def roles_of(self, user_id: str) -> list[Role]:
        """Every role assigned to the user, active or not."""
        async with unit_of_work(self._engine) as session:
            user = await require_user(session, user_id)
            links = await TenantScopedStore(session, UserRole).list(
                col(UserRole.user_id) == user.id
            )
            if not links:
                return []
            return await TenantScopedStore(session, Role).list(
                col(Role.id).in_([link.role_id for link in links]), order_by=col(Role.name)
            )

    async def permissions_of(self, user_id: str) -> set[str]:
        async with unit_of_work(self._engine) as session:
            user = await require_user(session, user_id)
            _, permissions = await grants_of(session, user.id)
        return permissions
