"""Bootstrap of a new tenant's first administrator."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog
from sqlalchemy.exc import IntegrityError
from sqlmodel import col

from tenantguard.authz.catalog import ensure_permissions_in
from tenantguard.authz.permissions import SYSTEM_PERMISSIONS
from tenantguard.authz.roles import grant_permissions
from tenantguard.authz.users import insert_user, link_roles
from tenantguard.exceptions import DuplicateName, NotFound, TenantInactive
from tenantguard.models.database import Role, User
from tenantguard.models.domain import RoleDraft, UserDraft, normalize_name, validated
from tenantguard.storage.database import unit_of_work
from tenantguard.storage.scoped import TenantScopedStore
from tenantguard.tenancy.context import TenantContext, tenant_scope

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

    from tenantguard.authz.catalog import PermissionCatalog
    from tenantguard.tenancy.registry import TenantRegistry

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class ProvisionedAdmin:
    user: User
    role: Role


class TenantProvisioner:
    """Creates the administrative role and user of a tenant in one transaction."""

    def __init__(
        self,
        engine: AsyncEngine,
        registry: TenantRegistry,
        catalog: PermissionCatalog,
        admin_role_name: str = "Administrator",
    ) -> None:
        self._engine = engine
        self._registry = registry
        self._catalog = catalog
        self._admin_role = validated(RoleDraft, name=admin_role_name).name

    async def provision_admin(
        self, tenant_id: str, *, email: str, user_name: str, full_name: str | None = None
    ) -> ProvisionedAdmin:
        """Create the tenant's admin user holding an admin role with every system permission.

        An existing administrative role is reused. Setting the user's password
        is left to the credential verifier.
        """
        tenant = await self._registry.lookup_by_id(tenant_id)
        if tenant is None:
            raise NotFound("Tenant not found")
        if not tenant.is_active:
            raise TenantInactive
        draft = validated(UserDraft, user_name=user_name, email=email, full_name=full_name)

        ctx = TenantContext(tenant_id=tenant.id, identifier=tenant.identifier)
        try:
            with tenant_scope(ctx):
                async with unit_of_work(self._engine) as session:
                    permissions = await ensure_permissions_in(
                        session, SYSTEM_PERMISSIONS, is_system=True
                    )
                    user = await insert_user(session, draft)
                    roles = TenantScopedStore(session, Role)
                    role = await roles.first(col(Role.is_admin).is_(True))
                    if role is None:
                        role = Role(
                            name=self._admin_role,
                            normalized_name=normalize_name(self._admin_role),
                            description="Full administrative access",
                            is_admin=True,
                        )
                        try:
                            await roles.create(role)
                        except IntegrityError as exc:
                            raise DuplicateName(
                                f"Role '{self._admin_role}' already exists"
                            ) from exc
                    await grant_permissions(session, role, permissions)
                    await link_roles(session, user, [role])
        finally:
            self._catalog.invalidate()
        logger.info("tenant_admin_provisioned", tenant_id=tenant.id, user_id=user.id)
        return ProvisionedAdmin(user=user, role=role)
