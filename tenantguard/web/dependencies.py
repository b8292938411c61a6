"""FastAPI dependency injection and shared state."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog
from fastapi import Request

from tenantguard.auth.service import AuthService
from tenantguard.auth.tokens import TokenIssuer
from tenantguard.authz.catalog import PermissionCatalog
from tenantguard.authz.provisioning import TenantProvisioner
from tenantguard.authz.roles import RoleService
from tenantguard.authz.sections import SectionService
from tenantguard.authz.users import UserService
from tenantguard.tenancy.registry import TenantRegistry
from tenantguard.tenancy.resolver import TenantResolver

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

    from tenantguard.auth.credentials import CredentialVerifier
    from tenantguard.config.settings import Settings

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Services:
    """Process-wide service instances shared by every request."""

    settings: Settings
    engine: AsyncEngine
    registry: TenantRegistry
    catalog: PermissionCatalog
    roles: RoleService
    users: UserService
    sections: SectionService
    provisioner: TenantProvisioner
    issuer: TokenIssuer
    auth: AuthService
    resolver: TenantResolver


def build_services(
    settings: Settings, engine: AsyncEngine, verifier: CredentialVerifier
) -> Services:
    catalog = PermissionCatalog(engine)
    registry = TenantRegistry(engine, on_delete=catalog.invalidate)
    issuer = TokenIssuer.from_settings(settings)
    services = Services(
        settings=settings,
        engine=engine,
        registry=registry,
        catalog=catalog,
        roles=RoleService(engine),
        users=UserService(engine),
        sections=SectionService(engine, catalog),
        provisioner=TenantProvisioner(
            engine, registry, catalog, admin_role_name=settings.admin_role_name
        ),
        issuer=issuer,
        auth=AuthService(
            engine,
            registry,
            issuer,
            verifier,
            include_permissions=settings.jwt_include_permissions,
        ),
        resolver=TenantResolver(registry, settings, decode_token=issuer.decode),
    )
    logger.debug(
        "services_built",
        strategies=[s.value for s in settings.tenant_resolution_strategies],
    )
    return services


def get_services(request: Request) -> Services:
    services: Services = request.app.state.services
    return services
