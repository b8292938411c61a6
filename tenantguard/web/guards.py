"""Authentication and permission dependencies for tenant-scoped requests."""

from __future__ import annotations

from collections.abc import Awaitable, Callable

import structlog
from fastapi import Depends, HTTPException, Request

from tenantguard.auth.tokens import TokenClaims
from tenantguard.exceptions import MissingTenantContext, TenantMismatch
from tenantguard.tenancy.context import TenantContext, current_tenant
from tenantguard.tenancy.resolver import RequestInfo
from tenantguard.web.dependencies import Services, get_services

logger = structlog.get_logger(__name__)


async def get_tenant(request: Request) -> TenantContext:
    """The tenant resolved for this request; 400 when there is none."""
    ctx = current_tenant() or getattr(request.state, "tenant", None)
    if ctx is None:
        raise MissingTenantContext
    return ctx


async def get_claims(
    request: Request, services: Services = Depends(get_services)
) -> TokenClaims:
    """Validate the bearer token of the request."""
    token = RequestInfo.from_request(request).bearer_token
    if token is None:
        raise HTTPException(status_code=401, detail="Missing Bearer token")
    claims = services.issuer.decode(token)
    if claims is None:
        raise HTTPException(status_code=401, detail="Invalid token")
    return claims


async def get_tenant_claims(
    claims: TokenClaims = Depends(get_claims),
    tenant: TenantContext = Depends(get_tenant),
) -> TokenClaims:
    """Bearer claims that belong to the resolved tenant."""
    if claims.tenant_id != tenant.tenant_id:
        logger.warning("token_tenant_mismatch", token_tenant=claims.tenant_id)
        raise TenantMismatch("Token was issued for a different tenant")
    return claims


def require_permission(name: str) -> Callable[..., Awaitable[TokenClaims]]:
    """Dependency factory: the caller must hold ``name`` right now.

    The check reads current assignments rather than the token's permission
    claim, so revocations apply immediately.
    """

    async def _guard(
        claims: TokenClaims = Depends(get_tenant_claims),
        services: Services = Depends(get_services),
    ) -> TokenClaims:
        if not await services.auth.user_has_permission(claims.user_id, name):
            logger.info("permission_denied", user_id=claims.user_id, permission=name)
            raise HTTPException(status_code=403, detail=f"Permission '{name}' required")
        return claims

    return _guard
