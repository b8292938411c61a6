"""Authentication routes: password login, token refresh and the current principal."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from tenantguard.auth.tokens import TokenClaims
from tenantguard.web.dependencies import Services, get_services
from tenantguard.web.guards import get_tenant_claims

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


class LoginRequest(BaseModel):
    email: str
    password: str


class RefreshRequest(BaseModel):
    token: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user_id: str | None = None
    tenant_id: str | None = None


class PrincipalResponse(BaseModel):
    user_id: str
    tenant_id: str
    user_name: str
    email: str
    roles: list[str]
    permissions: list[str]


@router.post("/login")
async def login(
    body: LoginRequest, services: Services = Depends(get_services)
) -> TokenResponse:
    """Exchange email and password for a token in the resolved tenant."""
    result = await services.auth.login(body.email, body.password)
    if result is None:
        raise HTTPException(status_code=401, detail="Invalid email or password")
    return TokenResponse(
        access_token=result.token, user_id=result.user_id, tenant_id=result.tenant_id
    )


@router.post("/refresh")
async def refresh(
    body: RefreshRequest, services: Services = Depends(get_services)
) -> TokenResponse:
    token = await services.auth.refresh(body.token)
    if token is None:
        raise HTTPException(status_code=401, detail="Token cannot be refreshed")
    claims = services.issuer.decode(token)
    return TokenResponse(
        access_token=token,
        user_id=claims.user_id if claims else None,
        tenant_id=claims.tenant_id if claims else None,
    )


@router.get("/me")
async def me(
    claims: TokenClaims = Depends(get_tenant_claims),
    services: Services = Depends(get_services),
) -> PrincipalResponse:
    """The caller and their permissions as currently stored."""
    user = await services.users.get_user(claims.user_id)
    if user is None or not user.is_active:
        raise HTTPException(status_code=401, detail="User is no longer active")
    roles = await services.users.roles_of(user.id)
    permissions = await services.users.permissions_of(user.id)
    return PrincipalResponse(
        user_id=user.id,
        tenant_id=claims.tenant_id,
        user_name=user.user_name,
        email=user.email,
        roles=[role.name for role in roles if role.is_active],
        permissions=sorted(permissions),
    )
