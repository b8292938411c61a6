"""Login, token refresh and live permission checks."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog
from sqlmodel import col

from tenantguard.authz.users import grants_of
from tenantguard.models.database import User, _utc_now
from tenantguard.models.domain import normalize_email
from tenantguard.storage.database import unit_of_work
from tenantguard.storage.scoped import TenantScopedStore
from tenantguard.tenancy.context import (
    TenantContext,
    current_tenant,
    require_tenant_id,
    tenant_scope,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine
    from sqlmodel.ext.asyncio.session import AsyncSession

    from tenantguard.auth.credentials import CredentialVerifier
    from tenantguard.auth.tokens import TokenIssuer
    from tenantguard.tenancy.registry import TenantRegistry

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class LoginResult:
    token: str
    user_id: str
    tenant_id: str


class AuthService:
    """Turns credentials into tokens for the resolved tenant.

    Failures never raise: they return ``None`` and are logged at info level
    without the credential itself.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        registry: TenantRegistry,
        issuer: TokenIssuer,
        verifier: CredentialVerifier,
        include_permissions: bool = True,
    ) -> None:
        self._engine = engine
        self._registry = registry
        self._issuer = issuer
        self._verifier = verifier
        self._include_permissions = include_permissions

    async def _tenant_active(self, tenant_id: str) -> bool:
        tenant = await self._registry.lookup_by_id(tenant_id)
        return tenant is not None and tenant.is_active

    async def login(self, email: str, password: str) -> LoginResult | None:
        tenant_id = require_tenant_id()
        if not await self._tenant_active(tenant_id):
            logger.info("login_failed", reason="tenant_inactive")
            return None
        async with unit_of_work(self._engine) as session:
            users = TenantScopedStore(session, User)
            user = await users.first(col(User.normalized_email) == normalize_email(email))
            if user is None:
                logger.info("login_failed", reason="unknown_user")
                return None
            if not user.is_active:
                logger.info("login_failed", reason="user_inactive", user_id=user.id)
                return None
            if not await self._verifier.verify_password(user, password):
                await self._verifier.record_failed_attempt(user)
                logger.info("login_failed", reason="bad_password", user_id=user.id)
                return None
            await self._verifier.reset_failed_attempts(user)
            user.last_login_at = _utc_now()
            await users.update(user)
            token = await self._issue(session, user)
        logger.info("login_succeeded", user_id=user.id)
        return LoginResult(token=token, user_id=user.id, tenant_id=tenant_id)

    async def refresh(self, token: str) -> str | None:
        """Issue a replacement for a validly signed token, expired or not."""
        claims = self._issuer.decode(token, verify_exp=False)
        if claims is None:
            return None
        ambient = current_tenant()
        if ambient is not None and ambient.tenant_id != claims.tenant_id:
            logger.info("refresh_failed", reason="tenant_mismatch")
            return None
        if not await self._tenant_active(claims.tenant_id):
            logger.info("refresh_failed", reason="tenant_inactive")
            return None
        with tenant_scope(TenantContext(tenant_id=claims.tenant_id, source="claim")):
            async with unit_of_work(self._engine) as session:
                user = await TenantScopedStore(session, User).find(claims.user_id)
                if user is None or user.tenant_id != claims.tenant_id:
                    logger.info("refresh_failed", reason="unknown_user")
                    return None
                if not user.is_active:
                    logger.info("refresh_failed", reason="user_inactive", user_id=user.id)
                    return None
                new_token = await self._issue(session, user)
        logger.info("token_refreshed", user_id=claims.user_id)
        return new_token

    async def user_has_permission(self, user_id: str, permission_name: str) -> bool:
        """Check a permission live against storage, in the ambient tenant."""
        if not await self._tenant_active(require_tenant_id()):
            return False
        async with unit_of_work(self._engine) as session:
            user = await TenantScopedStore(session, User).find(user_id)
            if user is None or not user.is_active:
                return False
            _, permissions = await grants_of(session, user.id)
        return permission_name in permissions

    async def _issue(self, session: AsyncSession, user: User) -> str:
        roles, permissions = await grants_of(session, user.id)
        return self._issuer.issue(
            user, roles, sorted(permissions) if self._include_permissions else None
        )
