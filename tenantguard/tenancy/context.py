"""Ambient tenant context for the current request or task.

The context lives in a :class:`contextvars.ContextVar`, so every asyncio task
started while it is set inherits it and concurrent requests never see each
other's tenant.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar, Token
from dataclasses import dataclass

import structlog

from tenantguard.exceptions import MissingTenantContext


@dataclass(frozen=True, slots=True)
class TenantContext:
    """The tenant a unit of work runs for."""

    tenant_id: str
    identifier: str | None = None
    source: str = "explicit"  # header | subdomain | path | claim | explicit


_current: ContextVar[TenantContext | None] = ContextVar("tenant_context", default=None)


def current_tenant() -> TenantContext | None:
    return _current.get()


def require_tenant_id() -> str:
    """Return the resolved tenant id or raise :class:`MissingTenantContext`."""
    ctx = _current.get()
    if ctx is None:
        raise MissingTenantContext
    return ctx.tenant_id


def set_tenant(ctx: TenantContext) -> Token[TenantContext | None]:
    return _current.set(ctx)


def reset_tenant(token: Token[TenantContext | None]) -> None:
    _current.reset(token)


@contextmanager
def tenant_scope(tenant: TenantContext | str) -> Iterator[TenantContext]:
    """Run a block under an explicit tenant.

    Used where no request resolved one: background jobs, provisioning and
    tests. The previous context (if any) is restored on exit.
    """
    ctx = tenant if isinstance(tenant, TenantContext) else TenantContext(tenant_id=tenant)
    if not ctx.tenant_id:
        raise MissingTenantContext("Tenant scope requires a tenant id")
    token = _current.set(ctx)
    try:
        with structlog.contextvars.bound_contextvars(tenant_id=ctx.tenant_id):
            yield ctx
    finally:
        _current.reset(token)
