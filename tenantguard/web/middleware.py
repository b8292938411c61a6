"""FastAPI middleware: request ID injection and tenant resolution."""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import JSONResponse

from tenantguard.exceptions import TenantInactive
from tenantguard.tenancy.context import reset_tenant, set_tenant
from tenantguard.tenancy.resolver import RequestInfo

if TYPE_CHECKING:
    from starlette.requests import Request
    from starlette.responses import Response

logger = structlog.get_logger(__name__)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Adds a unique X-Request-ID header to every response."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get("x-request-id", str(uuid.uuid4()))
        with structlog.contextvars.bound_contextvars(request_id=request_id):
            response = await call_next(request)
        response.headers["x-request-id"] = request_id
        return response


class TenantResolutionMiddleware(BaseHTTPMiddleware):
    """Resolves the request's tenant once and makes it ambient for the handler.

    The tenant is stored on ``request.state.tenant`` (``None`` when nothing
    resolved) and in the tenant context variable, which is reset when the
    response is produced.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        resolver = request.app.state.services.resolver
        try:
            ctx = await resolver.resolve(RequestInfo.from_request(request))
        except TenantInactive as exc:
            return JSONResponse(
                {"detail": str(exc), "error": type(exc).__name__},
                status_code=exc.status_code,
            )
        request.state.tenant = ctx
        if ctx is None:
            return await call_next(request)

        token = set_tenant(ctx)
        try:
            with structlog.contextvars.bound_contextvars(tenant_id=ctx.tenant_id):
                logger.debug("tenant_resolved", source=ctx.source)
                return await call_next(request)
        finally:
            reset_tenant(token)
