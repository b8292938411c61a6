"""FastAPI application factory."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from tenantguard.auth.credentials import load_verifier
from tenantguard.config.logging import setup_logging
from tenantguard.config.settings import get_settings
from tenantguard.exceptions import (
    BusinessRuleError,
    InvalidValue,
    IsolationError,
    TenantGuardError,
)
from tenantguard.storage.database import get_engine
from tenantguard.web.dependencies import build_services
from tenantguard.web.health import check_health
from tenantguard.web.middleware import RequestIDMiddleware, TenantResolutionMiddleware
from tenantguard.web.routes.auth import router as auth_router

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

    from tenantguard.auth.credentials import CredentialVerifier
    from tenantguard.config.settings import Settings

logger = structlog.get_logger(__name__)


def create_app(
    settings: Settings | None = None,
    engine: AsyncEngine | None = None,
    verifier: CredentialVerifier | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()
    setup_logging(log_level=settings.log_level, json_output=not settings.debug)

    app = FastAPI(
        title="tenantguard",
        description="Multi-tenant isolation and role-based access control core",
        version="0.1.0",
    )
    app.state.services = build_services(
        settings,
        engine or get_engine(),
        verifier or load_verifier(settings.credential_verifier),
    )

    @app.exception_handler(TenantGuardError)
    async def tenantguard_error_handler(request: Request, exc: TenantGuardError) -> JSONResponse:
        content: dict[str, object] = {"detail": str(exc), "error": type(exc).__name__}
        if isinstance(exc, InvalidValue) and exc.errors:
            content["errors"] = exc.errors
        if isinstance(exc, IsolationError):
            logger.warning("isolation_violation", error=type(exc).__name__, path=request.url.path)
        elif isinstance(exc, BusinessRuleError | InvalidValue):
            logger.info("request_rejected", error=type(exc).__name__, path=request.url.path)
        else:
            logger.error("request_failed", error=type(exc).__name__, path=request.url.path)
        return JSONResponse(status_code=exc.status_code, content=content)

    # Middleware (last added runs first)
    app.add_middleware(TenantResolutionMiddleware)
    app.add_middleware(RequestIDMiddleware)

    app.include_router(auth_router)

    @app.get("/api/health")
    async def health_check() -> dict[str, object]:
        services = app.state.services
        return await check_health(services.engine, services.settings)

    logger.info("app_created")
    return app
