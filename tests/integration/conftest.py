"""Fixtures for HTTP tests.

Seed data through ``app_services`` so the app's tenant and permission caches
see every write.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from fastapi import Depends

from tenantguard.auth.tokens import TokenClaims
from tenantguard.web.guards import require_permission

if TYPE_CHECKING:
    from fastapi import FastAPI

    from tenantguard.web.dependencies import Services


@pytest.fixture()
def app_services(app: FastAPI) -> Services:
    return app.state.services


@pytest.fixture()
def guarded_app(app: FastAPI) -> FastAPI:
    """The app plus a route that requires ``CanViewUsers``."""

    @app.get("/api/test/users")
    async def list_users(
        claims: TokenClaims = Depends(require_permission("CanViewUsers")),
    ) -> dict[str, str]:
        return {"user_id": claims.user_id}

    return app
