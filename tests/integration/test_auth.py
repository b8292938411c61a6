from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from tenantguard.tenancy.context import tenant_scope

if TYPE_CHECKING:
    from fastapi import FastAPI
    from httpx import AsyncClient

    from tenantguard.authz.provisioning import ProvisionedAdmin
    from tenantguard.models.database import Tenant
    from tenantguard.web.dependencies import Services

    from tests.conftest import FakeVerifier

PASSWORD = "s3cret-password"
ACME = {"X-Tenant-Identifier": "acme"}


@pytest.fixture()
async def admin(app_services: Services, acme: Tenant, verifier: FakeVerifier) -> ProvisionedAdmin:
    result = await app_services.provisioner.provision_admin(
        acme.id, email="alice@acme.test", user_name="alice", full_name="Alice"
    )
    verifier.set_password("alice@acme.test", PASSWORD)
    return result


async def _token(client: AsyncClient, email: str = "alice@acme.test") -> str:
    resp = await client.post(
        "/api/auth/login", json={"email": email, "password": PASSWORD}, headers=ACME
    )
    assert resp.status_code == 200, resp.text
    return resp.json()["access_token"]


def _bearer(token: str, **headers: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}", **headers}


@pytest.mark.integration
class TestLogin:
    async def test_login_success(
        self, client: AsyncClient, acme: Tenant, admin: ProvisionedAdmin
    ) -> None:
        resp = await client.post(
            "/api/auth/login",
            json={"email": "alice@acme.test", "password": PASSWORD},
            headers={"X-Tenant-Id": acme.id},
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["token_type"] == "bearer"
        assert data["tenant_id"] == acme.id
        assert data["user_id"] == admin.user.id
        assert data["access_token"]

    async def test_wrong_password(self, client: AsyncClient, admin: ProvisionedAdmin) -> None:
        resp = await client.post(
            "/api/auth/login",
            json={"email": "alice@acme.test", "password": "nope"},
            headers=ACME,
        )
        assert resp.status_code == 401

    async def test_login_in_wrong_tenant(
        self, client: AsyncClient, admin: ProvisionedAdmin, globex: Tenant
    ) -> None:
        resp = await client.post(
            "/api/auth/login",
            json={"email": "alice@acme.test", "password": PASSWORD},
            headers={"X-Tenant-Identifier": "globex"},
        )
        assert resp.status_code == 401

    async def test_login_without_tenant(self, client: AsyncClient, admin: ProvisionedAdmin) -> None:
        resp = await client.post(
            "/api/auth/login", json={"email": "alice@acme.test", "password": PASSWORD}
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "MissingTenantContext"

    async def test_unknown_tenant_is_no_tenant(self, client: AsyncClient) -> None:
        resp = await client.post(
            "/api/auth/login",
            json={"email": "alice@acme.test", "password": PASSWORD},
            headers={"X-Tenant-Identifier": "initech"},
        )
        assert resp.status_code == 400

    async def test_inactive_tenant(
        self, client: AsyncClient, app_services: Services, acme: Tenant, admin: ProvisionedAdmin
    ) -> None:
        await app_services.registry.deactivate(acme.id)
        resp = await client.post(
            "/api/auth/login",
            json={"email": "alice@acme.test", "password": PASSWORD},
            headers=ACME,
        )
        assert resp.status_code == 403
        assert resp.json()["error"] == "TenantInactive"


@pytest.mark.integration
class TestRefresh:
    async def test_refresh(
        self, client: AsyncClient, acme: Tenant, admin: ProvisionedAdmin
    ) -> None:
        token = await _token(client)
        resp = await client.post("/api/auth/refresh", json={"token": token})
        assert resp.status_code == 200
        data = resp.json()
        assert data["access_token"] != token
        assert data["tenant_id"] == acme.id

    async def test_refresh_invalid_token(self, client: AsyncClient) -> None:
        resp = await client.post("/api/auth/refresh", json={"token": "garbage"})
        assert resp.status_code == 401

    async def test_refresh_under_other_tenant(
        self, client: AsyncClient, admin: ProvisionedAdmin, globex: Tenant
    ) -> None:
        token = await _token(client)
        resp = await client.post(
            "/api/auth/refresh", json={"token": token}, headers={"X-Tenant-Identifier": "globex"}
        )
        assert resp.status_code == 401


@pytest.mark.integration
class TestCurrentPrincipal:
    async def test_me_resolves_tenant_from_token(
        self, client: AsyncClient, acme: Tenant, admin: ProvisionedAdmin
    ) -> None:
        token = await _token(client)
        resp = await client.get("/api/auth/me", headers=_bearer(token))
        assert resp.status_code == 200
        data = resp.json()
        assert data["tenant_id"] == acme.id
        assert data["email"] == "alice@acme.test"
        assert data["roles"] == ["Administrator"]
        assert "CanCreateUser" in data["permissions"]

    async def test_me_without_token(self, client: AsyncClient, admin: ProvisionedAdmin) -> None:
        resp = await client.get("/api/auth/me", headers=ACME)
        assert resp.status_code == 401

    async def test_me_with_token_for_other_tenant(
        self, client: AsyncClient, admin: ProvisionedAdmin, globex: Tenant
    ) -> None:
        token = await _token(client)
        resp = await client.get(
            "/api/auth/me", headers=_bearer(token, **{"X-Tenant-Identifier": "globex"})
        )
        assert resp.status_code == 403
        assert resp.json()["error"] == "TenantMismatch"


@pytest.mark.integration
class TestRequirePermission:
    async def test_allowed(
        self, guarded_app: FastAPI, client: AsyncClient, admin: ProvisionedAdmin
    ) -> None:
        token = await _token(client)
        resp = await client.get("/api/test/users", headers=_bearer(token))
        assert resp.status_code == 200
        assert resp.json() == {"user_id": admin.user.id}

    async def test_missing_token(self, guarded_app: FastAPI, client: AsyncClient) -> None:
        resp = await client.get("/api/test/users", headers=ACME)
        assert resp.status_code == 401

    async def test_user_without_permission(
        self,
        guarded_app: FastAPI,
        client: AsyncClient,
        app_services: Services,
        acme: Tenant,
        admin: ProvisionedAdmin,
        verifier: FakeVerifier,
    ) -> None:
        with tenant_scope(acme.id):
            await app_services.users.create_user("bob", "bob@acme.test")
        verifier.set_password("bob@acme.test", PASSWORD)
        token = await _token(client, "bob@acme.test")
        resp = await client.get("/api/test/users", headers=_bearer(token))
        assert resp.status_code == 403

    async def test_revocation_applies_to_existing_tokens(
        self,
        guarded_app: FastAPI,
        client: AsyncClient,
        app_services: Services,
        acme: Tenant,
        admin: ProvisionedAdmin,
    ) -> None:
        token = await _token(client)
        view_users = await app_services.catalog.get_by_name("CanViewUsers")
        assert view_users is not None
        with tenant_scope(acme.id):
            await app_services.roles.remove_permissions(admin.role.id, [view_users.id])
        resp = await client.get("/api/test/users", headers=_bearer(token))
        assert resp.status_code == 403

    async def test_token_for_other_tenant(
        self,
        guarded_app: FastAPI,
        client: AsyncClient,
        admin: ProvisionedAdmin,
        globex: Tenant,
    ) -> None:
        token = await _token(client)
        resp = await client.get(
            "/api/test/users", headers=_bearer(token, **{"X-Tenant-Id": globex.id})
        )
        assert resp.status_code == 403
