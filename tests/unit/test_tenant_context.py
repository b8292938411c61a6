import asyncio

import pytest
import structlog

from tenantguard.exceptions import MissingTenantContext
from tenantguard.tenancy.context import (
    TenantContext,
    current_tenant,
    require_tenant_id,
    reset_tenant,
    set_tenant,
    tenant_scope,
)


@pytest.mark.unit
class TestTenantContext:
    def test_absent_by_default(self) -> None:
        assert current_tenant() is None
        with pytest.raises(MissingTenantContext):
            require_tenant_id()

    def test_scope_sets_and_restores(self) -> None:
        with tenant_scope("t-1") as ctx:
            assert ctx.tenant_id == "t-1"
            assert ctx.source == "explicit"
            assert require_tenant_id() == "t-1"
        assert current_tenant() is None

    def test_nested_scopes_restore_outer(self) -> None:
        with tenant_scope("outer"):
            with tenant_scope(TenantContext(tenant_id="inner", source="claim")):
                assert require_tenant_id() == "inner"
            assert require_tenant_id() == "outer"

    def test_scope_restores_after_error(self) -> None:
        with pytest.raises(RuntimeError), tenant_scope("t-1"):
            raise RuntimeError("boom")
        assert current_tenant() is None

    def test_empty_tenant_id_rejected(self) -> None:
        with pytest.raises(MissingTenantContext):
            with tenant_scope(""):
                pass

    def test_context_is_immutable(self) -> None:
        ctx = TenantContext(tenant_id="t-1")
        with pytest.raises(AttributeError):
            ctx.tenant_id = "t-2"  # type: ignore[misc]

    def test_set_and_reset(self) -> None:
        token = set_tenant(TenantContext(tenant_id="t-1"))
        assert require_tenant_id() == "t-1"
        reset_tenant(token)
        assert current_tenant() is None

    def test_scope_binds_log_context(self) -> None:
        with tenant_scope("t-1"):
            assert structlog.contextvars.get_contextvars()["tenant_id"] == "t-1"
        assert "tenant_id" not in structlog.contextvars.get_contextvars()


@pytest.mark.unit
class TestTenantContextConcurrency:
    async def test_concurrent_tasks_do_not_share_context(self) -> None:
        seen: dict[str, list[str]] = {"a": [], "b": []}

        async def worker(name: str, tenant_id: str) -> None:
            with tenant_scope(tenant_id):
                for _ in range(5):
                    await asyncio.sleep(0)
                    seen[name].append(require_tenant_id())

        await asyncio.gather(worker("a", "tenant-a"), worker("b", "tenant-b"))
        assert seen["a"] == ["tenant-a"] * 5
        assert seen["b"] == ["tenant-b"] * 5

    async def test_spawned_tasks_inherit_context(self) -> None:
        async def child() -> str:
            await asyncio.sleep(0)
            return require_tenant_id()

        with tenant_scope("parent-tenant"):
            result = await asyncio.create_task(child())
        assert result == "parent-tenant"

    async def test_child_changes_do_not_leak_to_parent(self) -> None:
        async def child() -> None:
            set_tenant(TenantContext(tenant_id="child-tenant"))

        with tenant_scope("parent-tenant"):
            await asyncio.create_task(child())
            assert require_tenant_id() == "parent-tenant"
