"""Shared test fixtures."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine

from tenantguard.config.settings import Settings
from tenantguard.storage.database import init_db
from tenantguard.web.app import create_app
from tenantguard.web.dependencies import Services, build_services

if TYPE_CHECKING:
    from tenantguard.models.database import Tenant, User

TEST_SECRET = "test-secret-key-that-is-at-least-32-bytes-long"


class FakeVerifier:
    """Credential verifier holding plaintext passwords keyed by normalized email."""

    def __init__(self) -> None:
        self.passwords: dict[str, str] = {}
        self.failed: list[str] = []
        self.resets: list[str] = []

    def set_password(self, email: str, password: str) -> None:
        self.passwords[email.strip().casefold()] = password

    async def verify_password(self, user: User, plaintext: str) -> bool:
        return self.passwords.get(user.normalized_email) == plaintext

    async def record_failed_attempt(self, user: User) -> None:
        self.failed.append(user.id)

    async def reset_failed_attempts(self, user: User) -> None:
        self.resets.append(user.id)


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        _env_file=None,
        database_url="sqlite+aiosqlite:///:memory:",
        jwt_secret=TEST_SECRET,
        debug=True,
    )


@pytest.fixture()
async def async_engine():
    """In-memory SQLite engine with all tables created."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture()
def verifier() -> FakeVerifier:
    return FakeVerifier()


@pytest.fixture()
def services(settings: Settings, async_engine, verifier: FakeVerifier) -> Services:
    return build_services(settings, async_engine, verifier)


@pytest.fixture()
async def acme(services: Services) -> Tenant:
    return await services.registry.create("Acme Corp", "acme")


@pytest.fixture()
async def globex(services: Services) -> Tenant:
    return await services.registry.create("Globex", "globex")


@pytest.fixture()
def app(settings: Settings, async_engine, verifier: FakeVerifier):
    """Create a fresh app instance wired to the test database."""
    return create_app(settings=settings, engine=async_engine, verifier=verifier)


@pytest.fixture()
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
