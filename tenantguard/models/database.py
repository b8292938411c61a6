"""SQLModel database table models.

Every tenant-owned table carries a non-null ``tenant_id`` and is only read
or written through :class:`tenantguard.storage.scoped.TenantScopedStore`.
``Tenant`` and ``Permission`` are global.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel


def _utc_now() -> datetime:
    """Return current UTC time as naive datetime for TIMESTAMP WITHOUT TIME ZONE columns."""
    return datetime.now(UTC).replace(tzinfo=None)


def _new_uuid() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Global models
# ---------------------------------------------------------------------------


class Tenant(SQLModel, table=True):
    __tablename__ = "tenants"

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    name: str
    identifier: str = Field(unique=True, index=True)  # URL-safe slug
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)


class Permission(SQLModel, table=True):
    __tablename__ = "permissions"

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    name: str = Field(unique=True, index=True)
    description: str = ""
    is_system: bool = Field(default=False)
    # Null for catalog permissions; set only for tenant-scoped ones
    tenant_id: str | None = Field(default=None, foreign_key="tenants.id", index=True)
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)


# ---------------------------------------------------------------------------
# Tenant-owned models
# ---------------------------------------------------------------------------


class User(SQLModel, table=True):
    __tablename__ = "users"
    __table_args__ = (
        UniqueConstraint("tenant_id", "normalized_email", name="uq_users_tenant_email"),
    )

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    tenant_id: str | None = Field(
        default=None, foreign_key="tenants.id", index=True, nullable=False
    )
    user_name: str
    email: str
    normalized_email: str
    full_name: str = ""
    is_active: bool = Field(default=True)
    last_login_at: datetime | None = None
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)


class Role(SQLModel, table=True):
    __tablename__ = "roles"
    __table_args__ = (
        UniqueConstraint("tenant_id", "normalized_name", name="uq_roles_tenant_name"),
    )

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    tenant_id: str | None = Field(
        default=None, foreign_key="tenants.id", index=True, nullable=False
    )
    name: str
    normalized_name: str
    description: str | None = None
    is_active: bool = Field(default=True)
    is_admin: bool = Field(default=False)
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)


class RolePermission(SQLModel, table=True):
    __tablename__ = "role_permissions"
    __table_args__ = (
        UniqueConstraint("role_id", "permission_id", name="uq_role_permissions_pair"),
    )

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    tenant_id: str | None = Field(
        default=None, foreign_key="tenants.id", index=True, nullable=False
    )
    role_id: str = Field(foreign_key="roles.id", index=True)
    permission_id: str = Field(foreign_key="permissions.id", index=True)
    created_at: datetime = Field(default_factory=_utc_now)


class UserRole(SQLModel, table=True):
    __tablename__ = "user_roles"
    __table_args__ = (UniqueConstraint("user_id", "role_id", name="uq_user_roles_pair"),)

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    tenant_id: str | None = Field(
        default=None, foreign_key="tenants.id", index=True, nullable=False
    )
    user_id: str = Field(foreign_key="users.id", index=True)
    role_id: str = Field(foreign_key="roles.id", index=True)
    created_at: datetime = Field(default_factory=_utc_now)


class SectionDefinition(SQLModel, table=True):
    __tablename__ = "section_definitions"
    __table_args__ = (
        UniqueConstraint("tenant_id", "normalized_name", name="uq_sections_tenant_name"),
    )

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    tenant_id: str | None = Field(
        default=None, foreign_key="tenants.id", index=True, nullable=False
    )
    name: str
    normalized_name: str  # PascalCase form used in permission names
    description: str | None = None
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)


TENANT_OWNED_MODELS: tuple[type[SQLModel], ...] = (
    User,
    Role,
    RolePermission,
    UserRole,
    SectionDefinition,
)
