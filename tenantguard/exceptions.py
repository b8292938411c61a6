"""Exception hierarchy for tenantguard.

Isolation violations are programming or configuration errors and are never
corrected silently. Business-rule violations are rejected requests whose
message is safe to return to the caller.
"""

from __future__ import annotations

from typing import Any


class TenantGuardError(Exception):
    """Base exception for all tenantguard errors."""

    status_code = 500


# ---------------------------------------------------------------------------
# Isolation violations
# ---------------------------------------------------------------------------


class IsolationError(TenantGuardError):
    """Raised when an operation would cross or ignore a tenant boundary."""

    status_code = 403


class MissingTenantContext(IsolationError):
    """Raised when an operation requires a tenant and none was resolved."""

    status_code = 400

    def __init__(self, message: str = "No tenant context for this operation") -> None:
        super().__init__(message)


class TenantMismatch(IsolationError):
    """Raised when an explicit tenant id conflicts with the resolved context."""

    def __init__(self, message: str = "Entity does not belong to the current tenant") -> None:
        super().__init__(message)


class TenantInactive(TenantGuardError):
    """Raised when a request resolves to a deactivated tenant."""

    status_code = 403

    def __init__(self, message: str = "Tenant is not active") -> None:
        super().__init__(message)


# ---------------------------------------------------------------------------
# Business-rule violations
# ---------------------------------------------------------------------------


class BusinessRuleError(TenantGuardError):
    """Raised when a request breaks a business rule and is rejected."""

    status_code = 409


class DuplicateName(BusinessRuleError):
    """Raised when a name, email or identifier is already taken."""


class RoleInUse(BusinessRuleError):
    """Raised when deleting a role that users still hold."""


class PermissionInUse(BusinessRuleError):
    """Raised when deleting a permission still assigned to a role."""


class LastAdministratorProtected(BusinessRuleError):
    """Raised when an operation would leave a tenant without an administrator."""


class ImmutablePermission(BusinessRuleError):
    """Raised when renaming or deleting a system-defined permission."""


class ProtectedRole(BusinessRuleError):
    """Raised when renaming, deactivating or deleting an administrative role."""


class CannotDeleteSelf(BusinessRuleError):
    """Raised when a user tries to delete their own account."""


class TenantNotEmpty(BusinessRuleError):
    """Raised when deleting a tenant that still owns users or sections."""


class NotFound(BusinessRuleError):
    """Raised when a referenced entity does not exist in the current scope."""

    status_code = 404


# ---------------------------------------------------------------------------
# Input and configuration errors
# ---------------------------------------------------------------------------


class InvalidValue(TenantGuardError):
    """Raised when input fails validation."""

    status_code = 422

    def __init__(self, message: str, errors: list[dict[str, Any]] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or []


class ConfigError(TenantGuardError):
    """Raised when configuration is invalid."""
