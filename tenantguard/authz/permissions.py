"""Permission names: the system set and names derived from sections."""

from __future__ import annotations

import re

from tenantguard.exceptions import InvalidValue
from tenantguard.types import SectionOperation

MAX_PERMISSION_NAME_LENGTH = 100

# name -> description
SYSTEM_PERMISSIONS: dict[str, str] = {
    "CanCreateUser": "Create users in the tenant",
    "CanEditUser": "Edit user details and status",
    "CanDeleteUser": "Delete users from the tenant",
    "CanViewUsers": "List and view users",
    "CanCreateRole": "Create roles",
    "CanEditRole": "Rename, describe and (de)activate roles",
    "CanDeleteRole": "Delete roles no user holds",
    "CanViewRoles": "List and view roles",
    "CanAssignRoles": "Assign roles to users and revoke them",
    "CanAssignPermissions": "Grant permissions to roles and remove them",
    "CanDefineSections": "Create, rename and delete sections",
    "CanViewAllSections": "View every section regardless of grants",
}

_SEPARATORS_RE = re.compile(r"[\s\-.]+")
_SECTION_PREFIX = "Can{op}DataInSection"
_LONGEST_PREFIX = max(len(_SECTION_PREFIX.format(op=op.value)) for op in SectionOperation)


def _title(word: str) -> str:
    # Acronyms such as "HR" stay as written
    if word.isupper():
        return word
    return word[:1].upper() + word[1:].lower()


def normalize_section_name(name: str) -> str:
    """Return the PascalCase key used in a section's permission names.

    ``"purchase orders"`` and ``"Purchase-Orders"`` both give
    ``"PurchaseOrders"``; characters other than letters and digits are dropped.
    """
    words = _SEPARATORS_RE.sub(" ", name.strip()).split(" ")
    normalized = "".join(
        "".join(ch for ch in _title(word) if ch.isalnum()) for word in words if word
    )
    if not normalized:
        raise InvalidValue("Section name must contain at least one letter or digit")
    if len(normalized) + _LONGEST_PREFIX > MAX_PERMISSION_NAME_LENGTH:
        raise InvalidValue("Section name is too long to derive permission names from")
    return normalized


def section_permission_name(name: str, operation: SectionOperation) -> str:
    return _SECTION_PREFIX.format(op=operation.value) + normalize_section_name(name)


def section_permission_names(name: str) -> tuple[str, str, str, str]:
    """The create, read, update and delete permission names for a section."""
    key = normalize_section_name(name)
    create, read, update, delete = (
        _SECTION_PREFIX.format(op=op.value) + key
        for op in (
            SectionOperation.CREATE,
            SectionOperation.READ,
            SectionOperation.UPDATE,
            SectionOperation.DELETE,
        )
    )
    return create, read, update, delete


def section_permission_descriptions(name: str) -> dict[str, str]:
    display = " ".join(name.split())
    return {
        permission: f"{op.value} data in section '{display}'"
        for op, permission in zip(SectionOperation, section_permission_names(name), strict=True)
    }
