"""Validated input contracts (not persisted directly).

Table models in :mod:`tenantguard.models.database` carry no business rules;
services build one of these drafts with :func:`validated` before touching
storage.
"""

from __future__ import annotations

import re
from typing import TypeVar

from pydantic import BaseModel, Field, ValidationError, field_validator

from tenantguard.exceptions import InvalidValue

_SLUG_RE = re.compile(r"^[a-z][a-z0-9\-]*[a-z0-9]$")
_EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
_LABEL_RE = re.compile(r"^[\w\-\s.]+$")  # letters, digits, _ - . and spaces
_PERMISSION_RE = re.compile(r"^Can[A-Z][A-Za-z0-9]*$")

M = TypeVar("M", bound=BaseModel)


def normalize_name(name: str) -> str:
    """Case-insensitive comparison key for role names."""
    return " ".join(name.split()).casefold()


def normalize_email(email: str) -> str:
    return email.strip().casefold()


def _not_blank(value: object) -> str:
    if not isinstance(value, str):
        msg = "must be a string"
        raise ValueError(msg)  # noqa: TRY004
    value = value.strip()
    if not value:
        msg = "must not be blank"
        raise ValueError(msg)
    return value


class TenantDraft(BaseModel):
    name: str = Field(min_length=2, max_length=100)
    identifier: str = Field(min_length=2, max_length=50)

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        return _not_blank(value)

    @field_validator("identifier")
    @classmethod
    def _slug(cls, value: str) -> str:
        if not _SLUG_RE.match(value) or "--" in value:
            msg = (
                "must start with a lowercase letter, end with a letter or digit, "
                "and contain only lowercase letters, digits and single hyphens"
            )
            raise ValueError(msg)
        return value


class UserDraft(BaseModel):
    user_name: str = Field(min_length=1, max_length=256)
    email: str = Field(max_length=256)
    full_name: str = Field(default="", max_length=100)

    @field_validator("user_name", mode="before")
    @classmethod
    def _strip_user_name(cls, value: str) -> str:
        return _not_blank(value)

    @field_validator("email", mode="before")
    @classmethod
    def _email(cls, value: object) -> str:
        value = _not_blank(value)
        if not _EMAIL_RE.match(value):
            msg = "is not a valid email address"
            raise ValueError(msg)
        return value

    @field_validator("full_name", mode="before")
    @classmethod
    def _strip_full_name(cls, value: object) -> str:
        return value.strip() if isinstance(value, str) else ""


class RoleDraft(BaseModel):
    name: str = Field(min_length=2, max_length=50)
    description: str | None = Field(default=None, max_length=500)

    @field_validator("name", mode="before")
    @classmethod
    def _label(cls, value: str) -> str:
        value = _not_blank(value)
        if not _LABEL_RE.match(value):
            msg = "contains characters that are not allowed"
            raise ValueError(msg)
        return value


class PermissionDraft(BaseModel):
    name: str = Field(min_length=3, max_length=100)
    description: str = Field(default="", max_length=500)

    @field_validator("name")
    @classmethod
    def _convention(cls, value: str) -> str:
        if not _PERMISSION_RE.match(value):
            msg = "must follow the 'CanActionSubject' naming convention"
            raise ValueError(msg)
        return value


class SectionDraft(BaseModel):
    name: str = Field(min_length=2, max_length=100)
    description: str | None = Field(default=None, max_length=500)

    @field_validator("name", mode="before")
    @classmethod
    def _label(cls, value: str) -> str:
        value = _not_blank(value)
        if not _LABEL_RE.match(value):
            msg = "contains characters that are not allowed"
            raise ValueError(msg)
        return value


def validated(model: type[M], **data: object) -> M:
    """Build ``model`` from ``data`` or raise :class:`InvalidValue`."""
    try:
        return model(**data)
    except ValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(p) for p in first["loc"]) or model.__name__
        raise InvalidValue(
            f"{field}: {first['msg']}",
            errors=exc.errors(include_url=False, include_context=False),
        ) from exc
