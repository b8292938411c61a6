"""Enums and type aliases for tenantguard."""

from collections.abc import Callable
from datetime import datetime
from enum import StrEnum

Clock = Callable[[], datetime]


class ResolutionStrategy(StrEnum):
    HEADER = "header"
    SUBDOMAIN = "subdomain"
    PATH = "path"
    CLAIM = "claim"


class SectionOperation(StrEnum):
    CREATE = "Create"
    READ = "Read"
    UPDATE = "Update"
    DELETE = "Delete"
