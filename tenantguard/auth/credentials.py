"""Credential verification boundary.

Password storage and hashing live outside this service. Deployments plug in a
verifier by import path (``CREDENTIAL_VERIFIER=package.module:factory``).
"""

from __future__ import annotations

import importlib
from typing import TYPE_CHECKING, Protocol, runtime_checkable

import structlog

from tenantguard.exceptions import ConfigError

if TYPE_CHECKING:
    from tenantguard.models.database import User

logger = structlog.get_logger(__name__)


@runtime_checkable
class CredentialVerifier(Protocol):
    async def verify_password(self, user: User, plaintext: str) -> bool: ...

    async def record_failed_attempt(self, user: User) -> None: ...

    async def reset_failed_attempts(self, user: User) -> None: ...


class DenyAllVerifier:
    """Rejects every password. Used when no verifier is configured."""

    async def verify_password(self, user: User, plaintext: str) -> bool:
        return False

    async def record_failed_attempt(self, user: User) -> None:
        return None

    async def reset_failed_attempts(self, user: User) -> None:
        return None


def load_verifier(path: str | None) -> CredentialVerifier:
    """Build the verifier named by ``module:factory``, or deny all logins."""
    if not path:
        logger.warning("credential_verifier_not_configured")
        return DenyAllVerifier()
    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        msg = f"CREDENTIAL_VERIFIER must look like 'package.module:factory', got {path!r}"
        raise ConfigError(msg)
    try:
        factory = getattr(importlib.import_module(module_name), attr)
    except (ImportError, AttributeError) as exc:
        msg = f"Cannot load credential verifier {path!r}: {exc}"
        raise ConfigError(msg) from exc
    verifier = factory()
    if not isinstance(verifier, CredentialVerifier):
        msg = f"{path!r} did not produce a credential verifier"
        raise ConfigError(msg)
    return verifier
