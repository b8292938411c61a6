"""Signed bearer tokens (HS256 JWT) carrying user, tenant and grants."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

import jwt
import structlog

from tenantguard.exceptions import ConfigError

if TYPE_CHECKING:
    from collections.abc import Iterable

    from tenantguard.config.settings import Settings
    from tenantguard.models.database import User
    from tenantguard.types import Clock

logger = structlog.get_logger(__name__)

_REQUIRED_CLAIMS = ["sub", "jti", "tenantId", "iat", "exp", "iss", "aud"]


def _aware_utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True, slots=True)
class TokenClaims:
    """Parsed and validated claims of a token we issued."""

    user_id: str
    token_id: str
    tenant_id: str
    user_name: str
    full_name: str
    email: str
    roles: tuple[str, ...]
    permissions: tuple[str, ...] | None  # None when the token carries no permission claim
    issued_at: datetime
    expires_at: datetime


def _str_list(value: Any) -> tuple[str, ...] | None:
    if isinstance(value, str):
        return (value,)
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return tuple(value)
    return None


class TokenIssuer:
    """Issues and validates tokens with a symmetric key."""

    def __init__(
        self,
        secret: str,
        *,
        issuer: str,
        audience: str,
        expiry_minutes: int = 60,
        algorithm: str = "HS256",
        clock: Clock = _aware_utc_now,
    ) -> None:
        if not secret:
            msg = "A token signing secret is required"
            raise ConfigError(msg)
        if not algorithm.startswith("HS"):
            msg = f"Unsupported token algorithm {algorithm!r}; only HMAC algorithms are allowed"
            raise ConfigError(msg)
        if expiry_minutes <= 0:
            msg = "Token expiry must be positive"
            raise ConfigError(msg)
        self._secret = secret
        self._issuer = issuer
        self._audience = audience
        self._lifetime = timedelta(minutes=expiry_minutes)
        self._algorithm = algorithm
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings) -> TokenIssuer:
        return cls(
            settings.jwt_secret,
            issuer=settings.jwt_issuer,
            audience=settings.jwt_audience,
            expiry_minutes=settings.jwt_expiry_minutes,
            algorithm=settings.jwt_algorithm,
        )

    def issue(
        self, user: User, roles: Iterable[str], permissions: Iterable[str] | None = None
    ) -> str:
        """Sign a token for ``user`` with the given role and permission names."""
        if not user.tenant_id:
            msg = "Cannot issue a token for a user without a tenant"
            raise ConfigError(msg)
        now = self._clock()
        payload: dict[str, Any] = {
            "sub": user.id,
            "jti": str(uuid.uuid4()),
            "tenantId": user.tenant_id,
            "userName": user.user_name,
            "fullName": user.full_name,
            "email": user.email,
            "role": sorted(set(roles)),
            "iat": now,
            "exp": now + self._lifetime,
            "iss": self._issuer,
            "aud": self._audience,
        }
        if permissions is not None:
            payload["permission"] = sorted(set(permissions))
        return jwt.encode(payload, self._secret, algorithm=self._algorithm)

    def decode(self, token: str, *, verify_exp: bool = True) -> TokenClaims | None:
        """Return the claims of a valid token, or ``None``.

        With ``verify_exp=False`` an expired token is accepted as long as its
        signature, algorithm, issuer and audience are right (used by refresh).
        """
        try:
            header = jwt.get_unverified_header(token)
            if header.get("alg") != self._algorithm:
                logger.info("token_rejected", reason="algorithm", alg=header.get("alg"))
                return None
            payload: dict[str, Any] = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                audience=self._audience,
                issuer=self._issuer,
                options={"require": _REQUIRED_CLAIMS, "verify_exp": verify_exp},
            )
        except jwt.PyJWTError as exc:
            logger.info("token_rejected", reason=type(exc).__name__)
            return None

        roles = _str_list(payload.get("role", []))
        permissions = _str_list(payload["permission"]) if "permission" in payload else None
        ids = (payload["sub"], payload["jti"], payload["tenantId"])
        if roles is None or ("permission" in payload and permissions is None) or not all(
            isinstance(v, str) and v for v in ids
        ):
            logger.info("token_rejected", reason="malformed_claims")
            return None
        return TokenClaims(
            user_id=payload["sub"],
            token_id=payload["jti"],
            tenant_id=payload["tenantId"],
            user_name=str(payload.get("userName", "")),
            full_name=str(payload.get("fullName", "")),
            email=str(payload.get("email", "")),
            roles=roles,
            permissions=permissions,
            issued_at=datetime.fromtimestamp(payload["iat"], UTC),
            expires_at=datetime.fromtimestamp(payload["exp"], UTC),
        )
