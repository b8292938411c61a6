from __future__ import annotations

from datetime import UTC, datetime, timedelta

import jwt
import pytest

from tenantguard.auth.tokens import TokenIssuer
from tenantguard.exceptions import ConfigError
from tenantguard.models.database import User

SECRET = "unit-test-signing-secret-" + "0123456789" * 4


def _issuer(**overrides: object) -> TokenIssuer:
    kwargs: dict = {"issuer": "tenantguard", "audience": "tenantguard-api"}
    kwargs.update(overrides)
    secret = kwargs.pop("secret", SECRET)
    return TokenIssuer(secret, **kwargs)


def _user(tenant_id: str | None = "tenant-1") -> User:
    return User(
        id="user-1",
        tenant_id=tenant_id,
        user_name="alice",
        email="alice@acme.test",
        normalized_email="alice@acme.test",
        full_name="Alice Liddell",
    )


def _hours_ago(hours: int):
    return lambda: datetime.now(UTC) - timedelta(hours=hours)


@pytest.mark.unit
class TestIssueAndDecode:
    def test_round_trip_claims(self) -> None:
        issuer = _issuer()
        token = issuer.issue(_user(), ["Admin", "Sales", "Admin"], ["CanCreateUser"])
        claims = issuer.decode(token)
        assert claims is not None
        assert claims.user_id == "user-1"
        assert claims.tenant_id == "tenant-1"
        assert claims.user_name == "alice"
        assert claims.full_name == "Alice Liddell"
        assert claims.roles == ("Admin", "Sales")
        assert claims.permissions == ("CanCreateUser",)
        assert claims.expires_at - claims.issued_at == timedelta(minutes=60)

    def test_wire_claim_names(self) -> None:
        token = _issuer().issue(_user(), ["Admin"], ["CanCreateUser"])
        payload = jwt.decode(token, options={"verify_signature": False})
        assert payload["tenantId"] == "tenant-1"
        assert payload["role"] == ["Admin"]
        assert payload["permission"] == ["CanCreateUser"]
        assert payload["iss"] == "tenantguard"
        assert payload["aud"] == "tenantguard-api"
        assert payload["jti"]

    def test_permissions_claim_is_optional(self) -> None:
        issuer = _issuer()
        token = issuer.issue(_user(), ["Admin"])
        payload = jwt.decode(token, options={"verify_signature": False})
        claims = issuer.decode(token)
        assert "permission" not in payload
        assert claims is not None
        assert claims.permissions is None

    def test_each_token_has_its_own_id(self) -> None:
        issuer = _issuer()
        first = issuer.decode(issuer.issue(_user(), []))
        second = issuer.decode(issuer.issue(_user(), []))
        assert first and second
        assert first.token_id != second.token_id

    def test_user_without_tenant_rejected(self) -> None:
        with pytest.raises(ConfigError):
            _issuer().issue(_user(tenant_id=None), [])

    def test_single_role_string_is_accepted(self) -> None:
        now = datetime.now(UTC)
        payload = {
            "sub": "user-1",
            "jti": "abc",
            "tenantId": "tenant-1",
            "role": "Admin",
            "iat": now,
            "exp": now + timedelta(minutes=5),
            "iss": "tenantguard",
            "aud": "tenantguard-api",
        }
        claims = _issuer().decode(jwt.encode(payload, SECRET, algorithm="HS256"))
        assert claims is not None
        assert claims.roles == ("Admin",)


@pytest.mark.unit
class TestRejection:
    def test_wrong_secret(self) -> None:
        token = _issuer(secret="another-secret-key-at-least-32-bytes!").issue(_user(), [])
        assert _issuer().decode(token) is None

    def test_wrong_audience(self) -> None:
        token = _issuer(audience="someone-else").issue(_user(), [])
        assert _issuer().decode(token) is None

    def test_wrong_issuer(self) -> None:
        token = _issuer(issuer="someone-else").issue(_user(), [])
        assert _issuer().decode(token) is None

    def test_expired_token(self) -> None:
        token = _issuer(clock=_hours_ago(2)).issue(_user(), ["Admin"])
        issuer = _issuer()
        assert issuer.decode(token) is None
        claims = issuer.decode(token, verify_exp=False)
        assert claims is not None
        assert claims.roles == ("Admin",)

    def test_algorithm_mismatch(self) -> None:
        token = _issuer(algorithm="HS512").issue(_user(), [])
        assert _issuer().decode(token) is None

    def test_unsigned_token(self) -> None:
        now = datetime.now(UTC)
        payload = {
            "sub": "user-1",
            "jti": "abc",
            "tenantId": "tenant-1",
            "iat": now,
            "exp": now + timedelta(minutes=5),
            "iss": "tenantguard",
            "aud": "tenantguard-api",
        }
        token = jwt.encode(payload, None, algorithm="none")
        assert _issuer().decode(token) is None

    def test_missing_tenant_claim(self) -> None:
        now = datetime.now(UTC)
        payload = {
            "sub": "user-1",
            "jti": "abc",
            "iat": now,
            "exp": now + timedelta(minutes=5),
            "iss": "tenantguard",
            "aud": "tenantguard-api",
        }
        assert _issuer().decode(jwt.encode(payload, SECRET, algorithm="HS256")) is None

    def test_malformed_roles(self) -> None:
        now = datetime.now(UTC)
        payload = {
            "sub": "user-1",
            "jti": "abc",
            "tenantId": "tenant-1",
            "role": [1, 2],
            "iat": now,
            "exp": now + timedelta(minutes=5),
            "iss": "tenantguard",
            "aud": "tenantguard-api",
        }
        assert _issuer().decode(jwt.encode(payload, SECRET, algorithm="HS256")) is None

    def test_garbage(self) -> None:
        assert _issuer().decode("not-a-token") is None


@pytest.mark.unit
class TestConfiguration:
    def test_empty_secret(self) -> None:
        with pytest.raises(ConfigError):
            _issuer(secret="")

    def test_asymmetric_algorithm_refused(self) -> None:
        with pytest.raises(ConfigError):
            _issuer(algorithm="RS256")

    def test_non_positive_expiry(self) -> None:
        with pytest.raises(ConfigError):
            _issuer(expiry_minutes=0)
