from __future__ import annotations

import pytest

from tenantguard.auth.credentials import CredentialVerifier, DenyAllVerifier, load_verifier
from tenantguard.exceptions import ConfigError
from tenantguard.models.database import User


@pytest.mark.unit
class TestLoadVerifier:
    def test_unset_denies_all(self) -> None:
        assert isinstance(load_verifier(None), DenyAllVerifier)
        assert isinstance(load_verifier(""), DenyAllVerifier)

    def test_loads_factory_by_path(self) -> None:
        verifier = load_verifier("tenantguard.auth.credentials:DenyAllVerifier")
        assert isinstance(verifier, CredentialVerifier)

    @pytest.mark.parametrize(
        "path",
        [
            "no_colon_here",
            "tenantguard.auth.credentials:",
            "tenantguard.no_such_module:factory",
            "tenantguard.auth.credentials:missing",
        ],
    )
    def test_bad_paths(self, path: str) -> None:
        with pytest.raises(ConfigError):
            load_verifier(path)

    def test_factory_must_produce_a_verifier(self) -> None:
        with pytest.raises(ConfigError, match="did not produce"):
            load_verifier("collections:OrderedDict")


@pytest.mark.unit
class TestDenyAllVerifier:
    async def test_rejects_every_password(self) -> None:
        user = User(user_name="alice", email="a@x.io", normalized_email="a@x.io")
        assert not await DenyAllVerifier().verify_password(user, "anything")
