"""Work out which tenant a request belongs to.

Strategies are tried in the configured order and the first one that finds a
candidate decides: an unknown tenant resolves to nothing rather than falling
through to a weaker strategy.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import structlog

from tenantguard.exceptions import TenantInactive
from tenantguard.tenancy.context import TenantContext
from tenantguard.types import ResolutionStrategy

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping, Sequence

    from starlette.requests import Request

    from tenantguard.auth.tokens import TokenClaims
    from tenantguard.config.settings import Settings
    from tenantguard.tenancy.registry import TenantRegistry, TenantSnapshot

logger = structlog.get_logger(__name__)

_RESERVED_SUBDOMAINS = frozenset({"www", "api"})


@dataclass(frozen=True, slots=True)
class RequestInfo:
    """The parts of a request tenant resolution looks at."""

    headers: Mapping[str, str] = field(default_factory=dict)  # lower-cased names
    host: str = ""
    path: str = "/"

    @classmethod
    def from_request(cls, request: Request) -> RequestInfo:
        return cls(
            headers={k.lower(): v for k, v in request.headers.items()},
            host=request.headers.get("host", request.url.hostname or ""),
            path=request.url.path,
        )

    @property
    def bearer_token(self) -> str | None:
        scheme, _, token = self.headers.get("authorization", "").partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            return None
        return token.strip()


@dataclass(frozen=True, slots=True)
class Candidate:
    value: str
    by_identifier: bool  # False: value is a tenant id
    source: ResolutionStrategy


class TenantResolver:
    """Resolves a :class:`TenantContext` from request data and the registry."""

    def __init__(
        self,
        registry: TenantRegistry,
        settings: Settings,
        decode_token: Callable[[str], TokenClaims | None] | None = None,
    ) -> None:
        self._registry = registry
        self._strategies: Sequence[ResolutionStrategy] = tuple(
            settings.tenant_resolution_strategies
        )
        self._id_header = settings.tenant_id_header.lower()
        self._identifier_header = settings.tenant_identifier_header.lower()
        self._base_domain = (settings.tenant_base_domain or "").strip(".").lower() or None
        self._path_prefix = settings.tenant_path_prefix
        self._decode_token = decode_token

    def candidate(self, info: RequestInfo) -> Candidate | None:
        for strategy in self._strategies:
            found = self._try(strategy, info)
            if found is not None:
                return found
        return None

    async def resolve(self, info: RequestInfo) -> TenantContext | None:
        """Return the request's tenant, ``None`` if none is found.

        Raises :class:`TenantInactive` when the tenant exists but is deactivated.
        """
        found = self.candidate(info)
        if found is None:
            return None
        snapshot: TenantSnapshot | None
        if found.by_identifier:
            snapshot = await self._registry.lookup_by_identifier(found.value)
        else:
            snapshot = await self._registry.lookup_by_id(found.value)
        if snapshot is None:
            logger.info("tenant_not_found", source=found.source.value)
            return None
        if not snapshot.is_active:
            logger.info("tenant_inactive", tenant_id=snapshot.id, source=found.source.value)
            raise TenantInactive
        return TenantContext(
            tenant_id=snapshot.id,
            identifier=snapshot.identifier,
            source=found.source.value,
        )

    def _try(self, strategy: ResolutionStrategy, info: RequestInfo) -> Candidate | None:
        if strategy is ResolutionStrategy.HEADER:
            return self._from_header(info)
        if strategy is ResolutionStrategy.SUBDOMAIN:
            return self._from_subdomain(info)
        if strategy is ResolutionStrategy.PATH:
            return self._from_path(info)
        return self._from_claim(info)

    def _from_header(self, info: RequestInfo) -> Candidate | None:
        tenant_id = info.headers.get(self._id_header, "").strip()
        if tenant_id:
            return Candidate(tenant_id, by_identifier=False, source=ResolutionStrategy.HEADER)
        identifier = info.headers.get(self._identifier_header, "").strip()
        if identifier:
            return Candidate(identifier, by_identifier=True, source=ResolutionStrategy.HEADER)
        return None

    def _from_subdomain(self, info: RequestInfo) -> Candidate | None:
        if self._base_domain is None:
            return None
        host = info.host.rsplit(":", 1)[0].strip(".").lower()
        suffix = "." + self._base_domain
        if not host.endswith(suffix):
            return None
        label = host[: -len(suffix)].rsplit(".", 1)[-1]
        if not label or label in _RESERVED_SUBDOMAINS:
            return None
        return Candidate(label, by_identifier=True, source=ResolutionStrategy.SUBDOMAIN)

    def _from_path(self, info: RequestInfo) -> Candidate | None:
        if not info.path.startswith(self._path_prefix):
            return None
        segment = info.path[len(self._path_prefix) :].split("/", 1)[0]
        if not segment:
            return None
        return Candidate(segment, by_identifier=True, source=ResolutionStrategy.PATH)

    def _from_claim(self, info: RequestInfo) -> Candidate | None:
        token = info.bearer_token
        if token is None or self._decode_token is None:
            return None
        claims = self._decode_token(token)
        if claims is None:
            return None
        return Candidate(claims.tenant_id, by_identifier=False, source=ResolutionStrategy.CLAIM)
