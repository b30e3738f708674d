"""Per-request tenant scope and the resolver that builds it."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Mapping, Protocol

from ..domain.errors import Forbidden, InvalidTenantOverride
from ..domain.tenant import Tenant
from ..security.tokens import AccessClaims

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ScopePredicate:
    """Mandatory read predicate: not soft-deleted and, when filtering, same tenant."""

    tenant_id: str | None
    filtering_enabled: bool

    def admits(self, row: Mapping[str, Any]) -> bool:
        if row.get("is_deleted"):
            return False
        if not self.filtering_enabled:
            return True
        return self.tenant_id is not None and row.get("tenant_id") == self.tenant_id


class RequestScope:
    """Tenant visibility decision for exactly one request.

    The scope is sealed by the first data access made through it. After that the
    tenant can no longer be assigned; only :meth:`switch_to` (privileged callers)
    may still redirect it.
    """

    __slots__ = ("_tenant_id", "_is_privileged", "_switched_tenant_id", "_sealed")

    def __init__(self, *, is_privileged: bool = False, tenant_id: str | None = None) -> None:
        self._tenant_id = tenant_id
        self._is_privileged = is_privileged
        self._switched_tenant_id: str | None = None
        self._sealed = False

    @property
    def tenant_id(self) -> str | None:
        if self._switched_tenant_id is not None:
            return self._switched_tenant_id
        return self._tenant_id

    @property
    def is_privileged(self) -> bool:
        return self._is_privileged

    @property
    def switched_tenant_id(self) -> str | None:
        return self._switched_tenant_id

    @property
    def filtering_enabled(self) -> bool:
        return not (self._is_privileged and self._switched_tenant_id is None)

    @property
    def sealed(self) -> bool:
        return self._sealed

    def assign_tenant(self, tenant_id: str) -> None:
        if self._sealed:
            raise RuntimeError("request scope is sealed; tenant cannot be reassigned")
        self._tenant_id = tenant_id

    def switch_to(self, tenant_id: str) -> None:
        if not self._is_privileged:
            raise Forbidden("only privileged callers can switch tenant")
        self._switched_tenant_id = tenant_id

    def seal(self) -> None:
        self._sealed = True

    def predicate(self) -> ScopePredicate:
        return ScopePredicate(tenant_id=self.tenant_id, filtering_enabled=self.filtering_enabled)

    def __repr__(self) -> str:
        return (
            f"RequestScope(tenant_id={self.tenant_id!r}, privileged={self._is_privileged}, "
            f"filtering={self.filtering_enabled})"
        )


class TenantLookup(Protocol):
    def get_tenant(self, tenant_id: str) -> Tenant | None: ...


class TenantContextResolver:
    """Decide the active tenant and privilege level for an authenticated caller."""

    def __init__(self, tenants: TenantLookup, *, strict_override: bool = False) -> None:
        self._tenants = tenants
        self._strict_override = strict_override

    def resolve(self, claims: AccessClaims, override: str | None = None) -> RequestScope:
        """Build a fresh :class:`RequestScope`.

        Parameters
        ----------
        claims:
            Verified access token claims of the caller.
        override:
            Raw tenant override header value; honoured for privileged callers only.
        """
        scope = RequestScope(is_privileged=claims.is_privileged)

        if override:
            if not claims.is_privileged:
                logger.warning(
                    "ignoring tenant override from non-privileged account %s", claims.account_id
                )
            else:
                tenant = self._lookup(override)
                if tenant is not None:
                    scope.switch_to(tenant.tenant_id)
                    logger.debug(
                        "privileged account %s switched to tenant %s",
                        claims.account_id,
                        tenant.tenant_id,
                    )
                elif self._strict_override:
                    raise InvalidTenantOverride()
                else:
                    logger.warning(
                        "tenant override %r did not resolve; falling back to token claims", override
                    )

        if claims.tenant_id:
            tenant = self._lookup(claims.tenant_id)
            if tenant is not None:
                scope.assign_tenant(tenant.tenant_id)

        return scope

    def _lookup(self, raw_tenant_id: str) -> Tenant | None:
        try:
            tenant_id = str(uuid.UUID(raw_tenant_id.strip()))
        except (ValueError, AttributeError):
            return None
        tenant = self._tenants.get_tenant(tenant_id)
        if tenant is None or tenant.is_deleted:
            return None
        return tenant
