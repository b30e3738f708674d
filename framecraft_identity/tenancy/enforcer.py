"""Mandatory tenant predicate and stamping layer between handlers and storage."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Mapping

from ..domain.errors import Forbidden, TenantIsolationViolation
from ..storage import RowStore, TableSpec, table_spec
from .scope import RequestScope

logger = logging.getLogger(__name__)

_PROTECTED_COLUMNS = frozenset({"tenant_id", "is_deleted", "deleted_at"})


class IsolationEnforcer:
    """Tenant-scoped data access bound to one request's :class:`RequestScope`.

    Reads always carry the scope predicate, inserts are stamped with the scope's
    tenant, deletes are soft. Out-of-scope rows behave exactly like missing rows.
    """

    def __init__(self, rows: RowStore, scope: RequestScope) -> None:
        self._rows = rows
        self._scope = scope

    @property
    def scope(self) -> RequestScope:
        return self._scope

    def find(
        self,
        table: str,
        *,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
        **filters: Any,
    ) -> list[dict[str, Any]]:
        """Return visible rows matching ``filters``; never raises for foreign data."""
        spec = self._scoped_spec(table)
        self._scope.seal()
        return self._rows.fetch(
            spec.name,
            filters,
            scope=self._scope.predicate(),
            order_by=order_by,
            descending=descending,
            limit=limit,
        )

    def get(self, table: str, row_id: str) -> dict[str, Any] | None:
        spec = self._scoped_spec(table)
        rows = self.find(spec.name, limit=1, **{spec.key: row_id})
        return rows[0] if rows else None

    def require(self, table: str, row_id: str) -> dict[str, Any]:
        row = self.get(table, row_id)
        if row is None:
            raise Forbidden()
        return row

    def count(self, table: str, **filters: Any) -> int:
        return len(self.find(table, **filters))

    def insert(self, table: str, row: Mapping[str, Any]) -> dict[str, Any]:
        """Persist a new row stamped with the scope tenant.

        Raises
        ------
        TenantIsolationViolation
            When no tenant can be attributed to the row, or the row names a tenant
            other than the one the scope is confined to.
        """
        spec = self._scoped_spec(table)
        values = dict(row)
        row_tenant = values.get("tenant_id") or None
        scope_tenant = self._scope.tenant_id

        if row_tenant is None:
            if spec.tenant_exempt is not None and spec.tenant_exempt(values):
                values["tenant_id"] = None
            elif scope_tenant is None:
                logger.error("refusing %s insert without tenant scope (%r)", spec.name, self._scope)
                raise TenantIsolationViolation(spec.name)
            else:
                values["tenant_id"] = scope_tenant
        elif self._scope.filtering_enabled and row_tenant != scope_tenant:
            logger.error(
                "refusing %s insert for tenant %s outside scope %r", spec.name, row_tenant, self._scope
            )
            raise TenantIsolationViolation(
                spec.name, f"'{spec.name}' row targets a tenant outside the request scope"
            )

        if spec.soft_delete:
            values["is_deleted"] = False
            values["deleted_at"] = None
        self._scope.seal()
        return self._rows.insert(spec.name, values)

    def update(self, table: str, row_id: str, changes: Mapping[str, Any]) -> bool:
        """Apply ``changes`` to a visible row; returns ``False`` when it is not visible."""
        spec = self._scoped_spec(table)
        forbidden = _PROTECTED_COLUMNS.union({spec.key}).intersection(changes)
        if forbidden:
            raise ValueError(f"columns cannot be changed through update: {sorted(forbidden)}")
        self._scope.seal()
        affected = self._rows.update(
            spec.name, {spec.key: row_id}, dict(changes), scope=self._scope.predicate()
        )
        return affected > 0

    def soft_delete(self, table: str, row_id: str) -> bool:
        spec = self._scoped_spec(table)
        self._scope.seal()
        changes: dict[str, Any] = {"is_deleted": True, "deleted_at": datetime.now(timezone.utc)}
        if "updated_at" in spec.columns:
            changes["updated_at"] = changes["deleted_at"]
        affected = self._rows.update(
            spec.name, {spec.key: row_id}, changes, scope=self._scope.predicate()
        )
        return affected > 0

    @staticmethod
    def _scoped_spec(table: str) -> TableSpec:
        spec = table_spec(table)
        if not spec.tenant_scoped:
            raise ValueError(f"table {table!r} is not tenant-scoped")
        return spec
