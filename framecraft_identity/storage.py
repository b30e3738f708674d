"""Row-level storage backends shared by the credential store and the isolation enforcer.

Every read and update accepts a :class:`ScopePredicate`. Callers outside the
tenancy package should never talk to a row store directly for tenant-scoped
tables; they go through :class:`~framecraft_identity.tenancy.enforcer.IsolationEnforcer`.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Mapping, Protocol

from psycopg import errors as pg_errors
from psycopg import sql
from psycopg.rows import dict_row
from psycopg.types.json import Json
from psycopg_pool import ConnectionPool

from .tenancy.scope import ScopePredicate

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).with_name("schema.sql")

_SOFT_DELETE_COLUMNS = ("is_deleted", "deleted_at")
_TIMESTAMPS = ("created_at", "updated_at")


@dataclass(frozen=True, slots=True)
class TableSpec:
    """Static description of a table the service is allowed to touch."""

    name: str
    key: str
    columns: tuple[str, ...]
    tenant_scoped: bool = False
    soft_delete: bool = True
    unique: tuple[tuple[str, ...], ...] = ()
    tenant_exempt: Callable[[Mapping[str, Any]], bool] | None = None


def _privileged_account(row: Mapping[str, Any]) -> bool:
    return bool(row.get("is_privileged"))


TABLES: dict[str, TableSpec] = {
    spec.name: spec
    for spec in (
        TableSpec(
            name="tenants",
            key="tenant_id",
            columns=(
                "tenant_id", "name", "slug", "status", "max_users", "storage_quota_mb",
                "expires_at", "is_protected", *_TIMESTAMPS, *_SOFT_DELETE_COLUMNS,
            ),
            unique=(("slug",),),
        ),
        TableSpec(
            name="accounts",
            key="account_id",
            columns=(
                "account_id", "tenant_id", "email", "display_name", "password_hash",
                "is_active", "is_privileged", "last_login_at", *_TIMESTAMPS,
                *_SOFT_DELETE_COLUMNS,
            ),
            tenant_scoped=True,
            unique=(("email",),),
            tenant_exempt=_privileged_account,
        ),
        TableSpec(
            name="roles",
            key="role_id",
            columns=("role_id", "name", "description", "created_at", *_SOFT_DELETE_COLUMNS),
            unique=(("name",),),
        ),
        TableSpec(
            name="role_assignments",
            key="assignment_id",
            columns=("assignment_id", "account_id", "role_id", "assigned_at"),
            soft_delete=False,
            unique=(("account_id", "role_id"),),
        ),
        TableSpec(
            name="refresh_credentials",
            key="credential_id",
            columns=(
                "credential_id", "account_id", "token_hash", "expires_at", "created_at",
                "created_by_ip", "is_revoked", "revoked_at", "revoked_by_ip", "replaced_by_id",
            ),
            soft_delete=False,
            unique=(("token_hash",),),
        ),
        TableSpec(
            name="identity_audit_log",
            key="audit_id",
            columns=(
                "audit_id", "account_id", "tenant_id", "event_type", "actor", "metadata",
                "created_at",
            ),
            soft_delete=False,
        ),
        TableSpec(
            name="customers",
            key="customer_id",
            columns=(
                "customer_id", "tenant_id", "name", "phone", "email", "address", "notes",
                "is_active", *_TIMESTAMPS, *_SOFT_DELETE_COLUMNS,
            ),
            tenant_scoped=True,
        ),
    )
}


def table_spec(table: str) -> TableSpec:
    try:
        return TABLES[table]
    except KeyError:
        raise ValueError(f"unknown table {table!r}") from None


def _check_columns(spec: TableSpec, names: Mapping[str, Any] | None) -> None:
    unknown = set(names or ()) - set(spec.columns)
    if unknown:
        raise ValueError(f"unknown columns for {spec.name}: {sorted(unknown)}")


class DuplicateRowError(Exception):
    """Raised when an insert collides with a uniqueness constraint."""

    def __init__(self, table: str, columns: tuple[str, ...] = ()) -> None:
        self.table = table
        self.columns = columns
        label = ", ".join(columns) if columns else "unique key"
        super().__init__(f"duplicate {label} in {table}")


class RowStore(Protocol):
    def fetch(
        self,
        table: str,
        match: Mapping[str, Any] | None = None,
        *,
        scope: ScopePredicate | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]: ...

    def insert(self, table: str, row: Mapping[str, Any]) -> dict[str, Any]: ...

    def update(
        self,
        table: str,
        match: Mapping[str, Any],
        changes: Mapping[str, Any],
        *,
        scope: ScopePredicate | None = None,
    ) -> int: ...


class PostgresRowStore:
    """Postgres-backed row store issuing composed, parameterised SQL."""

    def __init__(self, pool: ConnectionPool) -> None:
        """Store the connection pool used for all database interactions."""
        self._pool = pool

    def ensure_schema(self, path: Path = SCHEMA_PATH) -> None:
        """Create missing tables and unique indexes; safe to run on every start."""
        with self._pool.connection() as conn:
            conn.execute(path.read_text(encoding="utf-8"))
        logger.info("database schema ensured from %s", path.name)

    def fetch(
        self,
        table: str,
        match: Mapping[str, Any] | None = None,
        *,
        scope: ScopePredicate | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        spec = table_spec(table)
        _check_columns(spec, match)
        where, params = self._where(spec, match, scope)
        query = sql.SQL("SELECT {columns} FROM {table}").format(
            columns=sql.SQL(", ").join(map(sql.Identifier, spec.columns)),
            table=sql.Identifier(spec.name),
        )
        query += where
        if order_by:
            _check_columns(spec, {order_by: None})
            query += sql.SQL(" ORDER BY {} " + ("DESC" if descending else "ASC")).format(
                sql.Identifier(order_by)
            )
        if limit is not None:
            query += sql.SQL(" LIMIT %s")
            params.append(limit)

        with self._pool.connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(query, params)
                return list(cur.fetchall())

    def insert(self, table: str, row: Mapping[str, Any]) -> dict[str, Any]:
        spec = table_spec(table)
        _check_columns(spec, row)
        names = list(row)
        query = sql.SQL("INSERT INTO {table} ({names}) VALUES ({values}) RETURNING {columns}").format(
            table=sql.Identifier(spec.name),
            names=sql.SQL(", ").join(map(sql.Identifier, names)),
            values=sql.SQL(", ").join(sql.Placeholder() * len(names)),
            columns=sql.SQL(", ").join(map(sql.Identifier, spec.columns)),
        )
        params = [Json(value) if isinstance(value, dict) else value for value in row.values()]
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                try:
                    cur.execute(query, params)
                except pg_errors.UniqueViolation as exc:
                    conn.rollback()
                    raise DuplicateRowError(spec.name) from exc
                record = cur.fetchone()
                conn.commit()
        return record

    def update(
        self,
        table: str,
        match: Mapping[str, Any],
        changes: Mapping[str, Any],
        *,
        scope: ScopePredicate | None = None,
    ) -> int:
        spec = table_spec(table)
        _check_columns(spec, match)
        _check_columns(spec, changes)
        if not changes:
            return 0
        assignments = sql.SQL(", ").join(
            sql.SQL("{} = %s").format(sql.Identifier(name)) for name in changes
        )
        params: list[Any] = [Json(value) if isinstance(value, dict) else value for value in changes.values()]
        where, where_params = self._where(spec, match, scope)
        query = sql.SQL("UPDATE {table} SET {assignments}").format(
            table=sql.Identifier(spec.name), assignments=assignments
        ) + where
        params.extend(where_params)
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                try:
                    cur.execute(query, params)
                except pg_errors.UniqueViolation as exc:
                    conn.rollback()
                    raise DuplicateRowError(spec.name) from exc
                affected = cur.rowcount
                conn.commit()
        return affected

    def _where(
        self,
        spec: TableSpec,
        match: Mapping[str, Any] | None,
        scope: ScopePredicate | None,
    ) -> tuple[sql.Composable, list[Any]]:
        clauses: list[sql.Composable] = []
        params: list[Any] = []
        for name, value in (match or {}).items():
            if value is None:
                clauses.append(sql.SQL("{} IS NULL").format(sql.Identifier(name)))
            else:
                clauses.append(sql.SQL("{} = %s").format(sql.Identifier(name)))
                params.append(value)
        if scope is not None:
            if spec.soft_delete:
                clauses.append(sql.SQL("is_deleted = false"))
            if spec.tenant_scoped:
                clauses.append(sql.SQL("(%s OR tenant_id = %s)"))
                params.extend([not scope.filtering_enabled, scope.tenant_id])
        if not clauses:
            return sql.SQL(""), params
        return sql.SQL(" WHERE ") + sql.SQL(" AND ").join(clauses), params


class MemoryRowStore:
    """Thread-safe in-process row store used for local development and tests."""

    def __init__(self) -> None:
        self._tables: dict[str, list[dict[str, Any]]] = {name: [] for name in TABLES}
        self._lock = Lock()

    def fetch(
        self,
        table: str,
        match: Mapping[str, Any] | None = None,
        *,
        scope: ScopePredicate | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        spec = table_spec(table)
        _check_columns(spec, match)
        with self._lock:
            rows = [
                copy.deepcopy(row)
                for row in self._tables[spec.name]
                if self._matches(spec, row, match, scope)
            ]
        if order_by:
            _check_columns(spec, {order_by: None})
            rows.sort(
                key=lambda row: (row.get(order_by) is not None, row.get(order_by)),
                reverse=descending,
            )
        if limit is not None:
            rows = rows[:limit]
        return rows

    def insert(self, table: str, row: Mapping[str, Any]) -> dict[str, Any]:
        spec = table_spec(table)
        _check_columns(spec, row)
        record = {column: None for column in spec.columns}
        record.update(copy.deepcopy(dict(row)))
        if spec.soft_delete and record["is_deleted"] is None:
            record["is_deleted"] = False
        with self._lock:
            for columns in spec.unique:
                for existing in self._tables[spec.name]:
                    if spec.soft_delete and existing.get("is_deleted"):
                        continue
                    if all(existing.get(column) == record.get(column) for column in columns):
                        raise DuplicateRowError(spec.name, columns)
            self._tables[spec.name].append(record)
        return copy.deepcopy(record)

    def update(
        self,
        table: str,
        match: Mapping[str, Any],
        changes: Mapping[str, Any],
        *,
        scope: ScopePredicate | None = None,
    ) -> int:
        spec = table_spec(table)
        _check_columns(spec, match)
        _check_columns(spec, changes)
        if not changes:
            return 0
        affected = 0
        with self._lock:
            for row in self._tables[spec.name]:
                if self._matches(spec, row, match, scope):
                    row.update(copy.deepcopy(dict(changes)))
                    affected += 1
        return affected

    @staticmethod
    def _matches(
        spec: TableSpec,
        row: Mapping[str, Any],
        match: Mapping[str, Any] | None,
        scope: ScopePredicate | None,
    ) -> bool:
        for name, value in (match or {}).items():
            if row.get(name) != value:
                return False
        if scope is None:
            return True
        if spec.soft_delete and row.get("is_deleted"):
            return False
        if spec.tenant_scoped:
            return scope.admits(row)
        return True
