"""Credential store: tenants, accounts, roles, refresh credentials and audit events.

Pure data access over a :class:`~framecraft_identity.storage.RowStore`; every policy
decision lives in the session and tenancy layers.
"""

from __future__ import annotations

import uuid
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Mapping

from .domain.account import Account, Role
from .domain.credentials import RefreshCredential
from .domain.tenant import Tenant, TenantStatus
from .storage import RowStore


def normalise_email(email: str) -> str:
    return email.strip().lower()


class CredentialStore:
    """Identity persistence shared by login, refresh, logout and administration."""

    def __init__(self, rows: RowStore) -> None:
        """Store the row store used for all reads and writes."""
        self._rows = rows

    # tenants

    def get_tenant(self, tenant_id: str) -> Tenant | None:
        """Return the non-deleted tenant with ``tenant_id`` or ``None``."""
        rows = self._rows.fetch("tenants", {"tenant_id": tenant_id, "is_deleted": False}, limit=1)
        return self._map_tenant(rows[0]) if rows else None

    def get_tenant_by_slug(self, slug: str) -> Tenant | None:
        rows = self._rows.fetch("tenants", {"slug": slug, "is_deleted": False}, limit=1)
        return self._map_tenant(rows[0]) if rows else None

    def list_tenants(self) -> list[Tenant]:
        rows = self._rows.fetch(
            "tenants", {"is_deleted": False}, order_by="created_at", descending=True
        )
        return [self._map_tenant(row) for row in rows]

    def add_tenant(self, tenant: Tenant) -> Tenant:
        row = asdict(tenant)
        row["status"] = tenant.status.value
        return self._map_tenant(self._rows.insert("tenants", row))

    def update_tenant(self, tenant_id: str, changes: Mapping[str, Any]) -> bool:
        values = {
            key: value.value if isinstance(value, TenantStatus) else value
            for key, value in changes.items()
        }
        values["updated_at"] = datetime.now(timezone.utc)
        affected = self._rows.update(
            "tenants", {"tenant_id": tenant_id, "is_deleted": False}, values
        )
        return affected > 0

    # accounts

    def find_account_by_email_unscoped(self, email: str) -> Account | None:
        """Locate a non-deleted account in any tenant.

        Bypasses tenant scoping: used by login and by the global email
        uniqueness check.
        """
        rows = self._rows.fetch(
            "accounts",
            {"email": normalise_email(email), "is_deleted": False},
            order_by="created_at",
            limit=1,
        )
        return account_from_row(rows[0]) if rows else None

    def get_account_unscoped(self, account_id: str) -> Account | None:
        """Return a non-deleted account by id regardless of tenant."""
        rows = self._rows.fetch(
            "accounts", {"account_id": account_id, "is_deleted": False}, limit=1
        )
        return account_from_row(rows[0]) if rows else None

    def record_login(self, account_id: str, at: datetime) -> None:
        self._rows.update(
            "accounts", {"account_id": account_id}, {"last_login_at": at, "updated_at": at}
        )

    def update_password_hash(self, account_id: str, password_hash: str) -> None:
        self._rows.update(
            "accounts",
            {"account_id": account_id},
            {"password_hash": password_hash, "updated_at": datetime.now(timezone.utc)},
        )

    # roles

    def get_role_names(self, account_id: str) -> list[str]:
        assignments = self._rows.fetch("role_assignments", {"account_id": account_id})
        names: list[str] = []
        for assignment in assignments:
            roles = self._rows.fetch(
                "roles", {"role_id": assignment["role_id"], "is_deleted": False}, limit=1
            )
            if roles:
                names.append(roles[0]["name"])
        return sorted(names)

    def get_role(self, name: str) -> Role | None:
        rows = self._rows.fetch("roles", {"name": name, "is_deleted": False}, limit=1)
        if not rows:
            return None
        row = rows[0]
        return Role(role_id=row["role_id"], name=row["name"], description=row["description"] or "")

    def add_role(self, name: str, description: str = "") -> Role:
        row = self._rows.insert(
            "roles",
            {
                "role_id": str(uuid.uuid4()),
                "name": name,
                "description": description,
                "created_at": datetime.now(timezone.utc),
            },
        )
        return Role(role_id=row["role_id"], name=row["name"], description=row["description"] or "")

    def assign_role(self, account_id: str, role_id: str) -> None:
        self._rows.insert(
            "role_assignments",
            {
                "assignment_id": str(uuid.uuid4()),
                "account_id": account_id,
                "role_id": role_id,
                "assigned_at": datetime.now(timezone.utc),
            },
        )

    # refresh credentials

    def add_refresh_credential(self, credential: RefreshCredential) -> RefreshCredential:
        """Persist a hashed refresh credential associated with an account."""
        row = self._rows.insert("refresh_credentials", asdict(credential))
        return RefreshCredential(**row)

    def find_refresh_credential(self, token_hash: str) -> RefreshCredential | None:
        """Return the credential for ``token_hash`` in whatever state it is."""
        rows = self._rows.fetch("refresh_credentials", {"token_hash": token_hash}, limit=1)
        return RefreshCredential(**rows[0]) if rows else None

    def get_refresh_credential(self, credential_id: str) -> RefreshCredential | None:
        rows = self._rows.fetch("refresh_credentials", {"credential_id": credential_id}, limit=1)
        return RefreshCredential(**rows[0]) if rows else None

    def revoke_refresh_credential(
        self,
        credential_id: str,
        *,
        revoked_at: datetime,
        revoked_by_ip: str | None = None,
        replaced_by_id: str | None = None,
    ) -> bool:
        """Revoke the credential iff it is still active; return whether this call revoked it.

        The check and the write happen in a single conditional update so two
        concurrent rotations of the same credential cannot both succeed.
        """
        affected = self._rows.update(
            "refresh_credentials",
            {"credential_id": credential_id, "is_revoked": False},
            {
                "is_revoked": True,
                "revoked_at": revoked_at,
                "revoked_by_ip": revoked_by_ip,
                "replaced_by_id": replaced_by_id,
            },
        )
        return affected == 1

    # audit

    def write_audit_event(
        self,
        *,
        account_id: str | None,
        tenant_id: str | None,
        event_type: str,
        actor: str | None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Record an audit trail entry capturing identity workflow activity."""
        self._rows.insert(
            "identity_audit_log",
            {
                "audit_id": str(uuid.uuid4()),
                "account_id": account_id,
                "tenant_id": tenant_id,
                "event_type": event_type,
                "actor": actor,
                "metadata": metadata or {},
                "created_at": datetime.now(timezone.utc),
            },
        )

    def list_audit_events(self, *, event_type: str | None = None) -> list[dict[str, Any]]:
        match = {"event_type": event_type} if event_type else None
        return self._rows.fetch("identity_audit_log", match, order_by="created_at")

    def _map_tenant(self, row: Mapping[str, Any]) -> Tenant:
        """Convert a raw row into the domain ``Tenant`` dataclass."""
        values = dict(row)
        values["status"] = TenantStatus(values["status"])
        values["is_protected"] = bool(values.get("is_protected"))
        values["is_deleted"] = bool(values.get("is_deleted"))
        return Tenant(**values)


def account_from_row(row: Mapping[str, Any]) -> Account:
    """Convert a raw ``accounts`` row into the domain ``Account`` dataclass."""
    values = dict(row)
    values["is_deleted"] = bool(values.get("is_deleted"))
    return Account(**values)
