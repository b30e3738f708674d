"""Tenant provisioning and lifecycle for privileged callers."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from .contracts import CreateTenantInput, UpdateTenantInput
from .errors import DuplicateSlug, PermissionDenied, ProtectedTenant, TenantNotFound
from .tenant import SYSTEM_TENANT_ID, SYSTEM_TENANT_NAME, SYSTEM_TENANT_SLUG, Tenant, TenantStatus
from ..repository import CredentialStore
from ..storage import DuplicateRowError
from ..tenancy.scope import RequestScope

logger = logging.getLogger(__name__)


class TenantAdministration:
    """Create, list, update and soft-delete tenants; the system tenant is immutable."""

    def __init__(self, store: CredentialStore) -> None:
        self._store = store

    def ensure_system_tenant(self) -> Tenant:
        """Create the protected system tenant when it does not exist yet."""
        existing = self._store.get_tenant(SYSTEM_TENANT_ID)
        if existing is not None:
            return existing
        logger.info("provisioning system tenant %s", SYSTEM_TENANT_ID)
        return self._store.add_tenant(
            Tenant(
                tenant_id=SYSTEM_TENANT_ID,
                name=SYSTEM_TENANT_NAME,
                slug=SYSTEM_TENANT_SLUG,
                created_at=datetime.now(timezone.utc),
                is_protected=True,
            )
        )

    def list_tenants(self, scope: RequestScope) -> list[Tenant]:
        _require_privileged(scope)
        return [tenant for tenant in self._store.list_tenants() if not tenant.is_protected]

    def create_tenant(self, scope: RequestScope, payload: CreateTenantInput) -> Tenant:
        _require_privileged(scope)
        slug = payload.slug.strip().lower()
        if self._store.get_tenant_by_slug(slug) is not None:
            raise DuplicateSlug()
        now = datetime.now(timezone.utc)
        try:
            tenant = self._store.add_tenant(
                Tenant(
                    tenant_id=str(uuid.uuid4()),
                    name=payload.name,
                    slug=slug,
                    created_at=now,
                    updated_at=now,
                    max_users=payload.max_users,
                    storage_quota_mb=payload.storage_quota_mb,
                    expires_at=payload.expires_at,
                )
            )
        except DuplicateRowError as exc:
            raise DuplicateSlug() from exc
        self._store.write_audit_event(
            account_id=None,
            tenant_id=tenant.tenant_id,
            event_type="tenant.created",
            actor=None,
            metadata={"slug": tenant.slug},
        )
        logger.info("tenant %s created (%s)", tenant.tenant_id, tenant.slug)
        return tenant

    def update_tenant(self, scope: RequestScope, tenant_id: str, payload: UpdateTenantInput) -> Tenant:
        _require_privileged(scope)
        tenant = self._get_mutable(tenant_id)
        changes = payload.changes()
        if changes:
            self._store.update_tenant(tenant.tenant_id, changes)
            self._store.write_audit_event(
                account_id=None,
                tenant_id=tenant.tenant_id,
                event_type="tenant.updated",
                actor=None,
                metadata={"fields": sorted(changes)},
            )
        updated = self._store.get_tenant(tenant.tenant_id)
        if updated is None:
            raise TenantNotFound()
        return updated

    def delete_tenant(self, scope: RequestScope, tenant_id: str) -> None:
        _require_privileged(scope)
        tenant = self._get_mutable(tenant_id)
        self._store.update_tenant(
            tenant.tenant_id,
            {
                "status": TenantStatus.deleted,
                "is_deleted": True,
                "deleted_at": datetime.now(timezone.utc),
            },
        )
        self._store.write_audit_event(
            account_id=None,
            tenant_id=tenant.tenant_id,
            event_type="tenant.deleted",
            actor=None,
        )
        logger.info("tenant %s soft-deleted", tenant.tenant_id)

    def _get_mutable(self, tenant_id: str) -> Tenant:
        tenant = self._store.get_tenant(tenant_id)
        if tenant is None:
            raise TenantNotFound()
        if tenant.is_protected:
            raise ProtectedTenant()
        return tenant


def _require_privileged(scope: RequestScope) -> None:
    if not scope.is_privileged:
        raise PermissionDenied()
