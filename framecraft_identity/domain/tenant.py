"""Tenant aggregate and the reserved system tenant."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

SYSTEM_TENANT_ID = "00000000-0000-0000-0000-000000000001"
SYSTEM_TENANT_NAME = "System"
SYSTEM_TENANT_SLUG = "system"


class TenantStatus(str, Enum):
    active = "Active"
    inactive = "Inactive"
    suspended = "Suspended"
    deleted = "Deleted"


@dataclass(slots=True)
class Tenant:
    """Isolated customer organisation whose rows are never visible to other tenants."""

    tenant_id: str
    name: str
    slug: str
    created_at: datetime
    status: TenantStatus = TenantStatus.active
    max_users: int = 5
    storage_quota_mb: int = 1000
    expires_at: datetime | None = None
    is_protected: bool = False
    updated_at: datetime | None = None
    is_deleted: bool = False
    deleted_at: datetime | None = None

