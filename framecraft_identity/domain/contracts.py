"""Domain-level request contracts shared by multiple layers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from .tenant import TenantStatus


@dataclass(slots=True)
class CreateAccountInput:
    """Validated inputs required to create an account.

    ``tenant_id`` may only be supplied by privileged callers; otherwise the
    account is stamped with the caller's tenant scope.
    """

    email: str
    password: str
    display_name: str
    tenant_id: str | None = None
    is_privileged: bool = False
    roles: list[str] = field(default_factory=list)


@dataclass(slots=True)
class CreateTenantInput:
    name: str
    slug: str
    max_users: int = 5
    storage_quota_mb: int = 1000
    expires_at: datetime | None = None


@dataclass(slots=True)
class UpdateTenantInput:
    """Partial update; ``None`` leaves the stored value untouched."""

    name: str | None = None
    status: TenantStatus | None = None
    max_users: int | None = None
    storage_quota_mb: int | None = None
    expires_at: datetime | None = None

    def changes(self) -> dict:
        values = {
            "name": self.name,
            "status": self.status,
            "max_users": self.max_users,
            "storage_quota_mb": self.storage_quota_mb,
            "expires_at": self.expires_at,
        }
        return {key: value for key, value in values.items() if value is not None}
