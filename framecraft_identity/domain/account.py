from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

ADMIN_ROLE = "admin"


@dataclass(slots=True)
class Account:
    """User identity owned by a tenant, or global when ``is_privileged`` is set."""

    account_id: str
    tenant_id: str | None
    email: str
    display_name: str
    password_hash: str
    created_at: datetime
    is_active: bool = True
    is_privileged: bool = False
    last_login_at: datetime | None = None
    updated_at: datetime | None = None
    is_deleted: bool = False
    deleted_at: datetime | None = None


@dataclass(slots=True)
class Role:
    """Named capability tag shared by all tenants."""

    role_id: str
    name: str
    description: str = ""
