from __future__ import annotations

import dataclasses
import uuid
from datetime import datetime, timezone

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from framecraft_identity.api import admin, routes
from framecraft_identity.config import get_settings
from framecraft_identity.domain.account import Account
from framecraft_identity.domain.errors import TenantIsolationViolation
from framecraft_identity.domain.service import SessionAuthority
from framecraft_identity.domain.tenant import Tenant, TenantStatus
from framecraft_identity.main import attach_services, tenant_isolation_violation
from framecraft_identity.repository import CredentialStore, account_from_row
from framecraft_identity.security.passwords import PasswordVerifier
from framecraft_identity.security.throttle import SlidingWindowThrottle
from framecraft_identity.security.tokens import issue_access_token
from framecraft_identity.storage import MemoryRowStore

DEFAULT_PASSWORD = "correct horse battery"

# Minimal Argon2 costs for tests.
FAST_ARGON2 = {"argon2_time_cost": 1, "argon2_memory_cost": 1024, "argon2_parallelism": 1}


@pytest.fixture
def test_settings():
    return dataclasses.replace(get_settings(), **FAST_ARGON2)


@pytest.fixture
def rows() -> MemoryRowStore:
    return MemoryRowStore()


@pytest.fixture
def store(rows) -> CredentialStore:
    return CredentialStore(rows)


@pytest.fixture
def passwords(test_settings) -> PasswordVerifier:
    return PasswordVerifier.from_settings(test_settings)


@pytest.fixture
def authority(store, passwords) -> SessionAuthority:
    return SessionAuthority(store, passwords)


@pytest.fixture
def make_tenant(store):
    """Factory persisting a tenant directly through the credential store."""

    def _make(slug: str, *, status: TenantStatus = TenantStatus.active, max_users: int = 5) -> Tenant:
        return store.add_tenant(
            Tenant(
                tenant_id=str(uuid.uuid4()),
                name=slug.title(),
                slug=slug,
                created_at=datetime.now(timezone.utc),
                status=status,
                max_users=max_users,
            )
        )

    return _make


@pytest.fixture
def make_account(rows, passwords):
    """Factory inserting an account row without going through the enforcer."""

    def _make(
        email: str,
        *,
        tenant_id: str | None,
        password: str = DEFAULT_PASSWORD,
        is_privileged: bool = False,
        is_active: bool = True,
    ) -> Account:
        now = datetime.now(timezone.utc)
        row = rows.insert(
            "accounts",
            {
                "account_id": str(uuid.uuid4()),
                "tenant_id": tenant_id,
                "email": email,
                "display_name": email.split("@")[0],
                "password_hash": passwords.hash(password),
                "is_active": is_active,
                "is_privileged": is_privileged,
                "created_at": now,
                "updated_at": now,
            },
        )
        return account_from_row(row)

    return _make


@pytest.fixture
def bearer():
    def _headers(
        account: Account, tenant_override: str | None = None, roles: list[str] | None = None
    ) -> dict[str, str]:
        token, _ = issue_access_token(account=account, roles=roles or [])
        headers = {"Authorization": f"Bearer {token}"}
        if tenant_override is not None:
            headers["X-Tenant-ID"] = tenant_override
        return headers

    return _headers


@pytest.fixture
def api_client(rows, test_settings):
    """Provide a FastAPI test client over an in-memory row store."""
    app = FastAPI()
    app.include_router(routes.router)
    app.include_router(admin.router)
    app.add_exception_handler(TenantIsolationViolation, tenant_isolation_violation)
    attach_services(app, rows, test_settings)
    app.state.tenant_administration.ensure_system_tenant()

    original_limiter = routes.rate_limiter
    routes.rate_limiter = SlidingWindowThrottle(max_requests=5, window_seconds=60)

    with TestClient(app) as client:
        yield client

    routes.rate_limiter = original_limiter
