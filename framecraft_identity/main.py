"""FastAPI application wiring for the identity service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from psycopg_pool import ConnectionPool

from .api.admin import router as admin_router
from .api.routes import router as auth_router
from .config import Settings, get_settings
from .domain.accounts import AccountDirectory
from .domain.errors import TenantIsolationViolation
from .domain.service import SessionAuthority
from .domain.tenants import TenantAdministration
from .repository import CredentialStore
from .security.passwords import PasswordVerifier
from .storage import MemoryRowStore, PostgresRowStore, RowStore
from .tenancy.scope import TenantContextResolver

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def attach_services(app: FastAPI, rows: RowStore, config: Settings | None = None) -> None:
    """Build the identity services over ``rows`` and publish them on ``app.state``."""
    config = config or settings
    store = CredentialStore(rows)
    passwords = PasswordVerifier.from_settings(config)
    app.state.row_store = rows
    app.state.credential_store = store
    app.state.session_authority = SessionAuthority(
        store,
        passwords,
        revoke_descendants_on_reuse=config.refresh_reuse_revokes_descendants,
    )
    app.state.tenant_resolver = TenantContextResolver(
        store, strict_override=config.tenant_override_strict
    )
    app.state.tenant_administration = TenantAdministration(store)
    app.state.account_directory = AccountDirectory(store, passwords)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialise shared resources (row store, services) for the app lifecycle."""
    pool: ConnectionPool | None = None
    if settings.storage_backend == "memory":
        logger.warning("using in-memory storage; data is lost on restart")
        rows: RowStore = MemoryRowStore()
    else:
        pool = ConnectionPool(settings.database_url, open=False)
        pool.open()
        postgres = PostgresRowStore(pool)
        postgres.ensure_schema()
        rows = postgres
    attach_services(app, rows)
    app.state.tenant_administration.ensure_system_tenant()
    try:
        yield
    finally:
        if pool is not None:
            pool.close()


app = FastAPI(title=settings.app_name, version=settings.version, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    max_age=600,
)


@app.exception_handler(TenantIsolationViolation)
async def tenant_isolation_violation(request: Request, exc: TenantIsolationViolation) -> JSONResponse:
    logger.error("tenant isolation violation on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "internal error"},
    )


@app.get("/healthz", tags=["health"])
def healthz() -> dict[str, str]:
    """Return a minimal readiness indicator used by orchestration systems."""
    return {"status": "ok"}


@app.get("/metrics", tags=["health"])
def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


app.include_router(auth_router)
app.include_router(admin_router)
