"""Per-request FastAPI dependencies: caller claims, tenant scope and scoped storage."""

from __future__ import annotations

import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..config import get_settings
from ..domain.account import ADMIN_ROLE
from ..domain.accounts import AccountDirectory
from ..domain.errors import IdentityError, PermissionDenied
from ..domain.service import SessionAuthority
from ..domain.tenants import TenantAdministration
from ..security.tokens import AccessClaims, decode_access_token
from ..tenancy.enforcer import IsolationEnforcer
from ..tenancy.scope import RequestScope, TenantContextResolver

bearer_scheme = HTTPBearer(auto_error=False)


def http_error(exc: IdentityError, status_code: int | None = None) -> HTTPException:
    """Translate a domain error into the HTTP error returned to the caller."""
    return HTTPException(status_code=status_code or exc.status_code, detail=exc.message)


def client_ip(request: Request) -> str | None:
    return request.client.host if request.client else None


def get_session_authority(request: Request) -> SessionAuthority:
    """Resolve the `SessionAuthority` stored on the FastAPI application state."""
    authority: SessionAuthority = request.app.state.session_authority
    return authority


def get_account_directory(request: Request) -> AccountDirectory:
    directory: AccountDirectory = request.app.state.account_directory
    return directory


def get_tenant_administration(request: Request) -> TenantAdministration:
    administration: TenantAdministration = request.app.state.tenant_administration
    return administration


def get_access_claims(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> AccessClaims:
    """Verify the bearer access token and return its claims."""
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="missing bearer token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        payload = decode_access_token(credentials.credentials)
    except jwt.PyJWTError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="invalid access token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc
    return AccessClaims.from_payload(payload)


def get_request_scope(
    request: Request,
    claims: AccessClaims = Depends(get_access_claims),
) -> RequestScope:
    """Build the tenant scope for this request; FastAPI caches it for the request only."""
    resolver: TenantContextResolver = request.app.state.tenant_resolver
    override = request.headers.get(get_settings().tenant_override_header)
    try:
        return resolver.resolve(claims, override)
    except IdentityError as exc:
        raise http_error(exc) from exc


def get_enforcer(
    request: Request,
    scope: RequestScope = Depends(get_request_scope),
) -> IsolationEnforcer:
    return IsolationEnforcer(request.app.state.row_store, scope)


def require_account_admin(claims: AccessClaims = Depends(get_access_claims)) -> AccessClaims:
    """Allow privileged callers and holders of the tenant ``admin`` role."""
    if not claims.is_privileged and ADMIN_ROLE not in claims.roles:
        raise http_error(PermissionDenied("operation requires the admin role"))
    return claims
