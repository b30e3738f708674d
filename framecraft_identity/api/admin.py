"""Tenant and account administration routes; every access is tenant scoped."""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Response, status
from pydantic import EmailStr, Field

from ..domain.account import Account
from ..domain.accounts import AccountDirectory
from ..domain.contracts import CreateAccountInput, CreateTenantInput, UpdateTenantInput
from ..domain.errors import IdentityError
from ..domain.tenant import Tenant, TenantStatus
from ..domain.tenants import TenantAdministration
from ..security.tokens import AccessClaims
from ..tenancy.enforcer import IsolationEnforcer
from ..tenancy.scope import RequestScope
from .dependencies import (
    get_access_claims,
    get_account_directory,
    get_enforcer,
    get_request_scope,
    get_tenant_administration,
    http_error,
    require_account_admin,
)
from .routes import CamelModel

router = APIRouter(tags=["administration"])


class TenantResponse(CamelModel):
    tenant_id: str
    name: str
    slug: str
    status: TenantStatus
    max_users: int
    storage_quota_mb: int
    expires_at: datetime | None
    created_at: datetime

    @classmethod
    def from_domain(cls, tenant: Tenant) -> "TenantResponse":
        return cls(
            tenant_id=tenant.tenant_id,
            name=tenant.name,
            slug=tenant.slug,
            status=tenant.status,
            max_users=tenant.max_users,
            storage_quota_mb=tenant.storage_quota_mb,
            expires_at=tenant.expires_at,
            created_at=tenant.created_at,
        )


class CreateTenantRequest(CamelModel):
    name: str = Field(..., min_length=1, max_length=200)
    slug: str = Field(..., pattern=r"^[a-z0-9][a-z0-9-]{1,62}$")
    max_users: int = Field(default=5, ge=1)
    storage_quota_mb: int = Field(default=1000, ge=0)
    expires_at: datetime | None = None


class UpdateTenantRequest(CamelModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    status: TenantStatus | None = None
    max_users: int | None = Field(default=None, ge=1)
    storage_quota_mb: int | None = Field(default=None, ge=0)
    expires_at: datetime | None = None


class AccountResponse(CamelModel):
    """Serialised representation of an `Account`, without credentials."""

    account_id: str
    tenant_id: str | None
    email: str
    display_name: str
    is_active: bool
    is_privileged: bool
    last_login_at: datetime | None
    created_at: datetime

    @classmethod
    def from_domain(cls, account: Account) -> "AccountResponse":
        """Build a response model from the domain aggregate."""
        return cls(
            account_id=account.account_id,
            tenant_id=account.tenant_id,
            email=account.email,
            display_name=account.display_name,
            is_active=account.is_active,
            is_privileged=account.is_privileged,
            last_login_at=account.last_login_at,
            created_at=account.created_at,
        )


class CreateAccountRequest(CamelModel):
    """Payload accepted when creating an account."""

    email: EmailStr
    password: str = Field(..., min_length=6)
    display_name: str = Field(..., min_length=1, max_length=200)
    tenant_id: str | None = None
    is_privileged: bool = False
    roles: list[str] = Field(default_factory=list)


class AccountStatusRequest(CamelModel):
    is_active: bool


class ResetPasswordRequest(CamelModel):
    new_password: str = Field(..., min_length=6)


class ChangePasswordRequest(CamelModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=6)


@router.get("/tenants", response_model=list[TenantResponse])
def list_tenants(
    scope: RequestScope = Depends(get_request_scope),
    administration: TenantAdministration = Depends(get_tenant_administration),
) -> list[TenantResponse]:
    try:
        tenants = administration.list_tenants(scope)
    except IdentityError as exc:
        raise http_error(exc) from exc
    return [TenantResponse.from_domain(tenant) for tenant in tenants]


@router.post("/tenants", response_model=TenantResponse, status_code=status.HTTP_201_CREATED)
def create_tenant(
    payload: CreateTenantRequest,
    scope: RequestScope = Depends(get_request_scope),
    administration: TenantAdministration = Depends(get_tenant_administration),
) -> TenantResponse:
    try:
        tenant = administration.create_tenant(
            scope,
            CreateTenantInput(
                name=payload.name,
                slug=payload.slug,
                max_users=payload.max_users,
                storage_quota_mb=payload.storage_quota_mb,
                expires_at=payload.expires_at,
            ),
        )
    except IdentityError as exc:
        raise http_error(exc) from exc
    return TenantResponse.from_domain(tenant)


@router.patch("/tenants/{tenant_id}", response_model=TenantResponse)
def update_tenant(
    tenant_id: str,
    payload: UpdateTenantRequest,
    scope: RequestScope = Depends(get_request_scope),
    administration: TenantAdministration = Depends(get_tenant_administration),
) -> TenantResponse:
    try:
        tenant = administration.update_tenant(
            scope,
            tenant_id,
            UpdateTenantInput(
                name=payload.name,
                status=payload.status,
                max_users=payload.max_users,
                storage_quota_mb=payload.storage_quota_mb,
                expires_at=payload.expires_at,
            ),
        )
    except IdentityError as exc:
        raise http_error(exc) from exc
    return TenantResponse.from_domain(tenant)


@router.delete("/tenants/{tenant_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_tenant(
    tenant_id: str,
    scope: RequestScope = Depends(get_request_scope),
    administration: TenantAdministration = Depends(get_tenant_administration),
) -> Response:
    try:
        administration.delete_tenant(scope, tenant_id)
    except IdentityError as exc:
        raise http_error(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/accounts", response_model=list[AccountResponse])
def list_accounts(
    enforcer: IsolationEnforcer = Depends(get_enforcer),
    directory: AccountDirectory = Depends(get_account_directory),
) -> list[AccountResponse]:
    """List accounts visible to the caller's tenant scope."""
    return [AccountResponse.from_domain(account) for account in directory.list_accounts(enforcer)]


@router.post("/accounts", response_model=AccountResponse, status_code=status.HTTP_201_CREATED)
def create_account(
    payload: CreateAccountRequest,
    enforcer: IsolationEnforcer = Depends(get_enforcer),
    directory: AccountDirectory = Depends(get_account_directory),
) -> AccountResponse:
    try:
        account = directory.create_account(
            enforcer,
            CreateAccountInput(
                email=payload.email,
                password=payload.password,
                display_name=payload.display_name,
                tenant_id=payload.tenant_id,
                is_privileged=payload.is_privileged,
                roles=payload.roles,
            ),
        )
    except IdentityError as exc:
        raise http_error(exc) from exc
    return AccountResponse.from_domain(account)


@router.get("/accounts/{account_id}", response_model=AccountResponse)
def get_account(
    account_id: str,
    enforcer: IsolationEnforcer = Depends(get_enforcer),
    directory: AccountDirectory = Depends(get_account_directory),
) -> AccountResponse:
    """Retrieve an account; accounts outside the scope are reported as missing."""
    try:
        account = directory.get_account(enforcer, account_id)
    except IdentityError as exc:
        raise http_error(exc) from exc
    return AccountResponse.from_domain(account)


@router.delete("/accounts/{account_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_account(
    account_id: str,
    enforcer: IsolationEnforcer = Depends(get_enforcer),
    directory: AccountDirectory = Depends(get_account_directory),
) -> Response:
    try:
        directory.delete_account(enforcer, account_id)
    except IdentityError as exc:
        raise http_error(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put("/accounts/me/password", status_code=status.HTTP_204_NO_CONTENT)
def change_own_password(
    payload: ChangePasswordRequest,
    claims: AccessClaims = Depends(get_access_claims),
    directory: AccountDirectory = Depends(get_account_directory),
) -> Response:
    try:
        directory.change_password(claims.account_id, payload.current_password, payload.new_password)
    except IdentityError as exc:
        raise http_error(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put("/accounts/{account_id}/status", response_model=AccountResponse)
def set_account_status(
    account_id: str,
    payload: AccountStatusRequest,
    _: AccessClaims = Depends(require_account_admin),
    enforcer: IsolationEnforcer = Depends(get_enforcer),
    directory: AccountDirectory = Depends(get_account_directory),
) -> AccountResponse:
    """Activate or deactivate an account in the caller's scope."""
    try:
        account = directory.set_active(enforcer, account_id, payload.is_active)
    except IdentityError as exc:
        raise http_error(exc) from exc
    return AccountResponse.from_domain(account)


@router.post("/accounts/{account_id}/reset-password", status_code=status.HTTP_204_NO_CONTENT)
def reset_account_password(
    account_id: str,
    payload: ResetPasswordRequest,
    _: AccessClaims = Depends(require_account_admin),
    enforcer: IsolationEnforcer = Depends(get_enforcer),
    directory: AccountDirectory = Depends(get_account_directory),
) -> Response:
    try:
        directory.reset_password(enforcer, account_id, payload.new_password)
    except IdentityError as exc:
        raise http_error(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)
