"""HTTP route definitions for login, token refresh and logout."""

from __future__ import annotations

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

from ..domain.errors import IdentityError
from ..domain.service import SessionAuthority, SessionBundle
from ..security.throttle import attempt_key, build_throttle
from .dependencies import client_ip, get_session_authority, http_error

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LoginRequest(CamelModel):
    """Credentials submitted to open a session."""

    email: EmailStr
    password: str = Field(..., min_length=1)


class RefreshTokenRequest(CamelModel):
    """Request body carrying an opaque refresh token."""

    refresh_token: str = Field(..., min_length=1)


class SessionResponse(CamelModel):
    """Token pair and identity summary returned by login and refresh."""

    account_id: str
    email: str
    display_name: str
    tenant_id: str | None
    roles: list[str]
    is_privileged: bool
    access_token: str
    refresh_token: str
    access_token_expires_at: datetime
    refresh_token_expires_at: datetime

    @classmethod
    def from_bundle(cls, bundle: SessionBundle) -> "SessionResponse":
        return cls(
            account_id=bundle.account_id,
            email=bundle.email,
            display_name=bundle.display_name,
            tenant_id=bundle.tenant_id,
            roles=bundle.roles,
            is_privileged=bundle.is_privileged,
            access_token=bundle.access_token,
            refresh_token=bundle.refresh_token,
            access_token_expires_at=bundle.access_expires_at,
            refresh_token_expires_at=bundle.refresh_expires_at,
        )


class LogoutResponse(BaseModel):
    status: str = "logged_out"


rate_limiter = build_throttle()


def _throttle(kind: str, request: Request, subject: str) -> None:
    if not rate_limiter.allow(attempt_key(kind, client_ip(request), subject)):
        raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail="rate limited")


@router.post("/login", response_model=SessionResponse)
def login(
    payload: LoginRequest,
    request: Request,
    authority: SessionAuthority = Depends(get_session_authority),
) -> SessionResponse:
    """Authenticate with email and password and receive a new token pair."""
    _throttle("login", request, payload.email)
    try:
        bundle = authority.login(payload.email, payload.password, client_ip(request))
    except IdentityError as exc:
        logger.warning("login failed for %s: %s", payload.email, exc.code)
        raise http_error(exc, status.HTTP_400_BAD_REQUEST) from exc
    return SessionResponse.from_bundle(bundle)


@router.post("/refresh", response_model=SessionResponse)
def refresh(
    payload: RefreshTokenRequest,
    request: Request,
    authority: SessionAuthority = Depends(get_session_authority),
) -> SessionResponse:
    """Rotate a refresh token into a brand-new access/refresh pair."""
    _throttle("refresh", request, payload.refresh_token)
    try:
        bundle = authority.refresh(payload.refresh_token, client_ip(request))
    except IdentityError as exc:
        raise http_error(exc, status.HTTP_401_UNAUTHORIZED) from exc
    return SessionResponse.from_bundle(bundle)


@router.post("/logout", response_model=LogoutResponse)
def logout(
    payload: RefreshTokenRequest,
    request: Request,
    authority: SessionAuthority = Depends(get_session_authority),
) -> LogoutResponse:
    """Revoke the presented refresh token."""
    try:
        authority.logout(payload.refresh_token, client_ip(request))
    except IdentityError as exc:
        raise http_error(exc, status.HTTP_404_NOT_FOUND) from exc
    return LogoutResponse()
