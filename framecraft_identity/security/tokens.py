"""Utilities for issuing and validating access tokens and refresh tokens."""

from __future__ import annotations

import hashlib
import secrets
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

import jwt

from ..config import get_settings
from ..domain.account import Account


@dataclass(frozen=True, slots=True)
class AccessClaims:
    """Identity claims carried by an access token and consumed downstream."""

    account_id: str
    email: str
    display_name: str
    tenant_id: str | None
    is_privileged: bool = False
    roles: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "AccessClaims":
        return cls(
            account_id=payload["sub"],
            email=payload.get("email", ""),
            display_name=payload.get("name", ""),
            tenant_id=payload.get("tenant_id") or None,
            is_privileged=bool(payload.get("is_privileged", False)),
            roles=tuple(payload.get("roles") or ()),
        )


def issue_access_token(*, account: Account, roles: list[str]) -> tuple[str, datetime]:
    """Create a signed JWT representing an authenticated account.

    Parameters
    ----------
    account:
        Account whose identity, tenant and privilege flag are embedded in the token.
    roles:
        Role names assigned to the account at issuance time.

    Returns
    -------
    tuple[str, datetime]
        The encoded JWT and its absolute expiry timestamp (UTC).
    """

    settings = get_settings()
    issued_at = datetime.now(timezone.utc).replace(microsecond=0)
    expires_at = issued_at + timedelta(seconds=settings.access_token_ttl_seconds)
    payload: dict[str, Any] = {
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
        "sub": account.account_id,
        "email": account.email,
        "name": account.display_name,
        "tenant_id": account.tenant_id,
        "is_privileged": account.is_privileged,
        "roles": list(roles),
        "iat": int(issued_at.timestamp()),
        "exp": int(expires_at.timestamp()),
        "jti": str(uuid.uuid4()),
    }

    token = jwt.encode(payload, settings.jwt_secret, algorithm="HS256")
    return token, expires_at


def decode_access_token(token: str) -> dict[str, Any]:
    """Decode and verify a JWT returning its payload.

    Raises
    ------
    jwt.PyJWTError
        Propagated when the token is invalid, expired, or issued for another audience.
    """

    settings = get_settings()
    return jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=["HS256"],
        audience=settings.jwt_audience,
        issuer=settings.jwt_issuer,
        options={"require": ["exp", "iat", "sub"]},
    )


def refresh_token_expiry(now: datetime) -> datetime:
    """Return the absolute expiry for a refresh credential minted at ``now``."""
    return now + timedelta(seconds=get_settings().refresh_token_ttl_seconds)


def generate_refresh_token() -> tuple[str, str]:
    """Generate a refresh token string and its SHA-256 hash."""
    token = secrets.token_urlsafe(48)
    return token, hash_refresh_token(token)


def hash_refresh_token(token: str) -> str:
    """Return the SHA-256 hex digest for a refresh token string."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()
