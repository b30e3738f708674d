"""Refresh credential record and its lifecycle states."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class CredentialState(str, Enum):
    active = "active"
    rotated_out = "rotated_out"
    manually_revoked = "manually_revoked"
    expired = "expired"


@dataclass(slots=True)
class RefreshCredential:
    """Server-tracked refresh credential; only the SHA-256 of the opaque value is kept."""

    credential_id: str
    account_id: str
    token_hash: str
    expires_at: datetime
    created_at: datetime
    created_by_ip: str = "unknown"
    is_revoked: bool = False
    revoked_at: datetime | None = None
    revoked_by_ip: str | None = None
    replaced_by_id: str | None = None

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def state(self, now: datetime) -> CredentialState:
        """Classify the credential; revocation wins over expiry once recorded."""
        if self.is_revoked:
            if self.replaced_by_id:
                return CredentialState.rotated_out
            return CredentialState.manually_revoked
        if self.is_expired(now):
            return CredentialState.expired
        return CredentialState.active
