"""Session authority orchestrating login, refresh token rotation and logout."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

from prometheus_client import Counter

from .account import Account
from .credentials import CredentialState, RefreshCredential
from .errors import (
    AccountInactive,
    AccountNotFound,
    CredentialNotFound,
    ExpiredRefreshToken,
    IdentityError,
    InvalidCredential,
    InvalidRefreshToken,
    RevokedRefreshToken,
    TenantNotActive,
)
from .tenant import TenantStatus
from ..repository import CredentialStore
from ..security.passwords import PasswordVerifier
from ..security.tokens import (
    generate_refresh_token,
    hash_refresh_token,
    issue_access_token,
    refresh_token_expiry,
)

logger = logging.getLogger(__name__)

LOGIN_ATTEMPTS = Counter(
    "framecraft_login_attempts_total", "Login attempts by outcome", ["outcome"]
)
TOKEN_REFRESHES = Counter(
    "framecraft_token_refresh_total", "Refresh token exchanges by outcome", ["outcome"]
)


@dataclass(slots=True)
class SessionBundle:
    """Encapsulates the access/refresh token pair returned to API consumers."""

    account_id: str
    email: str
    display_name: str
    tenant_id: str | None
    is_privileged: bool
    access_token: str
    access_expires_at: datetime
    refresh_token: str
    refresh_expires_at: datetime
    roles: list[str] = field(default_factory=list)


class SessionAuthority:
    """Login, refresh and logout workflows backed by the credential store."""

    def __init__(
        self,
        store: CredentialStore,
        passwords: PasswordVerifier,
        *,
        revoke_descendants_on_reuse: bool = True,
    ) -> None:
        """Store dependencies used to orchestrate persistence and token issuance."""
        self._store = store
        self._passwords = passwords
        self._revoke_descendants_on_reuse = revoke_descendants_on_reuse

    def login(self, email: str, password: str, origin_ip: str | None = None) -> SessionBundle:
        """Authenticate by email and password and open a new session.

        Unknown emails and wrong passwords fail identically with
        :class:`InvalidCredential` so the endpoint cannot be used to enumerate accounts.
        """
        try:
            account = self._authenticate(email, password)
        except IdentityError as exc:
            LOGIN_ATTEMPTS.labels(outcome=exc.code).inc()
            raise

        bundle = self._open_session(account, origin_ip)
        self._store.record_login(account.account_id, datetime.now(timezone.utc))
        if self._passwords.needs_rehash(account.password_hash):
            self._store.update_password_hash(account.account_id, self._passwords.hash(password))

        self._store.write_audit_event(
            account_id=account.account_id,
            tenant_id=account.tenant_id,
            event_type="login.succeeded",
            actor=account.account_id,
            metadata={"ip": origin_ip or "unknown"},
        )
        LOGIN_ATTEMPTS.labels(outcome="success").inc()
        logger.info("account %s logged in from %s", account.account_id, origin_ip or "unknown")
        return bundle

    def refresh(self, refresh_token: str, origin_ip: str | None = None) -> SessionBundle:
        """Exchange a refresh token for a new access/refresh pair.

        Parameters
        ----------
        refresh_token:
            Raw refresh token obtained from :meth:`login` or a previous refresh.
        origin_ip:
            Network origin of the caller, recorded on both the revoked and the new credential.
        """
        try:
            bundle = self._rotate(refresh_token, origin_ip)
        except IdentityError as exc:
            TOKEN_REFRESHES.labels(outcome=exc.code).inc()
            raise
        TOKEN_REFRESHES.labels(outcome="success").inc()
        return bundle

    def logout(self, refresh_token: str, origin_ip: str | None = None) -> None:
        """Revoke a refresh credential. Logging out twice succeeds both times."""
        record = self._store.find_refresh_credential(hash_refresh_token(refresh_token))
        if record is None:
            raise CredentialNotFound()

        if record.is_revoked:
            logger.debug("refresh credential %s already revoked", record.credential_id)
            return

        self._store.revoke_refresh_credential(
            record.credential_id,
            revoked_at=datetime.now(timezone.utc),
            revoked_by_ip=origin_ip,
        )
        self._store.write_audit_event(
            account_id=record.account_id,
            tenant_id=None,
            event_type="token.revoked",
            actor=record.account_id,
            metadata={"credential_id": record.credential_id},
        )
        logger.info("account %s logged out", record.account_id)

    def _authenticate(self, email: str, password: str) -> Account:
        account = self._store.find_account_by_email_unscoped(email)
        if account is None:
            self._passwords.burn(password)
            raise InvalidCredential()

        if not self._passwords.verify(password, account.password_hash):
            self._store.write_audit_event(
                account_id=account.account_id,
                tenant_id=account.tenant_id,
                event_type="login.failed",
                actor=None,
                metadata={"reason": "invalid_credential"},
            )
            raise InvalidCredential()

        if not account.is_active:
            raise AccountInactive()

        if not account.is_privileged:
            tenant = self._store.get_tenant(account.tenant_id) if account.tenant_id else None
            status = tenant.status if tenant is not None else TenantStatus.deleted
            if status is not TenantStatus.active:
                logger.warning(
                    "login blocked for %s: tenant %s is %s",
                    account.email,
                    account.tenant_id,
                    status.value,
                )
                raise TenantNotActive(status)

        return account

    def _rotate(self, refresh_token: str, origin_ip: str | None) -> SessionBundle:
        now = datetime.now(timezone.utc)
        record = self._store.find_refresh_credential(hash_refresh_token(refresh_token))
        if record is None:
            raise InvalidRefreshToken()

        if record.is_expired(now):
            logger.warning("expired refresh credential presented: %s", record.credential_id)
            raise ExpiredRefreshToken()

        if record.is_revoked:
            if record.state(now) is CredentialState.rotated_out:
                self._handle_reuse(record, now, origin_ip)
            else:
                logger.warning("revoked refresh credential presented: %s", record.credential_id)
            raise RevokedRefreshToken()

        account = self._store.get_account_unscoped(record.account_id)
        if account is None:
            raise AccountNotFound()
        if not account.is_active:
            raise AccountInactive()

        successor_id = str(uuid.uuid4())
        revoked = self._store.revoke_refresh_credential(
            record.credential_id,
            revoked_at=now,
            revoked_by_ip=origin_ip,
            replaced_by_id=successor_id,
        )
        if not revoked:
            logger.warning(
                "refresh credential %s was rotated concurrently; rejecting", record.credential_id
            )
            raise InvalidRefreshToken()

        bundle = self._open_session(account, origin_ip, credential_id=successor_id)
        self._store.write_audit_event(
            account_id=account.account_id,
            tenant_id=account.tenant_id,
            event_type="token.refreshed",
            actor=account.account_id,
            metadata={"previous_credential_id": record.credential_id, "ip": origin_ip or "unknown"},
        )
        logger.info("refresh credential %s rotated to %s", record.credential_id, successor_id)
        return bundle

    def _handle_reuse(self, record: RefreshCredential, now: datetime, origin_ip: str | None) -> None:
        """A rotated-out credential came back: someone replayed it."""
        logger.warning(
            "rotated refresh credential %s reused (successor %s) from %s",
            record.credential_id,
            record.replaced_by_id,
            origin_ip or "unknown",
        )
        revoked: list[str] = []
        if self._revoke_descendants_on_reuse:
            seen = {record.credential_id}
            successor_id = record.replaced_by_id
            while successor_id and successor_id not in seen:
                seen.add(successor_id)
                successor = self._store.get_refresh_credential(successor_id)
                if successor is None:
                    break
                if self._store.revoke_refresh_credential(
                    successor.credential_id, revoked_at=now, revoked_by_ip=origin_ip
                ):
                    revoked.append(successor.credential_id)
                successor_id = successor.replaced_by_id

        self._store.write_audit_event(
            account_id=record.account_id,
            tenant_id=None,
            event_type="token.reuse_detected",
            actor=None,
            metadata={"credential_id": record.credential_id, "revoked": revoked},
        )

    def _open_session(
        self, account: Account, origin_ip: str | None, *, credential_id: str | None = None
    ) -> SessionBundle:
        roles = self._store.get_role_names(account.account_id)
        access_token, access_expires_at = issue_access_token(account=account, roles=roles)

        now = datetime.now(timezone.utc)
        refresh_token, token_hash = generate_refresh_token()
        credential = self._store.add_refresh_credential(
            RefreshCredential(
                credential_id=credential_id or str(uuid.uuid4()),
                account_id=account.account_id,
                token_hash=token_hash,
                expires_at=refresh_token_expiry(now),
                created_at=now,
                created_by_ip=origin_ip or "unknown",
            )
        )

        return SessionBundle(
            account_id=account.account_id,
            email=account.email,
            display_name=account.display_name,
            tenant_id=account.tenant_id,
            is_privileged=account.is_privileged,
            access_token=access_token,
            access_expires_at=access_expires_at,
            refresh_token=refresh_token,
            refresh_expires_at=credential.expires_at,
            roles=roles,
        )
