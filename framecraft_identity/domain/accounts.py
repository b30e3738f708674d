"""Tenant-scoped account management routed through the isolation enforcer."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from .account import Account
from .contracts import CreateAccountInput
from .errors import (
    AccountNotFound,
    DuplicateEmail,
    Forbidden,
    IncorrectPassword,
    PermissionDenied,
    TenantNotFound,
    UserQuotaExceeded,
)
from ..repository import CredentialStore, account_from_row, normalise_email
from ..security.passwords import PasswordVerifier
from ..storage import DuplicateRowError
from ..tenancy.enforcer import IsolationEnforcer

logger = logging.getLogger(__name__)


class AccountDirectory:
    """Create, list and remove accounts visible to the caller's tenant scope."""

    def __init__(self, store: CredentialStore, passwords: PasswordVerifier) -> None:
        self._store = store
        self._passwords = passwords

    def create_account(self, enforcer: IsolationEnforcer, payload: CreateAccountInput) -> Account:
        """Create an account in the caller's tenant, or any tenant for privileged callers.

        Non-privileged accounts always end up with the tenant of the scope; the
        enforcer raises :class:`TenantIsolationViolation` when there is none.
        """
        scope = enforcer.scope
        if payload.is_privileged and not scope.is_privileged:
            raise PermissionDenied("only privileged callers can create privileged accounts")
        if payload.tenant_id and scope.filtering_enabled and payload.tenant_id != scope.tenant_id:
            raise PermissionDenied("accounts can only be created in the tenant you are scoped to")

        target_tenant_id = payload.tenant_id or (None if payload.is_privileged else scope.tenant_id)
        if target_tenant_id is not None:
            tenant = self._store.get_tenant(target_tenant_id)
            if tenant is None:
                raise TenantNotFound()
            existing = enforcer.count("accounts", tenant_id=tenant.tenant_id)
            if existing >= tenant.max_users:
                raise UserQuotaExceeded(tenant.max_users)

        email = normalise_email(payload.email)
        if self._store.find_account_by_email_unscoped(email) is not None:
            raise DuplicateEmail()

        now = datetime.now(timezone.utc)
        row = {
            "account_id": str(uuid.uuid4()),
            "tenant_id": target_tenant_id,
            "email": email,
            "display_name": payload.display_name,
            "password_hash": self._passwords.hash(payload.password),
            "is_active": True,
            "is_privileged": payload.is_privileged,
            "created_at": now,
            "updated_at": now,
        }
        try:
            account = account_from_row(enforcer.insert("accounts", row))
        except DuplicateRowError as exc:
            raise DuplicateEmail() from exc

        for role_name in payload.roles:
            role = self._store.get_role(role_name)
            if role is None:
                logger.warning("skipping unknown role %r for account %s", role_name, account.account_id)
                continue
            self._store.assign_role(account.account_id, role.role_id)

        self._store.write_audit_event(
            account_id=account.account_id,
            tenant_id=account.tenant_id,
            event_type="account.created",
            actor=None,
            metadata={"privileged": account.is_privileged},
        )
        logger.info("account %s created in tenant %s", account.account_id, account.tenant_id)
        return account

    def list_accounts(self, enforcer: IsolationEnforcer) -> list[Account]:
        rows = enforcer.find("accounts", order_by="created_at", descending=True)
        return [account_from_row(row) for row in rows]

    def get_account(self, enforcer: IsolationEnforcer, account_id: str) -> Account:
        return account_from_row(enforcer.require("accounts", account_id))

    def delete_account(self, enforcer: IsolationEnforcer, account_id: str) -> None:
        if not enforcer.soft_delete("accounts", account_id):
            raise Forbidden()
        self._store.write_audit_event(
            account_id=account_id,
            tenant_id=enforcer.scope.tenant_id,
            event_type="account.deleted",
            actor=None,
        )

    def set_active(self, enforcer: IsolationEnforcer, account_id: str, is_active: bool) -> Account:
        """Activate or deactivate an account in scope.

        Deactivated accounts cannot log in or refresh; access tokens already
        issued stay valid until they expire.
        """
        changes = {"is_active": is_active, "updated_at": datetime.now(timezone.utc)}
        if not enforcer.update("accounts", account_id, changes):
            raise Forbidden()
        account = account_from_row(enforcer.require("accounts", account_id))
        self._store.write_audit_event(
            account_id=account.account_id,
            tenant_id=account.tenant_id,
            event_type="account.activated" if is_active else "account.deactivated",
            actor=None,
        )
        logger.info("account %s active=%s", account.account_id, is_active)
        return account

    def reset_password(self, enforcer: IsolationEnforcer, account_id: str, new_password: str) -> None:
        """Administrative reset; no current password, but the account must be in scope."""
        changes = {
            "password_hash": self._passwords.hash(new_password),
            "updated_at": datetime.now(timezone.utc),
        }
        if not enforcer.update("accounts", account_id, changes):
            raise Forbidden()
        self._store.write_audit_event(
            account_id=account_id,
            tenant_id=enforcer.scope.tenant_id,
            event_type="account.password_reset",
            actor=None,
        )

    def change_password(self, account_id: str, current_password: str, new_password: str) -> None:
        """Change the caller's own password after checking the current one."""
        account = self._store.get_account_unscoped(account_id)
        if account is None:
            raise AccountNotFound()
        if not self._passwords.verify(current_password, account.password_hash):
            raise IncorrectPassword()
        self._store.update_password_hash(account.account_id, self._passwords.hash(new_password))
        self._store.write_audit_event(
            account_id=account.account_id,
            tenant_id=account.tenant_id,
            event_type="account.password_changed",
            actor=None,
        )
