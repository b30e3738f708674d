"""Domain error taxonomy for session and tenancy workflows."""

from __future__ import annotations

from .tenant import TenantStatus


class IdentityError(Exception):
    """Base class for expected, non-retryable failures of an identity operation."""

    code = "identity_error"
    status_code = 400
    default_message = "identity operation failed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidCredential(IdentityError):
    code = "invalid_credential"
    default_message = "invalid email or password"


class AccountInactive(IdentityError):
    code = "account_inactive"
    default_message = "account is inactive"


class IncorrectPassword(IdentityError):
    code = "incorrect_password"
    default_message = "current password is incorrect"


class TenantNotActive(IdentityError):
    code = "tenant_not_active"

    _MESSAGES = {
        TenantStatus.inactive: "tenant account is inactive",
        TenantStatus.suspended: "tenant account is suspended",
        TenantStatus.deleted: "tenant account has been deleted",
    }

    def __init__(self, status: TenantStatus) -> None:
        self.status = status
        super().__init__(self._MESSAGES.get(status, "tenant account is not active"))


class InvalidRefreshToken(IdentityError):
    code = "invalid"
    status_code = 401
    default_message = "invalid refresh token"


class ExpiredRefreshToken(IdentityError):
    code = "expired"
    status_code = 401
    default_message = "refresh token expired"


class RevokedRefreshToken(IdentityError):
    code = "revoked"
    status_code = 401
    default_message = "refresh token revoked"


class AccountNotFound(IdentityError):
    code = "account_not_found"
    status_code = 404
    default_message = "account not found"


class CredentialNotFound(IdentityError):
    code = "credential_not_found"
    status_code = 404
    default_message = "refresh token not found"


class Forbidden(IdentityError):
    """Out-of-scope access; rendered exactly like a missing resource."""

    code = "not_found"
    status_code = 404
    default_message = "resource not found"


class PermissionDenied(IdentityError):
    code = "permission_denied"
    status_code = 403
    default_message = "operation requires privileged access"


class TenantNotFound(IdentityError):
    code = "tenant_not_found"
    status_code = 404
    default_message = "tenant not found"


class ProtectedTenant(IdentityError):
    code = "protected_tenant"
    status_code = 403
    default_message = "the system tenant cannot be modified"


class InvalidTenantOverride(IdentityError):
    code = "invalid_tenant_override"
    default_message = "tenant override does not reference an existing tenant"


class DuplicateEmail(IdentityError):
    code = "duplicate"
    status_code = 409
    default_message = "email address is already in use"


class DuplicateSlug(IdentityError):
    code = "duplicate"
    status_code = 409
    default_message = "tenant slug is already in use"


class UserQuotaExceeded(IdentityError):
    code = "quota_exceeded"

    def __init__(self, max_users: int) -> None:
        self.max_users = max_users
        super().__init__(f"tenant user limit ({max_users}) reached")


class TenantIsolationViolation(RuntimeError):
    """A tenant-scoped write had no resolvable tenant; this is a programming error."""

    def __init__(self, table: str, detail: str | None = None) -> None:
        self.table = table
        message = detail or (
            f"tenant_id is required for '{table}' rows; "
            "privileged callers must select a tenant before creating tenant data"
        )
        super().__init__(message)
