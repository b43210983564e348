"""Security event type definitions for the audit trail."""

from enum import Enum


class SecurityEventType(str, Enum):
    """
    Closed set of audit event tags.

    Values are persisted verbatim in `security_events.event_type`.
    """

    LOGIN_SUCCESS = "login_success"
    LOGIN_FAILED = "login_failed"
    LOGOUT = "logout"
    TOKEN_REFRESH = "token_refresh"
    SESSIONS_REVOKED = "sessions_revoked"
    PASSWORD_CHANGED = "password_changed"
    EMAIL_CHANGED = "email_changed"
    ACCOUNT_LOCKED = "account_locked"
    ACCOUNT_UNLOCKED = "account_unlocked"
    LOCKOUT_STATE_UNAVAILABLE = "lockout_state_unavailable"
    PASSWORD_RESET_REQUESTED = "password_reset_requested"
    PASSWORD_RESET_COMPLETED = "password_reset_completed"
    EMAIL_VERIFICATION_SENT = "email_verification_sent"
    EMAIL_VERIFIED = "email_verified"
    SUSPICIOUS_ACTIVITY = "suspicious_activity"
    TWO_FACTOR_ENROLLMENT_STARTED = "2fa_enrollment_started"
    TWO_FACTOR_ENABLED = "2fa_enabled"
    TWO_FACTOR_DISABLED = "2fa_disabled"
    TWO_FACTOR_REMOVED = "2fa_removed"
    TWO_FACTOR_BACKUP_CODES_REGENERATED = "2fa_backup_codes_regenerated"
    TWO_FACTOR_FAILED = "2fa_failed"

    @property
    def severity(self) -> str:
        """Severity used for the mirrored log line: info, warning or critical."""
        return _SEVERITY.get(self, "info")


_SEVERITY: dict[SecurityEventType, str] = {
    SecurityEventType.LOGIN_FAILED: "warning",
    SecurityEventType.TWO_FACTOR_FAILED: "warning",
    SecurityEventType.ACCOUNT_LOCKED: "warning",
    SecurityEventType.LOCKOUT_STATE_UNAVAILABLE: "critical",
    SecurityEventType.SUSPICIOUS_ACTIVITY: "critical",
    SecurityEventType.TWO_FACTOR_DISABLED: "warning",
    SecurityEventType.TWO_FACTOR_REMOVED: "warning",
}


class TokenPurpose(str, Enum):
    """Kinds of single-use token. Password reset tokens live in their own table."""

    EMAIL_VERIFICATION = "email_verification"
    EMAIL_CHANGE = "email_change"
    PASSWORD_RESET = "password_reset"

    @property
    def carries_email(self) -> bool:
        """Whether tokens of this purpose are bound to an email address."""
        return self is not TokenPurpose.PASSWORD_RESET
