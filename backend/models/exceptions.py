"""
Custom domain exceptions for the account security subsystem.

These exceptions are raised by the service layer and translated into
user-visible responses by whatever caller drives the services (HTTP layer,
CLI tools, background tasks). Keeping them transport-agnostic lets the same
services run inside sweeper jobs.

Enhanced with correlation IDs for Sentry integration and user error reporting.
"""

from core.correlation import generate_correlation_id, get_correlation_id


class DomainException(Exception):
    """
    Base class for all domain exceptions.

    Attributes:
        message: Human-readable error message.
        correlation_id: Unique ID for error tracking (auto-generated if not provided).
    """

    def __init__(self, message: str, correlation_id: str | None = None):
        self.message = message
        # Use request correlation ID if available, otherwise generate new one
        self.correlation_id = (
            correlation_id or get_correlation_id() or generate_correlation_id()
        )
        super().__init__(self.message)


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    pass


class ValidationException(DomainException):
    """Raised when input validation fails."""

    pass


class ConflictException(DomainException):
    """Raised when operation conflicts with existing data."""

    pass


class AuthenticationException(DomainException):
    """Raised when authentication fails."""

    pass


class InfrastructureException(DomainException):
    """
    Raised when the backing store is unreachable or a write did not apply.

    Always retryable. Services never swallow it, except for the audit
    logger's own writes and the best-effort session touch.
    """

    def __init__(
        self,
        message: str = "Storage is temporarily unavailable. Please retry.",
        retryable: bool = True,
    ):
        super().__init__(message)
        self.retryable = retryable


# Specific exceptions for domain entities


class UserNotFoundException(NotFoundException):
    """User not found."""

    pass


class InvalidCredentialsException(AuthenticationException):
    """
    Generic login rejection.

    Unknown account, wrong password, and locked account all surface as this
    exception with the same message.
    """

    def __init__(self, message: str = "Invalid email or password."):
        super().__init__(message)


class EmailAlreadyVerifiedException(ConflictException):
    """Verification requested for an address that is already verified."""

    def __init__(self, message: str = "Email is already verified."):
        super().__init__(message)


class EmailAlreadyInUseException(ConflictException):
    """Email change requested to an address another account holds."""

    def __init__(self, message: str = "Email is already in use."):
        super().__init__(message)


# ============================================================================
# Session Exceptions
# ============================================================================


class SessionNotFoundException(NotFoundException):
    """Session token unknown, revoked, or expired."""

    def __init__(self, message: str = "Session not found."):
        super().__init__(message)


# ============================================================================
# Single-use Token Exceptions
# ============================================================================


class TokenNotFoundException(NotFoundException):
    """Token unknown, already used, or expired."""

    def __init__(self, message: str = "Invalid or expired token."):
        super().__init__(message)


# ============================================================================
# Two-Factor Authentication (2FA) Exceptions
# ============================================================================


class TwoFactorException(DomainException):
    """Base exception for 2FA-related errors."""

    pass


class TwoFactorNotConfiguredException(TwoFactorException, NotFoundException):
    """Raised when a 2FA operation needs an enrollment that does not exist."""

    def __init__(
        self, message: str = "Two-factor authentication is not set up for this account."
    ):
        super().__init__(message)


class TwoFactorNotEnabledException(TwoFactorException):
    """Raised when 2FA operation requires 2FA but it's not enabled."""

    def __init__(self, message: str = "Two-factor authentication is not enabled."):
        super().__init__(message)


class TwoFactorAlreadyEnabledException(TwoFactorException, ConflictException):
    """Raised when trying to start enrollment but 2FA is already enabled."""

    def __init__(self, message: str = "Two-factor authentication is already enabled."):
        super().__init__(message)


class TwoFactorInvalidCodeException(TwoFactorException, AuthenticationException):
    """Raised when TOTP or backup code is invalid."""

    def __init__(self, message: str = "Invalid authentication code."):
        super().__init__(message)


class TwoFactorConfigurationException(TwoFactorException):
    """Raised when 2FA is not properly configured on the server."""

    def __init__(
        self,
        message: str = "Two-factor authentication is not configured. Contact administrator.",
    ):
        super().__init__(message)
