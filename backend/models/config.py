import os
import sys

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _should_load_env_file() -> str | None:
    """Determine if .env should be loaded.

    For local development, load `.env` automatically so secrets such as
    `TOTP_ENCRYPTION_KEY` can be provided from `backend/.env`.

    Do NOT auto-load `.env` when running under pytest or in CI (so tests
    see only the environment they set up themselves).
    """
    if any("pytest" in str(x) for x in sys.argv if x):
        return None
    if os.environ.get("CI") in ("1", "true", "True"):
        return None
    return ".env"


class Settings(BaseSettings):
    # Environment configuration
    ENVIRONMENT: str = Field(
        default="development",
        description="Environment: 'development', 'staging', or 'production'",
    )

    DATABASE_URL: str = "sqlite:///./data/accountguard.db"

    # Database connection pool settings
    DB_POOL_SIZE: int = Field(
        default=5,
        description="Number of persistent connections in pool",
    )
    DB_MAX_OVERFLOW: int = Field(
        default=10,
        description="Extra connections when pool exhausted",
    )
    DB_POOL_TIMEOUT: int = Field(
        default=30,
        description="Seconds to wait for connection from pool",
    )
    DB_POOL_RECYCLE: int = Field(
        default=1800,
        description="Recycle connections after N seconds (30 min default)",
    )

    # Lockout policy
    LOCKOUT_MAX_FAILED_ATTEMPTS: int = Field(
        default=5,
        description="Consecutive failed logins that lock the account",
    )
    LOCKOUT_DURATION_MINUTES: int = Field(
        default=30,
        description="Minutes an account stays locked once the threshold is reached",
    )
    LOCKOUT_FAIL_OPEN: bool = Field(
        default=True,
        description="When the lockout state cannot be read, continue the login "
        "(true) or reject it (false). The ambiguity is always audited.",
    )

    # Password hashing
    PASSWORD_BCRYPT_ROUNDS: int = Field(
        default=12,
        description="bcrypt cost factor for password hashes",
    )

    # Sessions
    SESSION_TTL_HOURS: int = Field(
        default=24,
        description="Lifetime of a newly issued session",
    )
    SESSION_INACTIVE_RETENTION_DAYS: int = Field(
        default=30,
        description="Days to keep inactive sessions before permanent deletion",
    )
    SESSION_TOKEN_BYTES: int = Field(
        default=32,
        description="Random bytes in session and refresh tokens (32 bytes = 256 bits)",
    )

    # Single-use verification tokens
    EMAIL_VERIFICATION_TTL_HOURS: int = Field(
        default=24,
        description="Hours until an email verification token expires",
    )
    PASSWORD_RESET_TTL_HOURS: int = Field(
        default=1,
        description="Hours until a password reset token expires",
    )
    VERIFICATION_TOKEN_BYTES: int = Field(
        default=32,
        description="Random bytes in verification tokens",
    )
    EXPIRED_TOKEN_RETENTION_HOURS: int = Field(
        default=24,
        description="Hours to keep expired tokens for audit correlation",
    )

    # 2FA (TOTP) Settings
    TOTP_ENCRYPTION_KEY: str = Field(
        default="",
        description="Fernet key for encrypting TOTP secrets at rest. Generate with: "
        'python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"',
    )
    TOTP_ISSUER_NAME: str = Field(
        default="AccountGuard",
        description="Issuer name shown in authenticator apps",
    )
    TOTP_BACKUP_CODE_COUNT: int = Field(
        default=8,
        description="Number of backup codes to generate",
    )
    TOTP_VALID_WINDOW: int = Field(
        default=1,
        description="Accepted clock drift in 30-second steps on either side",
    )

    # Security audit
    SECURITY_EVENT_RETENTION_DAYS: int = Field(
        default=365,
        description="Days to keep security events",
    )
    SECURITY_BRUTE_FORCE_THRESHOLD: int = Field(
        default=10,
        description="Failed login attempts from same IP before alert (per hour)",
    )

    # Background sweepers
    SWEEPER_INTERVAL_MINUTES: int = Field(
        default=15,
        description="Interval of the lockout and session expiry sweeps",
    )
    RETENTION_SWEEP_HOUR: int = Field(
        default=3,
        description="Hour (UTC) of the daily retention sweep",
    )

    @field_validator(
        "LOCKOUT_MAX_FAILED_ATTEMPTS",
        "LOCKOUT_DURATION_MINUTES",
        "SESSION_TTL_HOURS",
        "TOTP_BACKUP_CODE_COUNT",
    )
    @classmethod
    def must_be_positive(cls, v: int) -> int:
        """Reject zero or negative policy values."""
        if v < 1:
            raise ValueError("must be a positive integer")
        return v

    model_config = SettingsConfigDict(
        env_file=_should_load_env_file(),
        env_file_encoding="utf-8",
        extra="ignore",  # Allow extra env vars (e.g., SENTRY_DSN) without validation errors
    )


settings = Settings()


def get_settings() -> Settings:
    """Get the settings instance (for dependency injection)."""
    return settings
