"""
Database models using SQLAlchemy 2.0 style with Mapped type hints.

Time-based validity rules (account locked, session usable, token
redeemable) are hybrid methods: the same definition evaluates in Python on
a loaded row and compiles to SQL inside WHERE clauses, so the read path and
the sweepers never disagree.
"""

from datetime import datetime, timezone
from typing import Any, List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    and_,
)
from sqlalchemy.ext.hybrid import hybrid_method
from sqlalchemy.orm import Mapped, mapped_column, relationship

from helpers.time_utils import ensure_utc
from repositories.database import Base


def _utc_now() -> datetime:
    """Return current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


class User(Base):
    """Minimal account row referenced by the security tables."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    email: Mapped[str] = mapped_column(String, unique=True, index=True, nullable=False)
    hashed_password: Mapped[str] = mapped_column(String, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    email_verified: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    email_verified_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utc_now, onupdate=_utc_now
    )

    lockout: Mapped[Optional["AccountLockout"]] = relationship(
        "AccountLockout",
        back_populates="user",
        uselist=False,
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    sessions: Mapped[List["UserSession"]] = relationship(
        "UserSession",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    two_factor: Mapped[Optional["UserTwoFactor"]] = relationship(
        "UserTwoFactor",
        back_populates="user",
        uselist=False,
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


# ============================================================================
# Account Lockout
# ============================================================================


class AccountLockout(Base):
    """Failed-attempt counter and lock expiry, one row per account."""

    __tablename__ = "account_lockouts"
    __table_args__ = (Index("ix_account_lockouts_locked_until", "locked_until"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    failed_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_failed_attempt: Mapped[Optional[datetime]] = mapped_column(
        DateTime, nullable=True
    )
    locked_until: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)

    user: Mapped["User"] = relationship("User", back_populates="lockout")

    @hybrid_method
    def is_locked_at(self, now: datetime) -> bool:
        locked_until = ensure_utc(self.locked_until)
        return locked_until is not None and locked_until > now

    @is_locked_at.expression
    def is_locked_at(cls, now: datetime):  # type: ignore[no-redef]
        return and_(cls.locked_until.is_not(None), cls.locked_until > now)

    @hybrid_method
    def lock_expired_at(self, now: datetime) -> bool:
        locked_until = ensure_utc(self.locked_until)
        return locked_until is not None and locked_until <= now

    @lock_expired_at.expression
    def lock_expired_at(cls, now: datetime):  # type: ignore[no-redef]
        return and_(cls.locked_until.is_not(None), cls.locked_until <= now)


# ============================================================================
# Sessions
# ============================================================================


class UserSession(Base):
    """
    Issued session credential pair.

    Only SHA-256 hashes of the session and refresh tokens are stored.
    """

    __tablename__ = "user_sessions"
    __table_args__ = (
        Index("ix_user_sessions_user_active", "user_id", "is_active"),
        Index("ix_user_sessions_expires", "expires_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    session_token_hash: Mapped[str] = mapped_column(
        String(64), unique=True, nullable=False
    )
    refresh_token_hash: Mapped[str] = mapped_column(
        String(64), unique=True, nullable=False
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    ip_address: Mapped[Optional[str]] = mapped_column(
        String(45), nullable=True
    )  # IPv6 max length
    user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    device_info: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_used_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)

    user: Mapped["User"] = relationship("User", back_populates="sessions")

    @hybrid_method
    def is_usable_at(self, now: datetime) -> bool:
        expires_at = ensure_utc(self.expires_at)
        return bool(self.is_active) and expires_at is not None and expires_at > now

    @is_usable_at.expression
    def is_usable_at(cls, now: datetime):  # type: ignore[no-redef]
        return and_(cls.is_active.is_(True), cls.expires_at > now)


# ============================================================================
# Two-Factor Authentication (2FA)
# ============================================================================


class UserTwoFactor(Base):
    """
    Second-factor enrollment, at most one row per user.

    The TOTP secret is Fernet-encrypted; backup codes are stored as a JSON
    list of SHA-256 hashes. `version` is bumped on every backup-code change
    so consumption can compare-and-set.
    """

    __tablename__ = "user_2fa"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    encrypted_secret: Mapped[str] = mapped_column(
        String(256), nullable=False
    )  # Fernet-encrypted
    backup_codes: Mapped[List[str]] = mapped_column(JSON, default=list, nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    verified_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)

    user: Mapped["User"] = relationship("User", back_populates="two_factor")


# ============================================================================
# Single-use Verification Tokens
# ============================================================================


class _RedeemableToken:
    """Columns and validity rule shared by both token tables."""

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    token_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    used_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)

    @hybrid_method
    def is_redeemable_at(self, now: datetime) -> bool:
        expires_at = ensure_utc(self.expires_at)
        return self.used_at is None and expires_at is not None and expires_at > now

    @is_redeemable_at.expression
    def is_redeemable_at(cls, now: datetime):  # type: ignore[no-redef]
        return and_(cls.used_at.is_(None), cls.expires_at > now)

    @hybrid_method
    def is_purgeable_at(self, cutoff: datetime) -> bool:
        expires_at = ensure_utc(self.expires_at)
        return expires_at is not None and expires_at < cutoff

    @is_purgeable_at.expression
    def is_purgeable_at(cls, cutoff: datetime):  # type: ignore[no-redef]
        return cls.expires_at < cutoff


class EmailVerificationToken(_RedeemableToken, Base):
    """Email verification and email change tokens."""

    __tablename__ = "email_verification_tokens"
    __table_args__ = (
        Index("ix_email_verification_user_type", "user_id", "token_type"),
        Index("ix_email_verification_expires", "expires_at"),
    )

    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    email: Mapped[str] = mapped_column(String, nullable=False)
    token_type: Mapped[str] = mapped_column(String(32), nullable=False)


class PasswordResetToken(_RedeemableToken, Base):
    """Password reset tokens."""

    __tablename__ = "password_reset_tokens"
    __table_args__ = (
        Index("ix_password_reset_user", "user_id"),
        Index("ix_password_reset_expires", "expires_at"),
    )

    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )


# ============================================================================
# Security Events
# ============================================================================


class SecurityEvent(Base):
    """Append-only audit record. Never updated."""

    __tablename__ = "security_events"
    __table_args__ = (
        Index("ix_security_events_user_created", "user_id", "created_at"),
        Index("ix_security_events_type_created", "event_type", "created_at"),
        Index("ix_security_events_ip_created", "ip_address", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        comment="Account the event concerns (absent for anonymous events)",
    )
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(
        String(45), nullable=True, comment="Client IP address"
    )
    user_agent: Mapped[Optional[str]] = mapped_column(
        String(500), nullable=True, comment="Client user agent"
    )
    # "metadata" is reserved on declarative classes
    event_metadata: Mapped[Optional[dict[str, Any]]] = mapped_column(
        "metadata", JSON, nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utc_now, nullable=False, index=True
    )
