from datetime import datetime
from typing import Annotated, Any, List, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, EmailStr, Field

from helpers.time_utils import ensure_utc
from models.security_event_types import TokenPurpose

# SQLite hands back naive datetimes; everything leaving the services is UTC-aware
UtcDatetime = Annotated[datetime, AfterValidator(ensure_utc)]


# Client Context
class ClientContext(BaseModel):
    """Informational request metadata attached to sessions, tokens and events."""

    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    device_info: Optional[dict[str, Any]] = None


# Lockout Schemas
class LockoutState(BaseModel):
    user_id: int
    failed_attempts: int = 0
    last_failed_attempt: Optional[UtcDatetime] = None
    locked_until: Optional[UtcDatetime] = None
    is_locked: bool = False
    just_locked: bool = Field(
        default=False,
        description="True only for the failure that started the current lock",
    )

    model_config = ConfigDict(from_attributes=True)


# Session Schemas
class SessionInfo(BaseModel):
    """Stored session as seen by callers. Never carries token values."""

    id: int
    user_id: int
    expires_at: UtcDatetime
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    device_info: Optional[dict[str, Any]] = None
    is_active: bool
    last_used_at: Optional[UtcDatetime] = None
    created_at: Optional[UtcDatetime] = None

    model_config = ConfigDict(from_attributes=True)


class IssuedSession(SessionInfo):
    """Session plus its plaintext credentials, returned exactly once."""

    session_token: str
    refresh_token: str


# Two-Factor Schemas
class TwoFactorEnrollment(BaseModel):
    """Secret material shown once when enrollment starts."""

    secret: str
    provisioning_uri: str
    backup_codes: List[str]


class TwoFactorStatus(BaseModel):
    configured: bool
    enabled: bool
    verified_at: Optional[UtcDatetime] = None
    backup_codes_remaining: int = 0


# Token Schemas
class IssuedToken(BaseModel):
    """A freshly issued single-use token. `token` is the only plaintext copy."""

    token: str
    user_id: int
    purpose: TokenPurpose
    email: Optional[EmailStr] = None
    expires_at: UtcDatetime


class TokenRecord(BaseModel):
    id: int
    user_id: int
    purpose: TokenPurpose
    email: Optional[str] = None
    expires_at: UtcDatetime
    used_at: Optional[UtcDatetime] = None
    created_at: Optional[UtcDatetime] = None


# Security Event Schemas
class SecurityEventRecord(BaseModel):
    id: int
    user_id: Optional[int] = None
    event_type: str
    description: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    metadata: Optional[dict[str, Any]] = Field(
        default=None, validation_alias="event_metadata"
    )
    created_at: UtcDatetime

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class FailedLoginSource(BaseModel):
    """An IP address with an unusual number of failed logins."""

    ip_address: str
    attempts: int


# Orchestrator Schemas
class LoginResult(BaseModel):
    user_id: int
    session: Optional[IssuedSession] = None
    requires_two_factor: bool = Field(
        default=False,
        description="Password accepted but a second factor must be verified "
        "before a session is issued",
    )


class SweepReport(BaseModel):
    """Rows touched by one sweeper run, keyed by job name."""

    results: dict[str, int] = Field(default_factory=dict)
    failures: List[str] = Field(default_factory=list)

