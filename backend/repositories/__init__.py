"""
Repository pattern implementation for data access layer.
"""

from .base import BaseRepository
from .lockout_repository import LockoutRepository
from .security_event_repository import SecurityEventRepository
from .session_repository import SessionRepository
from .two_factor_repository import TwoFactorRepository
from .user_repository import UserRepository
from .verification_token_repository import VerificationTokenRepository

__all__ = [
    "BaseRepository",
    "LockoutRepository",
    "SecurityEventRepository",
    "SessionRepository",
    "TwoFactorRepository",
    "UserRepository",
    "VerificationTokenRepository",
]
