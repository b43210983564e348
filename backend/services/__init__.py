"""
Services layer for account security logic.

Each service owns one concern (lockout, sessions, second factor, tokens,
security events); AuthOrchestrator composes them into the user-facing
flows.
"""

from .lockout_service import LockoutService
from .session_service import SessionService
from .two_factor_service import TwoFactorService
from .token_service import TokenService
from .security_event_service import SecurityEventService
from .sweeper_service import SweeperService
from .auth_orchestrator import AuthOrchestrator

__all__ = [
    "LockoutService",
    "SessionService",
    "TwoFactorService",
    "TokenService",
    "SecurityEventService",
    "SweeperService",
    "AuthOrchestrator",
]
