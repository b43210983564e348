"""
Authentication orchestrator.

Thin composition of the lockout, session, two-factor, token and security
event services. The leaf services stay free of cross-cutting concerns; this
module emits the security event after each leaf call and decides what the
caller is told. Every rejected login (unknown account, wrong password,
locked account, bad second factor) surfaces as the same
InvalidCredentialsException.
"""

from typing import Any, NoReturn, Optional

from loguru import logger
from sqlalchemy.orm import Session

import models.schemas as schemas
from helpers.password_hashing import (
    burn_verification_time,
    get_password_hash,
    verify_password,
)
from helpers.store_errors import translate_store_errors
from helpers.time_utils import utc_now
from models.config import settings
from models.exceptions import (
    EmailAlreadyInUseException,
    EmailAlreadyVerifiedException,
    InfrastructureException,
    InvalidCredentialsException,
    SessionNotFoundException,
    TwoFactorInvalidCodeException,
    TokenNotFoundException,
    TwoFactorNotConfiguredException,
    UserNotFoundException,
    ValidationException,
)
from models.security_event_types import SecurityEventType, TokenPurpose
from repositories import db_models
from repositories.user_repository import UserRepository
from services.lockout_service import LockoutService
from services.security_event_service import SecurityEventService
from services.session_service import SessionService
from services.token_service import TokenService
from services.two_factor_service import TwoFactorService


class AuthOrchestrator:
    """Login, logout, recovery and 2FA flows built from the leaf services."""

    @staticmethod
    def _record(
        db: Session,
        event_type: SecurityEventType,
        user_id: Optional[int],
        context: Optional[schemas.ClientContext],
        description: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        context = context or schemas.ClientContext()
        SecurityEventService.record(
            db,
            event_type,
            user_id=user_id,
            description=description,
            ip_address=context.ip_address,
            user_agent=context.user_agent,
            metadata=metadata,
        )

    @staticmethod
    def _get_user(db: Session, user_id: int) -> db_models.User:
        with translate_store_errors(db, "user.get"):
            user = UserRepository(db).get_by_id(user_id)
        if user is None:
            raise UserNotFoundException("User not found")
        return user

    # ------------------------------------------------------------------
    # Login / sessions
    # ------------------------------------------------------------------

    @staticmethod
    def login(
        db: Session,
        email: str,
        password: str,
        context: Optional[schemas.ClientContext] = None,
        two_factor_code: Optional[str] = None,
    ) -> schemas.LoginResult:
        """
        Authenticate with email and password, then issue a session.

        If the account has 2FA enabled and no code is supplied, the password
        is accepted but no session is issued (`requires_two_factor`).

        Raises:
            InvalidCredentialsException: For every kind of rejection
            InfrastructureException: If the store failed while recording the outcome
        """
        with translate_store_errors(db, "login.lookup"):
            user = UserRepository(db).get_active_by_email(email)

        if user is None:
            burn_verification_time(password)
            AuthOrchestrator._record(
                db,
                SecurityEventType.LOGIN_FAILED,
                None,
                context,
                description="Login attempt for unknown account",
                metadata={"reason": "unknown_account"},
            )
            raise InvalidCredentialsException()

        user_id = user.id

        try:
            locked = LockoutService.is_locked(db, user_id)
        except InfrastructureException:
            AuthOrchestrator._record(
                db,
                SecurityEventType.LOCKOUT_STATE_UNAVAILABLE,
                user_id,
                context,
                description="Lockout state could not be read during login",
                metadata={"fail_open": settings.LOCKOUT_FAIL_OPEN},
            )
            if not settings.LOCKOUT_FAIL_OPEN:
                raise InvalidCredentialsException()
            locked = False

        if locked:
            burn_verification_time(password)
            AuthOrchestrator._record(
                db,
                SecurityEventType.LOGIN_FAILED,
                user_id,
                context,
                description="Login attempt on locked account",
                metadata={"reason": "account_locked"},
            )
            raise InvalidCredentialsException()

        if not verify_password(password, user.hashed_password):
            AuthOrchestrator._reject_attempt(db, user_id, context, "invalid_password")

        if TwoFactorService.is_enabled(db, user_id):
            if not two_factor_code:
                return schemas.LoginResult(user_id=user_id, requires_two_factor=True)
            try:
                method = AuthOrchestrator.verify_second_factor(
                    db, user_id, two_factor_code, context
                )
            except TwoFactorInvalidCodeException:
                AuthOrchestrator._reject_attempt(
                    db, user_id, context, "invalid_second_factor"
                )
        else:
            method = "password"

        LockoutService.record_success(db, user_id)
        session = SessionService.create_session(db, user_id, context)
        AuthOrchestrator._record(
            db,
            SecurityEventType.LOGIN_SUCCESS,
            user_id,
            context,
            description="User logged in",
            metadata={"session_id": session.id, "method": method},
        )
        return schemas.LoginResult(user_id=user_id, session=session)

    @staticmethod
    def _reject_attempt(
        db: Session,
        user_id: int,
        context: Optional[schemas.ClientContext],
        reason: str,
    ) -> NoReturn:
        """Count a failed credential check, lock if needed, and raise."""
        state = LockoutService.record_failure(db, user_id)
        AuthOrchestrator._record(
            db,
            SecurityEventType.LOGIN_FAILED,
            user_id,
            context,
            description="Login rejected",
            metadata={"reason": reason, "failed_attempts": state.failed_attempts},
        )

        if state.just_locked and state.locked_until is not None:
            AuthOrchestrator._record(
                db,
                SecurityEventType.ACCOUNT_LOCKED,
                user_id,
                context,
                description=(
                    f"Account locked after {state.failed_attempts} failed login attempts"
                ),
                metadata={"locked_until": state.locked_until.isoformat()},
            )
            revoked = SessionService.revoke_all(db, user_id)
            if revoked:
                AuthOrchestrator._record(
                    db,
                    SecurityEventType.SESSIONS_REVOKED,
                    user_id,
                    context,
                    description="Sessions revoked on account lock",
                    metadata={"count": revoked, "reason": "account_locked"},
                )

        raise InvalidCredentialsException()

    @staticmethod
    def authenticate_session(db: Session, session_token: str) -> schemas.SessionInfo:
        """
        Resolve a bearer session token and mark it used.

        Raises:
            SessionNotFoundException: If the token is not usable
        """
        session = SessionService.validate_session(db, session_token)
        SessionService.touch(db, session_token)
        return session

    @staticmethod
    def refresh_session(
        db: Session,
        refresh_token: str,
        context: Optional[schemas.ClientContext] = None,
    ) -> schemas.IssuedSession:
        """
        Exchange a refresh token for a new session token.

        Raises:
            SessionNotFoundException: If the refresh token is not usable
        """
        session = SessionService.refresh(db, refresh_token)
        AuthOrchestrator._record(
            db,
            SecurityEventType.TOKEN_REFRESH,
            session.user_id,
            context,
            description="Session token refreshed",
            metadata={"session_id": session.id},
        )
        return session

    @staticmethod
    def logout(
        db: Session,
        session_token: str,
        context: Optional[schemas.ClientContext] = None,
    ) -> bool:
        """Revoke the current session. Safe to call with a dead token."""
        user_id: Optional[int] = None
        session_id: Optional[int] = None
        try:
            session = SessionService.validate_session(db, session_token)
            user_id, session_id = session.user_id, session.id
        except SessionNotFoundException:
            # Expired or unknown: still deactivate, the event has no owner
            logger.debug("Logout with unusable session token")

        revoked = SessionService.revoke(db, session_token)
        if revoked:
            AuthOrchestrator._record(
                db,
                SecurityEventType.LOGOUT,
                user_id,
                context,
                description="User logged out",
                metadata={"session_id": session_id},
            )
        return revoked

    @staticmethod
    def logout_everywhere(
        db: Session,
        user_id: int,
        context: Optional[schemas.ClientContext] = None,
    ) -> int:
        """Revoke every session of the account."""
        revoked = SessionService.revoke_all(db, user_id)
        AuthOrchestrator._record(
            db,
            SecurityEventType.SESSIONS_REVOKED,
            user_id,
            context,
            description="Signed out everywhere",
            metadata={"count": revoked, "reason": "user_request"},
        )
        return revoked

    # ------------------------------------------------------------------
    # Passwords and email
    # ------------------------------------------------------------------

    @staticmethod
    def change_password(
        db: Session,
        user_id: int,
        current_password: str,
        new_password: str,
        context: Optional[schemas.ClientContext] = None,
        current_session_token: Optional[str] = None,
    ) -> int:
        """
        Change the password and revoke other sessions.

        Returns:
            Number of sessions revoked

        Raises:
            InvalidCredentialsException: If the current password is wrong
        """
        user = AuthOrchestrator._get_user(db, user_id)
        if not verify_password(current_password, user.hashed_password):
            AuthOrchestrator._record(
                db,
                SecurityEventType.SUSPICIOUS_ACTIVITY,
                user_id,
                context,
                description="Password change with wrong current password",
            )
            raise InvalidCredentialsException()

        repo = UserRepository(db)
        with translate_store_errors(db, "user.update_password"):
            repo.update_password(user_id, get_password_hash(new_password))
            repo.commit()

        revoked = SessionService.revoke_all(
            db, user_id, except_session_token=current_session_token
        )
        AuthOrchestrator._record(
            db,
            SecurityEventType.PASSWORD_CHANGED,
            user_id,
            context,
            description="Password changed",
            metadata={"sessions_revoked": revoked},
        )
        return revoked

    @staticmethod
    def request_password_reset(
        db: Session,
        email: str,
        context: Optional[schemas.ClientContext] = None,
    ) -> Optional[schemas.IssuedToken]:
        """
        Issue a password reset token for delivery by the caller.

        Returns:
            The token, or None if no active account uses this email. Callers
            must answer both cases identically.
        """
        with translate_store_errors(db, "password_reset.lookup"):
            user = UserRepository(db).get_active_by_email(email)

        if user is None:
            AuthOrchestrator._record(
                db,
                SecurityEventType.PASSWORD_RESET_REQUESTED,
                None,
                context,
                description="Password reset requested for unknown account",
                metadata={"reason": "unknown_account"},
            )
            return None

        issued = TokenService.issue(
            db, user.id, TokenPurpose.PASSWORD_RESET, context=context
        )
        AuthOrchestrator._record(
            db,
            SecurityEventType.PASSWORD_RESET_REQUESTED,
            user.id,
            context,
            description="Password reset requested",
            metadata={"expires_at": issued.expires_at.isoformat()},
        )
        return issued

    @staticmethod
    def reset_password(
        db: Session,
        token: str,
        new_password: str,
        context: Optional[schemas.ClientContext] = None,
    ) -> int:
        """
        Redeem a reset token and set a new password.

        The token is consumed in the same transaction as the password
        update. Clears the lockout state and revokes every session.

        Returns:
            The account id

        Raises:
            TokenNotFoundException: If the token is unknown, used or expired
        """
        redeemed = TokenService.redeem(
            db, token, TokenPurpose.PASSWORD_RESET, commit=False
        )
        user_id = redeemed.user_id

        repo = UserRepository(db)
        with translate_store_errors(db, "user.update_password"):
            repo.update_password(user_id, get_password_hash(new_password))
            repo.commit()

        LockoutService.record_success(db, user_id)
        revoked = SessionService.revoke_all(db, user_id)
        AuthOrchestrator._record(
            db,
            SecurityEventType.PASSWORD_RESET_COMPLETED,
            user_id,
            context,
            description="Password reset completed",
            metadata={"sessions_revoked": revoked},
        )
        return user_id

    @staticmethod
    def request_email_verification(
        db: Session,
        user_id: int,
        email: Optional[str] = None,
        context: Optional[schemas.ClientContext] = None,
        purpose: TokenPurpose = TokenPurpose.EMAIL_VERIFICATION,
    ) -> schemas.IssuedToken:
        """
        Issue an email verification (or email change) token.

        Args:
            db: Database session
            user_id: Account
            email: For EMAIL_CHANGE, the new address (required). For
                EMAIL_VERIFICATION it may only repeat the account email.
            context: Requesting client
            purpose: EMAIL_VERIFICATION or EMAIL_CHANGE

        Raises:
            EmailAlreadyVerifiedException: Verification of an already verified account
            EmailAlreadyInUseException: Change to an address another account holds
            ValidationException: Missing change address, or a verification
                address that is not the account email
        """
        user = AuthOrchestrator._get_user(db, user_id)
        target = email.strip().lower() if email else None

        if purpose is TokenPurpose.EMAIL_CHANGE:
            if not target:
                raise ValidationException("email_change tokens require an email")
            with translate_store_errors(db, "user.email_lookup"):
                holder = UserRepository(db).get_by_email(target)
            if holder is not None:
                raise EmailAlreadyInUseException()
        else:
            if target and target != user.email:
                raise ValidationException(
                    "Only the account email can be verified; use an email change"
                )
            if user.email_verified:
                raise EmailAlreadyVerifiedException()
            target = user.email

        issued = TokenService.issue(
            db, user_id, purpose, email=target, context=context
        )
        AuthOrchestrator._record(
            db,
            SecurityEventType.EMAIL_VERIFICATION_SENT,
            user_id,
            context,
            description="Email verification sent",
            metadata={"purpose": purpose.value},
        )
        return issued

    @staticmethod
    def verify_email(
        db: Session,
        token: str,
        context: Optional[schemas.ClientContext] = None,
        purpose: TokenPurpose = TokenPurpose.EMAIL_VERIFICATION,
    ) -> int:
        """
        Redeem an email token.

        EMAIL_VERIFICATION only flags the account email verified, and only
        while the account still uses the address the token was sent to.
        EMAIL_CHANGE switches the account to the token's address. Either way
        the token is consumed in the same transaction as the account update,
        so a failed update leaves the token redeemable.

        Returns:
            The account id

        Raises:
            TokenNotFoundException: If the token is unknown, used or expired,
                or was sent to an address the account no longer uses
            InfrastructureException: If the account update failed
        """
        redeemed = TokenService.redeem(db, token, purpose, commit=False)
        user_id = redeemed.user_id
        token_email = (redeemed.email or "").strip().lower()
        repo = UserRepository(db)

        with translate_store_errors(db, "user.verify_email"):
            if purpose is TokenPurpose.EMAIL_CHANGE:
                repo.change_email(user_id, token_email, utc_now())
            else:
                user = repo.get_by_id(user_id)
                if user is None or user.email != token_email:
                    repo.rollback()
                    raise TokenNotFoundException()
                repo.mark_email_verified(user_id, utc_now())
            repo.commit()

        if purpose is TokenPurpose.EMAIL_CHANGE:
            event = SecurityEventType.EMAIL_CHANGED
            description = "Email address changed"
        else:
            event = SecurityEventType.EMAIL_VERIFIED
            description = "Email address verified"
        AuthOrchestrator._record(db, event, user_id, context, description=description)
        return user_id

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    @staticmethod
    def admin_unlock(
        db: Session,
        user_id: int,
        admin_id: int,
        context: Optional[schemas.ClientContext] = None,
    ) -> bool:
        """Clear a lock and its counter on behalf of an administrator."""
        unlocked = LockoutService.unlock(db, user_id)
        AuthOrchestrator._record(
            db,
            SecurityEventType.ACCOUNT_UNLOCKED,
            user_id,
            context,
            description=f"Account manually unlocked by admin {admin_id}",
            metadata={"admin_id": admin_id},
        )
        return unlocked

    # ------------------------------------------------------------------
    # Two-factor
    # ------------------------------------------------------------------

    @staticmethod
    def start_two_factor_enrollment(
        db: Session,
        user_id: int,
        context: Optional[schemas.ClientContext] = None,
    ) -> schemas.TwoFactorEnrollment:
        """
        Begin 2FA enrollment.

        Raises:
            TwoFactorAlreadyEnabledException: If 2FA is already enabled
        """
        user = AuthOrchestrator._get_user(db, user_id)
        enrollment = TwoFactorService.begin_enrollment(db, user_id, user.email)
        AuthOrchestrator._record(
            db,
            SecurityEventType.TWO_FACTOR_ENROLLMENT_STARTED,
            user_id,
            context,
            description="2FA enrollment started",
        )
        return enrollment

    @staticmethod
    def enable_two_factor(
        db: Session,
        user_id: int,
        code: Optional[str] = None,
        context: Optional[schemas.ClientContext] = None,
    ) -> bool:
        """
        Turn 2FA on.

        A never-verified enrollment needs a valid TOTP code. An enrollment
        that was verified before and later disabled is re-enabled without one.

        Returns:
            True if 2FA went from disabled to enabled, False if it already was

        Raises:
            TwoFactorNotConfiguredException: If enrollment was never started
            TwoFactorInvalidCodeException: If proof of possession is required and fails
        """
        status = TwoFactorService.get_status(db, user_id)
        if not status.configured:
            raise TwoFactorNotConfiguredException()
        if status.enabled:
            return False

        reproof = status.verified_at is None
        if reproof and not (code and TwoFactorService.verify_totp(db, user_id, code)):
            AuthOrchestrator._record(
                db,
                SecurityEventType.TWO_FACTOR_FAILED,
                user_id,
                context,
                description="Invalid code while enabling 2FA",
            )
            raise TwoFactorInvalidCodeException()

        enabled = TwoFactorService.confirm_enrollment(db, user_id)
        if enabled:
            AuthOrchestrator._record(
                db,
                SecurityEventType.TWO_FACTOR_ENABLED,
                user_id,
                context,
                description="2FA enabled",
                metadata={"proof_of_possession": reproof},
            )
        return enabled

    @staticmethod
    def verify_second_factor(
        db: Session,
        user_id: int,
        code: str,
        context: Optional[schemas.ClientContext] = None,
    ) -> str:
        """
        Check a TOTP or backup code for an account with 2FA enabled.

        Returns:
            "totp" or "backup_code"

        Raises:
            TwoFactorInvalidCodeException: If the code is wrong
            TwoFactorNotEnabledException: If 2FA is not enabled
        """
        try:
            method = TwoFactorService.verify_code(db, user_id, code)
        except TwoFactorInvalidCodeException:
            AuthOrchestrator._record(
                db,
                SecurityEventType.TWO_FACTOR_FAILED,
                user_id,
                context,
                description="Invalid second factor",
            )
            raise

        if method == "backup_code":
            remaining = TwoFactorService.get_status(db, user_id).backup_codes_remaining
            logger.info(f"Backup code login: user_id={user_id}, remaining={remaining}")
        return method

    @staticmethod
    def disable_two_factor(
        db: Session,
        user_id: int,
        password: str,
        context: Optional[schemas.ClientContext] = None,
    ) -> bool:
        """
        Turn 2FA off after re-checking the password.

        Raises:
            InvalidCredentialsException: If the password is wrong
        """
        user = AuthOrchestrator._get_user(db, user_id)
        if not verify_password(password, user.hashed_password):
            raise InvalidCredentialsException()

        disabled = TwoFactorService.disable(db, user_id)
        if disabled:
            AuthOrchestrator._record(
                db,
                SecurityEventType.TWO_FACTOR_DISABLED,
                user_id,
                context,
                description="2FA disabled",
            )
        return disabled

    @staticmethod
    def regenerate_backup_codes(
        db: Session,
        user_id: int,
        context: Optional[schemas.ClientContext] = None,
    ) -> list[str]:
        """
        Replace all backup codes and return the new ones.

        Raises:
            TwoFactorNotConfiguredException: If the account has no enrollment
        """
        codes = TwoFactorService.generate_backup_codes(db)
        if not TwoFactorService.regenerate_backup_codes(db, user_id, codes):
            raise TwoFactorNotConfiguredException()
        AuthOrchestrator._record(
            db,
            SecurityEventType.TWO_FACTOR_BACKUP_CODES_REGENERATED,
            user_id,
            context,
            description="Backup codes regenerated",
            metadata={"count": len(codes)},
        )
        return codes

    @staticmethod
    def remove_two_factor(
        db: Session,
        user_id: int,
        context: Optional[schemas.ClientContext] = None,
        admin_id: Optional[int] = None,
    ) -> bool:
        """Delete the enrollment entirely (user request or admin reset)."""
        removed = TwoFactorService.remove(db, user_id)
        if removed:
            AuthOrchestrator._record(
                db,
                SecurityEventType.TWO_FACTOR_REMOVED,
                user_id,
                context,
                description="2FA removed",
                metadata={"admin_id": admin_id} if admin_id else None,
            )
        return removed
