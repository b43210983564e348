"""
Lockout policy engine.

Tracks failed authentication attempts per account and enforces temporary
locks. The lock check is lazy: an elapsed `locked_until` means unlocked
whether or not the sweeper has cleared it yet.
"""

from datetime import timedelta

from loguru import logger
from sqlalchemy.orm import Session

import models.schemas as schemas
from helpers.store_errors import translate_store_errors
from helpers.time_utils import ensure_utc, utc_now
from models.config import settings
from repositories.lockout_repository import LockoutRepository


class LockoutService:
    """Failed-attempt counting and temporary account locks."""

    @staticmethod
    def lock_duration() -> timedelta:
        return timedelta(minutes=settings.LOCKOUT_DURATION_MINUTES)

    @staticmethod
    def record_failure(db: Session, user_id: int) -> schemas.LockoutState:
        """
        Count one failed attempt and lock the account at the threshold.

        A failure while a lock is running does not extend it; the lock
        duration is applied once per lock cycle.

        Args:
            db: Database session
            user_id: Account that failed to authenticate

        Returns:
            Lockout state after the increment

        Raises:
            InfrastructureException: If the store could not be updated
        """
        now = utc_now()
        duration = LockoutService.lock_duration()
        repo = LockoutRepository(db)

        with translate_store_errors(db, "lockout.record_failure"):
            failed_attempts, last_failed, locked_until = repo.record_failure(
                user_id,
                now=now,
                threshold=settings.LOCKOUT_MAX_FAILED_ATTEMPTS,
                lock_duration=duration,
            )
            repo.commit()

        locked_until = ensure_utc(locked_until)
        just_locked = locked_until is not None and locked_until == now + duration
        if just_locked:
            logger.warning(
                f"Account locked: user_id={user_id}, attempts={failed_attempts}, "
                f"until={locked_until.isoformat()}"
            )

        return schemas.LockoutState(
            user_id=user_id,
            failed_attempts=failed_attempts,
            last_failed_attempt=ensure_utc(last_failed),
            locked_until=locked_until,
            is_locked=locked_until is not None and locked_until > now,
            just_locked=just_locked,
        )

    @staticmethod
    def record_success(db: Session, user_id: int) -> None:
        """Reset counter, last failure and lock together."""
        repo = LockoutRepository(db)
        with translate_store_errors(db, "lockout.record_success"):
            repo.reset(user_id, utc_now())
            repo.commit()

    @staticmethod
    def is_locked(db: Session, user_id: int) -> bool:
        """
        True iff a lockout row exists with `locked_until` in the future.

        Raises:
            InfrastructureException: If the store could not be read
        """
        with translate_store_errors(db, "lockout.is_locked"):
            return LockoutRepository(db).is_locked(user_id, utc_now())

    @staticmethod
    def get_state(db: Session, user_id: int) -> schemas.LockoutState:
        """Current lockout state; a zeroed state if the account never failed."""
        now = utc_now()
        with translate_store_errors(db, "lockout.get_state"):
            record = LockoutRepository(db).get_by_user(user_id)

        if record is None:
            return schemas.LockoutState(user_id=user_id)

        return schemas.LockoutState(
            user_id=user_id,
            failed_attempts=record.failed_attempts,
            last_failed_attempt=ensure_utc(record.last_failed_attempt),
            locked_until=ensure_utc(record.locked_until),
            is_locked=record.is_locked_at(now),
        )

    @staticmethod
    def unlock(db: Session, user_id: int) -> bool:
        """
        Administrative override: clear counter and lock unconditionally.

        Returns:
            True if a lockout row existed
        """
        repo = LockoutRepository(db)
        with translate_store_errors(db, "lockout.unlock"):
            updated = repo.unlock(user_id, utc_now())
            repo.commit()
        if updated:
            logger.info(f"Account unlocked: user_id={user_id}")
        return updated > 0

    @staticmethod
    def sweep_expired_locks(db: Session) -> int:
        """
        Clear counter and lock on every account whose lock has elapsed.

        Not needed for correctness; keeps the set of live lock rows small.

        Returns:
            Number of rows cleared
        """
        repo = LockoutRepository(db)
        with translate_store_errors(db, "lockout.sweep_expired_locks"):
            cleared = repo.clear_expired_locks(utc_now())
            repo.commit()
        if cleared:
            logger.info(f"Cleared {cleared} expired account locks")
        return cleared
