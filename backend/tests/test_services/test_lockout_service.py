"""Tests for LockoutService."""

from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest
from sqlalchemy.orm import Session

import repositories.db_models as db_models
from helpers.time_utils import ensure_utc, utc_now
from models.config import settings
from repositories.lockout_repository import LockoutRepository
from services.lockout_service import LockoutService


def _fail(db: Session, user_id: int, times: int):
    state = None
    for _ in range(times):
        state = LockoutService.record_failure(db, user_id)
    return state


def _expire_lock(db: Session, user_id: int) -> None:
    record = LockoutRepository(db).get_by_user(user_id)
    record.locked_until = utc_now() - timedelta(seconds=1)
    db.commit()


class TestRecordFailure:
    """Tests for counting failed attempts."""

    def test_first_failure_creates_row(
        self, db_session: Session, test_user: db_models.User
    ) -> None:
        state = LockoutService.record_failure(db_session, test_user.id)

        assert state.failed_attempts == 1
        assert state.last_failed_attempt is not None
        assert state.locked_until is None
        assert state.is_locked is False
        assert state.just_locked is False

    def test_failures_below_threshold_do_not_lock(
        self, db_session: Session, test_user: db_models.User
    ) -> None:
        state = _fail(db_session, test_user.id, settings.LOCKOUT_MAX_FAILED_ATTEMPTS - 1)

        assert state.failed_attempts == settings.LOCKOUT_MAX_FAILED_ATTEMPTS - 1
        assert state.is_locked is False
        assert LockoutService.is_locked(db_session, test_user.id) is False

    def test_threshold_failure_locks_for_duration(
        self, db_session: Session, test_user: db_models.User
    ) -> None:
        before = utc_now()
        state = _fail(db_session, test_user.id, settings.LOCKOUT_MAX_FAILED_ATTEMPTS)

        assert state.is_locked is True
        assert state.just_locked is True
        expected = before + timedelta(minutes=settings.LOCKOUT_DURATION_MINUTES)
        assert state.locked_until >= expected
        assert state.locked_until <= expected + timedelta(seconds=5)
        assert LockoutService.is_locked(db_session, test_user.id) is True

    def test_failure_during_lock_does_not_extend_it(
        self, db_session: Session, test_user: db_models.User
    ) -> None:
        locked = _fail(db_session, test_user.id, settings.LOCKOUT_MAX_FAILED_ATTEMPTS)
        again = LockoutService.record_failure(db_session, test_user.id)

        assert again.failed_attempts == settings.LOCKOUT_MAX_FAILED_ATTEMPTS + 1
        assert again.locked_until == locked.locked_until
        assert again.just_locked is False
        assert again.is_locked is True

    def test_failure_after_expired_lock_starts_new_cycle(
        self, db_session: Session, test_user: db_models.User
    ) -> None:
        _fail(db_session, test_user.id, settings.LOCKOUT_MAX_FAILED_ATTEMPTS)
        _expire_lock(db_session, test_user.id)
        assert LockoutService.is_locked(db_session, test_user.id) is False

        state = LockoutService.record_failure(db_session, test_user.id)

        assert state.just_locked is True
        assert state.is_locked is True

    def test_accounts_are_independent(
        self,
        db_session: Session,
        test_user: db_models.User,
        other_user: db_models.User,
    ) -> None:
        _fail(db_session, test_user.id, settings.LOCKOUT_MAX_FAILED_ATTEMPTS)

        assert LockoutService.is_locked(db_session, test_user.id) is True
        assert LockoutService.is_locked(db_session, other_user.id) is False
        assert LockoutService.get_state(db_session, other_user.id).failed_attempts == 0

    def test_concurrent_failures_are_all_counted(self, file_session_factory) -> None:
        with file_session_factory() as db:
            user = db_models.User(email="race@example.com", hashed_password="x")
            db.add(user)
            db.commit()
            user_id = user.id

        def attempt() -> bool:
            with file_session_factory() as db:
                return LockoutService.record_failure(db, user_id).just_locked

        calls = 20
        with ThreadPoolExecutor(max_workers=8) as executor:
            results = list(executor.map(lambda _: attempt(), range(calls)))

        assert results.count(True) == 1
        with file_session_factory() as db:
            state = LockoutService.get_state(db, user_id)
        assert state.failed_attempts == calls
        assert state.is_locked is True


class TestRecordSuccess:
    """Tests for resetting after a successful login."""

    def test_resets_counter_and_lock_together(
        self, db_session: Session, test_user: db_models.User
    ) -> None:
        _fail(db_session, test_user.id, settings.LOCKOUT_MAX_FAILED_ATTEMPTS)

        LockoutService.record_success(db_session, test_user.id)

        state = LockoutService.get_state(db_session, test_user.id)
        assert state.failed_attempts == 0
        assert state.last_failed_attempt is None
        assert state.locked_until is None
        assert state.is_locked is False

    def test_success_without_row_is_noop(
        self, db_session: Session, test_user: db_models.User
    ) -> None:
        LockoutService.record_success(db_session, test_user.id)

        assert LockoutRepository(db_session).get_by_user(test_user.id) is None


class TestUnlockAndSweep:
    """Tests for administrative unlock and the expired-lock sweep."""

    def test_unlock_clears_lock(
        self, db_session: Session, test_user: db_models.User
    ) -> None:
        _fail(db_session, test_user.id, settings.LOCKOUT_MAX_FAILED_ATTEMPTS)

        assert LockoutService.unlock(db_session, test_user.id) is True

        state = LockoutService.get_state(db_session, test_user.id)
        assert state.is_locked is False
        assert state.failed_attempts == 0

    def test_unlock_unknown_account_returns_false(
        self, db_session: Session, test_user: db_models.User
    ) -> None:
        assert LockoutService.unlock(db_session, test_user.id) is False

    def test_sweep_clears_only_elapsed_locks(
        self,
        db_session: Session,
        test_user: db_models.User,
        other_user: db_models.User,
    ) -> None:
        _fail(db_session, test_user.id, settings.LOCKOUT_MAX_FAILED_ATTEMPTS)
        _fail(db_session, other_user.id, settings.LOCKOUT_MAX_FAILED_ATTEMPTS)
        _expire_lock(db_session, test_user.id)

        assert LockoutService.sweep_expired_locks(db_session) == 1

        expired = LockoutService.get_state(db_session, test_user.id)
        assert expired.locked_until is None
        assert expired.failed_attempts == 0
        assert LockoutService.is_locked(db_session, other_user.id) is True

    def test_sweep_is_idempotent(
        self, db_session: Session, test_user: db_models.User
    ) -> None:
        _fail(db_session, test_user.id, settings.LOCKOUT_MAX_FAILED_ATTEMPTS)
        _expire_lock(db_session, test_user.id)

        assert LockoutService.sweep_expired_locks(db_session) == 1
        assert LockoutService.sweep_expired_locks(db_session) == 0


class TestLockRule:
    """Tests for the hybrid lock rule on loaded rows."""

    @pytest.mark.parametrize(
        "offset,expected",
        [(timedelta(minutes=5), True), (timedelta(minutes=-5), False)],
    )
    def test_is_locked_at(
        self,
        db_session: Session,
        test_user: db_models.User,
        offset: timedelta,
        expected: bool,
    ) -> None:
        LockoutService.record_failure(db_session, test_user.id)
        record = LockoutRepository(db_session).get_by_user(test_user.id)
        record.locked_until = utc_now() + offset
        db_session.commit()

        record = LockoutRepository(db_session).get_by_user(test_user.id)
        assert ensure_utc(record.locked_until) is not None
        assert record.is_locked_at(utc_now()) is expected
        assert LockoutService.is_locked(db_session, test_user.id) is expected
