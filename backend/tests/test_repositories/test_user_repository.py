"""Tests for UserRepository."""

from sqlalchemy.orm import Session

import repositories.db_models as db_models
from helpers.time_utils import utc_now
from repositories.user_repository import UserRepository


class TestUserRepository:
    """Tests for account lookups and updates."""

    def test_create_user_lowercases_email(self, db_session: Session) -> None:
        repo = UserRepository(db_session)
        user = repo.create_user("  Mixed@Example.COM ", "hash")
        repo.commit()

        assert user.email == "mixed@example.com"
        assert repo.get_by_email("MIXED@example.com").id == user.id

    def test_get_active_by_email_skips_inactive(
        self, db_session: Session, test_user: db_models.User
    ) -> None:
        repo = UserRepository(db_session)
        assert repo.get_active_by_email(test_user.email).id == test_user.id

        test_user.is_active = False
        db_session.commit()

        assert repo.get_active_by_email(test_user.email) is None
        assert repo.get_by_email(test_user.email) is not None

    def test_update_password(
        self, db_session: Session, test_user: db_models.User
    ) -> None:
        repo = UserRepository(db_session)

        assert repo.update_password(test_user.id, "new-hash") == 1
        repo.commit()
        db_session.refresh(test_user)

        assert test_user.hashed_password == "new-hash"

    def test_mark_email_verified_keeps_email(
        self, db_session: Session, test_user: db_models.User
    ) -> None:
        repo = UserRepository(db_session)

        repo.mark_email_verified(test_user.id, utc_now())
        repo.commit()
        db_session.refresh(test_user)

        assert test_user.email == "test@example.com"
        assert test_user.email_verified is True

    def test_change_email(
        self, db_session: Session, test_user: db_models.User
    ) -> None:
        repo = UserRepository(db_session)

        repo.change_email(test_user.id, "Changed@Example.com", utc_now())
        repo.commit()
        db_session.refresh(test_user)

        assert test_user.email == "changed@example.com"
        assert test_user.email_verified is True
        assert test_user.email_verified_at is not None

    def test_deleting_user_cascades_security_rows(
        self, db_session: Session, test_user: db_models.User
    ) -> None:
        from services.lockout_service import LockoutService
        from services.security_event_service import SecurityEventService
        from services.session_service import SessionService

        LockoutService.record_failure(db_session, test_user.id)
        SessionService.create_session(db_session, test_user.id)
        SecurityEventService.record(db_session, "logout", user_id=test_user.id)

        db_session.delete(test_user)
        db_session.commit()

        assert db_session.query(db_models.AccountLockout).count() == 0
        assert db_session.query(db_models.UserSession).count() == 0
        event = db_session.query(db_models.SecurityEvent).one()
        assert event.user_id is None
