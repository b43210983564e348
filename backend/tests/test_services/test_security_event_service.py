"""Tests for SecurityEventService."""

from datetime import timedelta
from unittest.mock import patch

import pytest
from loguru import logger
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

import repositories.db_models as db_models
from helpers.time_utils import utc_now
from models.security_event_types import SecurityEventType
from repositories.security_event_repository import SecurityEventRepository
from services.security_event_service import SecurityEventService


@pytest.fixture
def captured_logs():
    """Collect loguru messages emitted during the test."""
    messages: list[str] = []
    handler_id = logger.add(lambda m: messages.append(m), level="DEBUG")
    yield messages
    logger.remove(handler_id)


class TestRecord:
    """Tests for appending events."""

    def test_persists_event_with_metadata(
        self, db_session: Session, test_user: db_models.User
    ) -> None:
        stored = SecurityEventService.record(
            db_session,
            SecurityEventType.LOGIN_SUCCESS,
            user_id=test_user.id,
            description="User logged in",
            ip_address="198.51.100.4",
            user_agent="pytest",
            metadata={"session_id": 7},
        )

        assert stored is not None
        assert stored.event_type == "login_success"
        assert stored.metadata == {"session_id": 7}
        assert stored.created_at.tzinfo is not None

        row = db_session.query(db_models.SecurityEvent).one()
        assert row.event_metadata == {"session_id": 7}
        assert row.ip_address == "198.51.100.4"

    def test_accepts_string_type(self, db_session: Session) -> None:
        stored = SecurityEventService.record(db_session, "suspicious_activity")

        assert stored is not None
        assert stored.user_id is None

    def test_unknown_type_is_logged_not_raised(
        self, db_session: Session, captured_logs: list[str]
    ) -> None:
        assert SecurityEventService.record(db_session, "made_up_event") is None

        assert db_session.query(db_models.SecurityEvent).count() == 0
        assert any("made_up_event" in m for m in captured_logs)

    def test_store_failure_is_logged_not_raised(
        self,
        db_session: Session,
        test_user: db_models.User,
        captured_logs: list[str],
    ) -> None:
        with patch.object(
            SecurityEventRepository,
            "append",
            side_effect=OperationalError("INSERT", {}, Exception("disk full")),
        ):
            result = SecurityEventService.record(
                db_session,
                SecurityEventType.ACCOUNT_LOCKED,
                user_id=test_user.id,
                metadata={"locked_until": "soon"},
            )

        assert result is None
        assert any(
            "Security event not persisted: account_locked" in m for m in captured_logs
        )
        # Session is usable again after the rollback
        assert db_session.query(db_models.SecurityEvent).count() == 0

    def test_masks_ip_in_log_line(self, db_session: Session) -> None:
        handler_records: list[dict] = []
        handler_id = logger.add(lambda m: handler_records.append(m.record["extra"]))
        try:
            SecurityEventService.record(
                db_session, SecurityEventType.LOGIN_FAILED, ip_address="203.0.113.9"
            )
        finally:
            logger.remove(handler_id)

        assert any(extra.get("ip_address") == "203.x.x.x" for extra in handler_records)


class TestQueries:
    """Tests for reading the audit trail."""

    def test_events_for_user_newest_first(
        self,
        db_session: Session,
        test_user: db_models.User,
        other_user: db_models.User,
    ) -> None:
        SecurityEventService.record(db_session, "login_failed", user_id=test_user.id)
        SecurityEventService.record(db_session, "login_success", user_id=test_user.id)
        SecurityEventService.record(db_session, "logout", user_id=other_user.id)

        events = SecurityEventService.events_for_user(db_session, test_user.id)

        assert [e.event_type for e in events] == ["login_success", "login_failed"]

    def test_events_by_type(self, db_session: Session) -> None:
        SecurityEventService.record(db_session, "logout")
        SecurityEventService.record(db_session, "login_failed")

        events = SecurityEventService.events_by_type(
            db_session, SecurityEventType.LOGOUT
        )

        assert len(events) == 1
        assert events[0].event_type == "logout"

    def test_recent_events_respects_since(self, db_session: Session) -> None:
        old = SecurityEventService.record(db_session, "logout")
        row = db_session.get(db_models.SecurityEvent, old.id)
        row.created_at = utc_now() - timedelta(days=2)
        db_session.commit()
        SecurityEventService.record(db_session, "login_success")

        events = SecurityEventService.recent_events(
            db_session, since=utc_now() - timedelta(hours=1)
        )

        assert [e.event_type for e in events] == ["login_success"]

    def test_failed_login_sources_above_threshold(self, db_session: Session) -> None:
        for _ in range(4):
            SecurityEventService.record(
                db_session, "login_failed", ip_address="192.0.2.1"
            )
        for _ in range(2):
            SecurityEventService.record(
                db_session, "login_failed", ip_address="192.0.2.2"
            )

        sources = SecurityEventService.failed_login_sources(db_session, threshold=3)

        assert [(s.ip_address, s.attempts) for s in sources] == [("192.0.2.1", 4)]


class TestSweep:
    """Tests for security event retention."""

    def test_deletes_only_older_events(self, db_session: Session) -> None:
        old = SecurityEventService.record(db_session, "logout")
        row = db_session.get(db_models.SecurityEvent, old.id)
        row.created_at = utc_now() - timedelta(days=400)
        db_session.commit()
        SecurityEventService.record(db_session, "login_success")

        assert SecurityEventService.sweep_older_than(db_session) == 1
        assert db_session.query(db_models.SecurityEvent).count() == 1
