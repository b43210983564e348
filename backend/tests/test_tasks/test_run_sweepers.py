"""Tests for the sweep task and the background scheduler."""

from datetime import timedelta
from unittest.mock import patch

import pytest
from sqlalchemy.orm import Session

import core.scheduler as scheduler_module
import repositories.db_models as db_models
from helpers.time_utils import utc_now
from services.session_service import SessionService
from tasks.run_sweepers import run_sweepers


class TestRunSweepers:
    """Tests for the standalone sweep task."""

    def test_runs_all_jobs_by_default(
        self, db_session: Session, test_user: db_models.User
    ) -> None:
        session = SessionService.create_session(db_session, test_user.id)
        row = db_session.get(db_models.UserSession, session.id)
        row.expires_at = utc_now() - timedelta(minutes=5)
        db_session.commit()

        result = run_sweepers(db=db_session)

        assert result["failures"] == []
        assert result["results"]["sessions_deactivated"] == 1
        assert "security_events" in result["results"]

    def test_runs_selected_jobs(self, db_session: Session) -> None:
        result = run_sweepers(db=db_session, jobs=["expired_locks"])

        assert result == {"results": {"expired_locks": 0}, "failures": []}

    def test_does_not_close_injected_session(self, db_session: Session) -> None:
        run_sweepers(db=db_session, jobs=["expired_tokens"])

        # Session still usable
        assert db_session.query(db_models.SecurityEvent).count() == 0


class TestScheduler:
    """Tests for scheduler setup and teardown."""

    @pytest.fixture(autouse=True)
    def _reset(self):
        scheduler_module.shutdown_scheduler()
        yield
        scheduler_module.shutdown_scheduler()

    def test_status_when_not_started(self) -> None:
        assert scheduler_module.get_scheduler_status() == {"running": False, "jobs": []}

    def test_setup_registers_both_jobs(self) -> None:
        scheduler_module.setup_scheduler()

        status = scheduler_module.get_scheduler_status()

        assert status["running"] is True
        assert {job["id"] for job in status["jobs"]} == {
            "expiry_sweep",
            "retention_sweep",
        }
        assert all(job["next_run_time"] for job in status["jobs"])

    def test_setup_twice_is_harmless(self) -> None:
        scheduler_module.setup_scheduler()
        first = scheduler_module.scheduler

        scheduler_module.setup_scheduler()

        assert scheduler_module.scheduler is first

    def test_trigger_now_uses_own_session(self, session_factory) -> None:
        with patch.object(scheduler_module, "SessionLocal", session_factory):
            report = scheduler_module.trigger_sweep_now()

        assert report["failures"] == []
        assert set(report["results"]) >= {"expired_locks", "expired_tokens"}
