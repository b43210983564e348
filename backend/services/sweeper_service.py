"""
Housekeeping sweeps for the security tables.

None of these are needed for correctness: every read already applies the
same expiry rule. They bound storage growth and keep point lookups cheap.
Each job is idempotent and independent, so one failing does not stop the
others and any of them can run alongside live traffic.
"""

from typing import Callable, Iterable

from loguru import logger
from sqlalchemy.orm import Session

import models.schemas as schemas
from models.exceptions import InfrastructureException
from services.lockout_service import LockoutService
from services.security_event_service import SecurityEventService
from services.session_service import SessionService
from services.token_service import TokenService


def _sweep_sessions(db: Session) -> dict[str, int]:
    counts = SessionService.sweep_expired(db)
    return {
        "sessions_deactivated": counts["deactivated_count"],
        "sessions_deleted": counts["deleted_count"],
    }


# Job name -> callable returning {result key: rows touched}
SWEEP_JOBS: dict[str, Callable[[Session], dict[str, int]]] = {
    "expired_locks": lambda db: {
        "expired_locks": LockoutService.sweep_expired_locks(db)
    },
    "sessions": _sweep_sessions,
    "expired_tokens": lambda db: {"expired_tokens": TokenService.sweep_expired(db)},
    "security_events": lambda db: {
        "security_events": SecurityEventService.sweep_older_than(db)
    },
}

# Jobs run on the short interval; the rest run once a day
FREQUENT_JOBS = ("expired_locks", "sessions")
DAILY_JOBS = ("expired_tokens", "security_events")


class SweeperService:
    """Runs the housekeeping sweeps."""

    @staticmethod
    def run_jobs(db: Session, names: Iterable[str]) -> schemas.SweepReport:
        """
        Run the named sweeps one after another.

        A job that hits a store failure is reported in `failures` and the
        remaining jobs still run.

        Raises:
            KeyError: If a job name is unknown
        """
        jobs = [(name, SWEEP_JOBS[name]) for name in names]
        report = schemas.SweepReport()

        for name, job in jobs:
            try:
                report.results.update(job(db))
            except InfrastructureException as e:
                logger.error(f"Sweep job {name} failed: {e.message}")
                report.failures.append(name)

        logger.info(f"Sweep complete: {report.results}, failures: {report.failures}")
        return report

    @staticmethod
    def run_all(db: Session) -> schemas.SweepReport:
        """Run every sweep once."""
        return SweeperService.run_jobs(db, SWEEP_JOBS.keys())
