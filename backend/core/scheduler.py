"""
Background Task Scheduler for Security Sweepers.

Uses APScheduler for reliable scheduled task execution. Lockout and session
expiry sweeps run on a short interval; token and audit-event retention run
once a day.
"""

from typing import Iterable

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from loguru import logger

from core.correlation import correlation_scope
from models.config import settings
from repositories.database import SessionLocal


# Global scheduler instance
scheduler: BackgroundScheduler | None = None


def _run_sweep(names: Iterable[str], label: str) -> dict:
    from services.sweeper_service import SweeperService

    with correlation_scope():
        logger.info(f"Running scheduled {label} sweep")

        db = SessionLocal()
        try:
            report = SweeperService.run_jobs(db, names)
            return report.model_dump()
        except Exception as e:
            logger.error(f"Scheduled {label} sweep failed: {e}")
            raise
        finally:
            db.close()


def expiry_sweep_job() -> None:
    """Scheduled job clearing expired locks and sessions."""
    from services.sweeper_service import FREQUENT_JOBS

    _run_sweep(FREQUENT_JOBS, "expiry")


def retention_sweep_job() -> None:
    """Scheduled job deleting expired tokens and old security events."""
    from services.sweeper_service import DAILY_JOBS

    _run_sweep(DAILY_JOBS, "retention")


def setup_scheduler() -> None:
    """
    Configure and start the background scheduler.

    Schedules:
    - Expiry sweep: every SWEEPER_INTERVAL_MINUTES
    - Retention sweep: daily at RETENTION_SWEEP_HOUR (UTC)
    """
    global scheduler

    if scheduler is not None:
        logger.warning("Scheduler already initialized")
        return

    scheduler = BackgroundScheduler(timezone="UTC")

    scheduler.add_job(
        expiry_sweep_job,
        IntervalTrigger(minutes=settings.SWEEPER_INTERVAL_MINUTES),
        id="expiry_sweep",
        name="Lockout and Session Expiry Sweep",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.add_job(
        retention_sweep_job,
        CronTrigger(hour=settings.RETENTION_SWEEP_HOUR, minute=0),
        id="retention_sweep",
        name="Token and Security Event Retention Sweep",
        replace_existing=True,
        misfire_grace_time=3600,  # 1 hour grace for missed jobs
    )

    scheduler.start()
    logger.info(
        f"Background scheduler started: expiry sweep every "
        f"{settings.SWEEPER_INTERVAL_MINUTES} min, retention sweep at "
        f"{settings.RETENTION_SWEEP_HOUR:02d}:00 UTC"
    )


def shutdown_scheduler() -> None:
    """Gracefully shutdown the scheduler."""
    global scheduler

    if scheduler is not None and scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("Background scheduler stopped")
    scheduler = None


def get_scheduler_status() -> dict:
    """Get current scheduler status for monitoring."""
    global scheduler

    if scheduler is None:
        return {"running": False, "jobs": []}

    jobs = []
    for job in scheduler.get_jobs():
        jobs.append(
            {
                "id": job.id,
                "name": job.name,
                "next_run_time": (
                    job.next_run_time.isoformat() if job.next_run_time else None
                ),
            }
        )

    return {"running": scheduler.running, "jobs": jobs}


def trigger_sweep_now() -> dict:
    """
    Manually run every sweep (for admin use).

    Returns:
        Sweep report as a dictionary
    """
    from services.sweeper_service import SWEEP_JOBS

    logger.info("Manual sweep triggered")
    return _run_sweep(SWEEP_JOBS.keys(), "manual")
