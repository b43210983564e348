#!/usr/bin/env python3
"""
Run the security housekeeping sweeps once.

- Expired account locks are cleared
- Expired sessions are deactivated, long-inactive ones deleted
- Verification and reset tokens past retention are deleted
- Security events past retention are deleted

This script can be run:
- Via cron: */15 * * * * cd /path/to/backend && python -m tasks.run_sweepers
- Manually: python -m tasks.run_sweepers [job ...]

The in-process scheduler (core.scheduler) runs the same jobs.
"""

import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Iterable

# Add backend to path for imports
backend_path = Path(__file__).parent.parent
sys.path.insert(0, str(backend_path))

from loguru import logger  # noqa: E402

from core.correlation import correlation_scope  # noqa: E402
from repositories.database import SessionLocal  # noqa: E402
from services.sweeper_service import SWEEP_JOBS, SweeperService  # noqa: E402

if TYPE_CHECKING:
    from sqlalchemy.orm import Session


def run_sweepers(
    db: "Session | None" = None,
    jobs: Iterable[str] | None = None,
) -> dict:
    """
    Run the sweeps.

    Args:
        db: Optional database session. If not provided, creates a new session.
        jobs: Job names to run (default: all of them)

    Returns:
        Dictionary with per-job counts under "results" and failed job
        names under "failures"
    """
    should_close = db is None
    if db is None:
        db = SessionLocal()

    try:
        with correlation_scope():
            logger.info("Starting security sweep task")
            start_time = datetime.now(timezone.utc)

            report = SweeperService.run_jobs(
                db, SWEEP_JOBS.keys() if jobs is None else jobs
            )

            elapsed = (datetime.now(timezone.utc) - start_time).total_seconds()
            logger.info(f"Security sweep completed in {elapsed:.2f}s")
            return report.model_dump()

    except Exception as e:
        logger.error(f"Security sweep failed: {e}")
        raise
    finally:
        if should_close:
            db.close()


if __name__ == "__main__":
    logger.remove()
    logger.add(
        sys.stderr,
        format="{time:YYYY-MM-DD HH:mm:ss} | {level} | {message}",
        level="INFO",
    )

    try:
        result = run_sweepers(jobs=sys.argv[1:] or None)
        print(f"Sweep completed: {result}")
        sys.exit(1 if result["failures"] else 0)
    except Exception as e:
        print(f"Sweep failed: {e}", file=sys.stderr)
        sys.exit(1)
