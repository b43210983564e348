"""Repository for account lockout counters."""

from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import and_, case, or_
from sqlalchemy.orm import Session

from repositories.base import BaseRepository
from repositories.db_models import AccountLockout


class LockoutRepository(BaseRepository[AccountLockout]):
    """
    Data access for `account_lockouts`.

    Every mutation is a single statement so concurrent failed logins cannot
    lose an increment or start two lock cycles.
    """

    def __init__(self, db: Session):
        """Initialize the repository."""
        super().__init__(AccountLockout, db)

    def get_by_user(self, user_id: int) -> Optional[AccountLockout]:
        """Get the lockout row for a user, bypassing the identity map."""
        return (
            self.db.query(AccountLockout)
            .filter(AccountLockout.user_id == user_id)
            .populate_existing()
            .first()
        )

    def is_locked(self, user_id: int, now: datetime) -> bool:
        """Check for an unexpired lock in the store."""
        return (
            self.db.query(AccountLockout.id)
            .filter(
                AccountLockout.user_id == user_id,
                AccountLockout.is_locked_at(now),
            )
            .first()
            is not None
        )

    def record_failure(
        self,
        user_id: int,
        now: datetime,
        threshold: int,
        lock_duration: timedelta,
    ) -> tuple[int, Optional[datetime], Optional[datetime]]:
        """
        Increment the failure counter and apply the lock in one statement.

        Inserts the row on the first failure. The lock is set only when the
        new count reaches the threshold and no lock is currently running, so
        a failure during an active lock never extends it.

        Returns:
            Tuple of (failed_attempts, last_failed_attempt, locked_until)
        """
        lock_until = now + lock_duration
        table = AccountLockout.__table__
        new_count = table.c.failed_attempts + 1

        stmt = self.upsert().values(
            user_id=user_id,
            failed_attempts=1,
            last_failed_attempt=now,
            locked_until=lock_until if threshold <= 1 else None,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.user_id],
            set_={
                "failed_attempts": new_count,
                "last_failed_attempt": now,
                "updated_at": now,
                "locked_until": case(
                    (
                        and_(
                            new_count >= threshold,
                            or_(
                                table.c.locked_until.is_(None),
                                table.c.locked_until <= now,
                            ),
                        ),
                        lock_until,
                    ),
                    else_=table.c.locked_until,
                ),
            },
        ).returning(
            table.c.failed_attempts,
            table.c.last_failed_attempt,
            table.c.locked_until,
        )
        row = self.db.execute(stmt).one()
        self.db.flush()
        return row.failed_attempts, row.last_failed_attempt, row.locked_until

    def reset(self, user_id: int, now: datetime) -> int:
        """Clear counter, last failure and lock after a successful login."""
        result = (
            self.db.query(AccountLockout)
            .filter(AccountLockout.user_id == user_id)
            .update(
                {
                    "failed_attempts": 0,
                    "last_failed_attempt": None,
                    "locked_until": None,
                    "updated_at": now,
                },
                synchronize_session=False,
            )
        )
        self.db.flush()
        return result  # type: ignore[return-value]

    def unlock(self, user_id: int, now: datetime) -> int:
        """Clear counter and lock unconditionally (administrative override)."""
        result = (
            self.db.query(AccountLockout)
            .filter(AccountLockout.user_id == user_id)
            .update(
                {"failed_attempts": 0, "locked_until": None, "updated_at": now},
                synchronize_session=False,
            )
        )
        self.db.flush()
        return result  # type: ignore[return-value]

    def clear_expired_locks(self, now: datetime) -> int:
        """Clear counter and lock on every row whose lock has elapsed."""
        result = (
            self.db.query(AccountLockout)
            .filter(AccountLockout.lock_expired_at(now))
            .update(
                {"failed_attempts": 0, "locked_until": None, "updated_at": now},
                synchronize_session=False,
            )
        )
        self.db.flush()
        return result  # type: ignore[return-value]
