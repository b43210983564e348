"""
Security Event Repository.

Append-only data access for the audit trail. There is deliberately no
update method.
"""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from repositories import db_models
from repositories.base import BaseRepository


class SecurityEventRepository(BaseRepository[db_models.SecurityEvent]):
    """Repository for security event operations."""

    def __init__(self, db: Session):
        """Initialize repository."""
        super().__init__(db_models.SecurityEvent, db)

    def append(
        self,
        event_type: str,
        created_at: datetime,
        user_id: Optional[int] = None,
        description: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> db_models.SecurityEvent:
        """Insert one event row."""
        event = db_models.SecurityEvent(
            event_type=event_type,
            user_id=user_id,
            description=description,
            ip_address=ip_address,
            user_agent=user_agent[:500] if user_agent else None,
            event_metadata=metadata,
            created_at=created_at,
        )
        self.db.add(event)
        self.db.flush()
        return event

    def _newest_first(self, query):  # type: ignore[no-untyped-def]
        return query.order_by(self.model.created_at.desc(), self.model.id.desc())

    def get_since(self, since: datetime, limit: int) -> list[db_models.SecurityEvent]:
        """Events created at or after `since`, newest first."""
        return (
            self._newest_first(
                self.db.query(self.model).filter(self.model.created_at >= since)
            )
            .limit(limit)
            .all()
        )

    def get_by_type(
        self, event_type: str, limit: int, offset: int
    ) -> list[db_models.SecurityEvent]:
        """Events of one type, newest first."""
        return (
            self._newest_first(
                self.db.query(self.model).filter(self.model.event_type == event_type)
            )
            .offset(offset)
            .limit(limit)
            .all()
        )

    def get_for_user(
        self, user_id: int, limit: int, offset: int
    ) -> list[db_models.SecurityEvent]:
        """Events concerning one user, newest first."""
        return (
            self._newest_first(
                self.db.query(self.model).filter(self.model.user_id == user_id)
            )
            .offset(offset)
            .limit(limit)
            .all()
        )

    def get_failed_logins_by_ip(
        self,
        event_type: str,
        since: datetime,
        threshold: int,
    ) -> list[tuple[str, int]]:
        """
        Get IPs with failed logins exceeding threshold.

        Args:
            event_type: Event type to filter
            since: Start time for search
            threshold: Counts strictly above this are included

        Returns:
            List of (ip_address, count) tuples, highest count first
        """
        count = func.count(self.model.id)
        rows = (
            self.db.query(self.model.ip_address, count.label("count"))
            .filter(
                self.model.event_type == event_type,
                self.model.created_at >= since,
                self.model.ip_address.isnot(None),
            )
            .group_by(self.model.ip_address)
            .having(count > threshold)
            .order_by(count.desc())
            .all()
        )
        return [(str(row[0]), int(row[1])) for row in rows]

    def delete_before(self, cutoff: datetime) -> int:
        """Delete events created before the cutoff."""
        result = (
            self.db.query(self.model)
            .filter(self.model.created_at < cutoff)
            .delete(synchronize_session=False)
        )
        self.db.flush()
        return result  # type: ignore[return-value]
