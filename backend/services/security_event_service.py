"""
Security event logger.

Append-only audit trail of security-relevant actions. Writing an event
never fails the caller: if the row cannot be stored the event is written to
the application log instead, at error level, with its full payload.
"""

from datetime import datetime, timedelta
from typing import Any, Optional, Union

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import models.schemas as schemas
from helpers.store_errors import translate_store_errors
from helpers.time_utils import mask_ip_address, utc_now
from models.config import settings
from models.security_event_types import SecurityEventType
from repositories.security_event_repository import SecurityEventRepository


class SecurityEventService:
    """Service for security event recording and review."""

    @staticmethod
    def record(
        db: Session,
        event_type: Union[SecurityEventType, str],
        user_id: Optional[int] = None,
        description: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Optional[schemas.SecurityEventRecord]:
        """
        Append one immutable event.

        Args:
            db: Database session (committed by this call)
            event_type: Event tag
            user_id: Account concerned, absent for anonymous/system events
            description: Free text
            ip_address: Client IP address
            user_agent: Client user agent string
            metadata: Structured details

        Returns:
            The stored event, or None if it could only be written to the log
        """
        try:
            event_type = SecurityEventType(event_type)
        except ValueError:
            logger.error(
                f"Security event not persisted: unknown type {event_type!r} "
                f"(user_id={user_id}, description={description!r})"
            )
            return None

        log_data = {
            "event_type": event_type.value,
            "user_id": user_id,
            "ip_address": mask_ip_address(ip_address),
        }

        try:
            repo = SecurityEventRepository(db)
            event = repo.append(
                event_type=event_type.value,
                created_at=utc_now(),
                user_id=user_id,
                description=description,
                ip_address=ip_address,
                user_agent=user_agent,
                metadata=metadata,
            )
            repo.commit()
            stored = schemas.SecurityEventRecord.model_validate(event)
        except SQLAlchemyError as e:
            db.rollback()
            logger.bind(**log_data).error(
                f"Security event not persisted: {event_type.value} "
                f"(description={description!r}, metadata={metadata!r}): {e}"
            )
            return None

        if event_type.severity == "critical":
            logger.bind(**log_data).critical(f"Security event: {event_type.value}")
        elif event_type.severity == "warning":
            logger.bind(**log_data).warning(f"Security event: {event_type.value}")
        else:
            logger.bind(**log_data).info(f"Security event: {event_type.value}")

        return stored

    @staticmethod
    def recent_events(
        db: Session, since: datetime, limit: int = 100
    ) -> list[schemas.SecurityEventRecord]:
        """Events created at or after `since`, newest first."""
        with translate_store_errors(db, "security_event.recent_events"):
            events = SecurityEventRepository(db).get_since(since, limit)
        return [schemas.SecurityEventRecord.model_validate(e) for e in events]

    @staticmethod
    def events_by_type(
        db: Session,
        event_type: Union[SecurityEventType, str],
        limit: int = 100,
        offset: int = 0,
    ) -> list[schemas.SecurityEventRecord]:
        """Events of one type, newest first."""
        event_type = SecurityEventType(event_type)
        with translate_store_errors(db, "security_event.events_by_type"):
            events = SecurityEventRepository(db).get_by_type(
                event_type.value, limit, offset
            )
        return [schemas.SecurityEventRecord.model_validate(e) for e in events]

    @staticmethod
    def events_for_user(
        db: Session, user_id: int, limit: int = 50, offset: int = 0
    ) -> list[schemas.SecurityEventRecord]:
        """Events concerning one account, newest first."""
        with translate_store_errors(db, "security_event.events_for_user"):
            events = SecurityEventRepository(db).get_for_user(user_id, limit, offset)
        return [schemas.SecurityEventRecord.model_validate(e) for e in events]

    @staticmethod
    def failed_login_sources(
        db: Session,
        since: Optional[datetime] = None,
        threshold: Optional[int] = None,
    ) -> list[schemas.FailedLoginSource]:
        """
        IPs with more failed logins than the brute-force threshold.

        Args:
            db: Database session
            since: Start of the window (default: one hour ago)
            threshold: Counts strictly above this are reported
                (default: SECURITY_BRUTE_FORCE_THRESHOLD)
        """
        since = since or utc_now() - timedelta(hours=1)
        threshold = (
            settings.SECURITY_BRUTE_FORCE_THRESHOLD if threshold is None else threshold
        )
        with translate_store_errors(db, "security_event.failed_login_sources"):
            rows = SecurityEventRepository(db).get_failed_logins_by_ip(
                event_type=SecurityEventType.LOGIN_FAILED.value,
                since=since,
                threshold=threshold,
            )
        return [
            schemas.FailedLoginSource(ip_address=ip, attempts=count)
            for ip, count in rows
        ]

    @staticmethod
    def sweep_older_than(db: Session, cutoff: Optional[datetime] = None) -> int:
        """
        Delete events created before the cutoff.

        Args:
            db: Database session
            cutoff: Oldest creation time to keep
                (default: now - SECURITY_EVENT_RETENTION_DAYS)

        Returns:
            Number of events deleted
        """
        cutoff = cutoff or utc_now() - timedelta(
            days=settings.SECURITY_EVENT_RETENTION_DAYS
        )
        repo = SecurityEventRepository(db)
        with translate_store_errors(db, "security_event.sweep_older_than"):
            deleted = repo.delete_before(cutoff)
            repo.commit()
        if deleted:
            logger.info(f"Deleted {deleted} security events older than {cutoff.isoformat()}")
        return deleted
