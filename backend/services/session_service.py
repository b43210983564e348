"""
Session manager.

Issues, validates, rotates and revokes session/refresh token pairs. A
session is usable iff it is active and unexpired; both conditions are
checked on every read, so expiry needs no sweeper to take effect.

Token values are returned to the caller once and only their SHA-256
hashes are stored.
"""

import hashlib
import secrets
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import timedelta
from typing import Optional

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

import models.schemas as schemas
from helpers.store_errors import translate_store_errors
from helpers.time_utils import utc_now
from models.config import settings
from models.exceptions import SessionNotFoundException
from repositories.database import SessionLocal, session_scope
from repositories.session_repository import SessionRepository

# Worker for fire-and-forget last_used_at updates
_touch_executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="session-touch")


class SessionService:
    """Service for session credential lifecycle."""

    @staticmethod
    def generate_token() -> str:
        """Generate an opaque, URL-safe bearer token."""
        return secrets.token_urlsafe(settings.SESSION_TOKEN_BYTES)

    @staticmethod
    def hash_token(token: str) -> str:
        """SHA-256 hex digest used as the stored lookup key."""
        return hashlib.sha256(token.encode("utf-8")).hexdigest()

    @staticmethod
    def create_session(
        db: Session,
        user_id: int,
        context: Optional[schemas.ClientContext] = None,
        ttl: Optional[timedelta] = None,
    ) -> schemas.IssuedSession:
        """
        Issue a new session for a user.

        Args:
            db: Database session
            user_id: Owning account
            context: Client IP, user agent and device metadata (informational)
            ttl: Session lifetime, defaults to SESSION_TTL_HOURS

        Returns:
            The stored session plus both plaintext tokens

        Raises:
            InfrastructureException: If the session could not be stored
        """
        context = context or schemas.ClientContext()
        now = utc_now()
        if ttl is None:
            ttl = timedelta(hours=settings.SESSION_TTL_HOURS)
        expires_at = now + ttl
        session_token = SessionService.generate_token()
        refresh_token = SessionService.generate_token()

        repo = SessionRepository(db)
        with translate_store_errors(db, "session.create"):
            record = repo.create_session(
                user_id=user_id,
                session_token_hash=SessionService.hash_token(session_token),
                refresh_token_hash=SessionService.hash_token(refresh_token),
                expires_at=expires_at,
                now=now,
                ip_address=context.ip_address,
                user_agent=context.user_agent,
                device_info=context.device_info,
            )
            repo.commit()
            info = schemas.SessionInfo.model_validate(record)

        logger.info(f"Session issued: user_id={user_id}, session_id={info.id}")
        return schemas.IssuedSession(
            **info.model_dump(),
            session_token=session_token,
            refresh_token=refresh_token,
        )

    @staticmethod
    def validate_session(db: Session, session_token: str) -> schemas.SessionInfo:
        """
        Look up a usable session by its token.

        Raises:
            SessionNotFoundException: If the token is unknown, revoked or expired
            InfrastructureException: If the store could not be read
        """
        with translate_store_errors(db, "session.validate"):
            record = SessionRepository(db).get_usable_by_token_hash(
                SessionService.hash_token(session_token), utc_now()
            )
        if record is None:
            raise SessionNotFoundException()
        return schemas.SessionInfo.model_validate(record)

    @staticmethod
    def touch(db: Session, session_token: str) -> None:
        """
        Stamp last_used_at. Best effort: failures are logged, never raised.
        """
        repo = SessionRepository(db)
        try:
            repo.touch(SessionService.hash_token(session_token), utc_now())
            repo.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.warning(f"Session touch failed: {e.__class__.__name__}: {e}")

    @staticmethod
    def touch_in_background(
        session_token: str, session_factory: sessionmaker = SessionLocal
    ) -> Future:
        """
        Schedule `touch` on a worker thread with its own database session.

        The returned future always resolves to None.
        """

        def _run() -> None:
            try:
                with session_scope(session_factory) as db:
                    SessionService.touch(db, session_token)
            except SQLAlchemyError as e:
                logger.warning(f"Background session touch failed: {e}")

        return _touch_executor.submit(_run)

    @staticmethod
    def refresh(db: Session, refresh_token: str) -> schemas.IssuedSession:
        """
        Mint a new session token for the session owning `refresh_token`.

        The refresh token itself is not rotated and is returned unchanged.
        The old session token stops working and the expiry is not extended.

        The existing row is updated in place instead of inserting a new
        session: the refresh token hash is unique per row, and an unrotated
        refresh token can only ever belong to one session.

        Raises:
            SessionNotFoundException: If the refresh token is unknown, revoked or expired
            InfrastructureException: If the store could not be updated
        """
        now = utc_now()
        new_session_token = SessionService.generate_token()
        new_hash = SessionService.hash_token(new_session_token)
        repo = SessionRepository(db)

        with translate_store_errors(db, "session.refresh"):
            rotated = repo.rotate_session_token(
                SessionService.hash_token(refresh_token), new_hash, now
            )
            repo.commit()
            if rotated == 0:
                raise SessionNotFoundException()
            record = repo.get_usable_by_token_hash(new_hash, now)

        if record is None:
            raise SessionNotFoundException()

        info = schemas.SessionInfo.model_validate(record)
        logger.info(f"Session refreshed: user_id={info.user_id}, session_id={info.id}")
        return schemas.IssuedSession(
            **info.model_dump(),
            session_token=new_session_token,
            refresh_token=refresh_token,
        )

    @staticmethod
    def revoke(db: Session, session_token: str) -> bool:
        """
        Deactivate one session. Idempotent.

        Returns:
            True if an active session was deactivated by this call
        """
        repo = SessionRepository(db)
        with translate_store_errors(db, "session.revoke"):
            updated = repo.deactivate(SessionService.hash_token(session_token))
            repo.commit()
        return updated > 0

    @staticmethod
    def revoke_all(
        db: Session, user_id: int, except_session_token: Optional[str] = None
    ) -> int:
        """
        Deactivate every active session of a user.

        Args:
            db: Database session
            user_id: Account whose sessions are revoked
            except_session_token: Session to keep (e.g. the one changing the password)

        Returns:
            Number of sessions deactivated
        """
        except_hash = (
            SessionService.hash_token(except_session_token)
            if except_session_token
            else None
        )
        repo = SessionRepository(db)
        with translate_store_errors(db, "session.revoke_all"):
            revoked = repo.deactivate_all_for_user(user_id, except_hash)
            repo.commit()
        if revoked:
            logger.info(f"Revoked {revoked} sessions: user_id={user_id}")
        return revoked

    @staticmethod
    def list_active(db: Session, user_id: int) -> list[schemas.SessionInfo]:
        """Usable sessions of a user, most recently used first."""
        with translate_store_errors(db, "session.list_active"):
            records = SessionRepository(db).list_usable_for_user(user_id, utc_now())
        return [schemas.SessionInfo.model_validate(r) for r in records]

    @staticmethod
    def sweep_expired(db: Session) -> dict[str, int]:
        """
        Deactivate expired sessions, then delete long-inactive ones.

        Returns:
            Dictionary with counts of deactivated and deleted sessions
        """
        now = utc_now()
        cutoff = now - timedelta(days=settings.SESSION_INACTIVE_RETENTION_DAYS)
        repo = SessionRepository(db)

        with translate_store_errors(db, "session.sweep_expired"):
            deactivated = repo.deactivate_expired(now)
            deleted = repo.delete_inactive_before(cutoff)
            repo.commit()

        if deactivated or deleted:
            logger.info(
                f"Session sweep: deactivated {deactivated} expired, "
                f"deleted {deleted} inactive"
            )
        return {"deactivated_count": deactivated, "deleted_count": deleted}
