"""Repository for user sessions."""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy.orm import Session

from repositories.base import BaseRepository
from repositories.db_models import UserSession


class SessionRepository(BaseRepository[UserSession]):
    """Data access for `user_sessions`. Tokens arrive here already hashed."""

    def __init__(self, db: Session):
        """Initialize the repository."""
        super().__init__(UserSession, db)

    def create_session(
        self,
        user_id: int,
        session_token_hash: str,
        refresh_token_hash: str,
        expires_at: datetime,
        now: datetime,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        device_info: Optional[dict[str, Any]] = None,
    ) -> UserSession:
        """Insert a new active session."""
        record = UserSession(
            user_id=user_id,
            session_token_hash=session_token_hash,
            refresh_token_hash=refresh_token_hash,
            expires_at=expires_at,
            ip_address=ip_address,
            user_agent=user_agent,
            device_info=device_info,
            is_active=True,
            last_used_at=now,
            created_at=now,
        )
        self.db.add(record)
        self.db.flush()
        return record

    def get_usable_by_token_hash(
        self, session_token_hash: str, now: datetime
    ) -> Optional[UserSession]:
        """Get a session by token hash if it is active and unexpired."""
        return (
            self.db.query(UserSession)
            .filter(
                UserSession.session_token_hash == session_token_hash,
                UserSession.is_usable_at(now),
            )
            .populate_existing()
            .first()
        )

    def get_usable_by_refresh_hash(
        self, refresh_token_hash: str, now: datetime
    ) -> Optional[UserSession]:
        """Get a session by refresh token hash if it is active and unexpired."""
        return (
            self.db.query(UserSession)
            .filter(
                UserSession.refresh_token_hash == refresh_token_hash,
                UserSession.is_usable_at(now),
            )
            .populate_existing()
            .first()
        )

    def touch(self, session_token_hash: str, now: datetime) -> int:
        """Stamp last_used_at."""
        result = (
            self.db.query(UserSession)
            .filter(UserSession.session_token_hash == session_token_hash)
            .update({"last_used_at": now}, synchronize_session=False)
        )
        self.db.flush()
        return result  # type: ignore[return-value]

    def rotate_session_token(
        self, refresh_token_hash: str, new_session_token_hash: str, now: datetime
    ) -> int:
        """
        Swap in a new session token for a usable session found by refresh token.

        The refresh token and expiry are left unchanged. Returns the number of
        rows updated (0 or 1).
        """
        result = (
            self.db.query(UserSession)
            .filter(
                UserSession.refresh_token_hash == refresh_token_hash,
                UserSession.is_usable_at(now),
            )
            .update(
                {"session_token_hash": new_session_token_hash, "last_used_at": now},
                synchronize_session=False,
            )
        )
        self.db.flush()
        return result  # type: ignore[return-value]

    def deactivate(self, session_token_hash: str) -> int:
        """Deactivate one session. Already inactive sessions are left as is."""
        result = (
            self.db.query(UserSession)
            .filter(
                UserSession.session_token_hash == session_token_hash,
                UserSession.is_active == True,  # noqa: E712
            )
            .update({"is_active": False}, synchronize_session=False)
        )
        self.db.flush()
        return result  # type: ignore[return-value]

    def deactivate_all_for_user(
        self, user_id: int, except_token_hash: Optional[str] = None
    ) -> int:
        """Deactivate every active session of a user, optionally sparing one."""
        query = self.db.query(UserSession).filter(
            UserSession.user_id == user_id,
            UserSession.is_active == True,  # noqa: E712
        )
        if except_token_hash:
            query = query.filter(UserSession.session_token_hash != except_token_hash)
        result = query.update({"is_active": False}, synchronize_session=False)
        self.db.flush()
        return result  # type: ignore[return-value]

    def list_usable_for_user(self, user_id: int, now: datetime) -> list[UserSession]:
        """Active, unexpired sessions of a user, most recently used first."""
        return (
            self.db.query(UserSession)
            .filter(UserSession.user_id == user_id, UserSession.is_usable_at(now))
            .order_by(UserSession.last_used_at.desc(), UserSession.id.desc())
            .all()
        )

    def deactivate_expired(self, now: datetime) -> int:
        """Deactivate every active session whose expiry has passed."""
        result = (
            self.db.query(UserSession)
            .filter(
                UserSession.is_active == True,  # noqa: E712
                ~UserSession.is_usable_at(now),
            )
            .update({"is_active": False}, synchronize_session=False)
        )
        self.db.flush()
        return result  # type: ignore[return-value]

    def delete_inactive_before(self, cutoff: datetime) -> int:
        """Delete inactive sessions last used before the cutoff."""
        result = (
            self.db.query(UserSession)
            .filter(
                UserSession.is_active == False,  # noqa: E712
                UserSession.last_used_at < cutoff,
            )
            .delete(synchronize_session=False)
        )
        self.db.flush()
        return result  # type: ignore[return-value]
