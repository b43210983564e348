"""
User repository for database operations.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

import repositories.db_models as db_models
from .base import BaseRepository


class UserRepository(BaseRepository[db_models.User]):
    """Repository for the account rows the security services reference."""

    def __init__(self, db: Session):
        """
        Initialize user repository.

        Args:
            db: Database session
        """
        super().__init__(db_models.User, db)

    def get_by_email(self, email: str) -> Optional[db_models.User]:
        """
        Get user by email.

        Args:
            email: User email

        Returns:
            User if found, None otherwise
        """
        return (
            self.db.query(db_models.User)
            .filter(db_models.User.email == email.strip().lower())
            .first()
        )

    def get_active_by_email(self, email: str) -> Optional[db_models.User]:
        """
        Get active user by email.

        Args:
            email: User email

        Returns:
            User if found and active, None otherwise
        """
        return (
            self.db.query(db_models.User)
            .filter(
                db_models.User.email == email.strip().lower(),
                db_models.User.is_active == True,  # noqa: E712
            )
            .first()
        )

    def create_user(self, email: str, hashed_password: str) -> db_models.User:
        """Insert an account row. Email is stored lower-cased."""
        user = db_models.User(
            email=email.strip().lower(), hashed_password=hashed_password
        )
        self.db.add(user)
        self.db.flush()
        return user

    def update_password(self, user_id: int, hashed_password: str) -> int:
        result = (
            self.db.query(db_models.User)
            .filter(db_models.User.id == user_id)
            .update({"hashed_password": hashed_password}, synchronize_session=False)
        )
        self.db.flush()
        return result  # type: ignore[return-value]

    def mark_email_verified(self, user_id: int, now: datetime) -> int:
        """Flag the current account email as verified."""
        result = (
            self.db.query(db_models.User)
            .filter(db_models.User.id == user_id)
            .update(
                {"email_verified": True, "email_verified_at": now},
                synchronize_session=False,
            )
        )
        self.db.flush()
        return result  # type: ignore[return-value]

    def change_email(self, user_id: int, email: str, now: datetime) -> int:
        """Switch the account to a confirmed new email, flagged verified."""
        result = (
            self.db.query(db_models.User)
            .filter(db_models.User.id == user_id)
            .update(
                {
                    "email": email.strip().lower(),
                    "email_verified": True,
                    "email_verified_at": now,
                },
                synchronize_session=False,
            )
        )
        self.db.flush()
        return result  # type: ignore[return-value]
