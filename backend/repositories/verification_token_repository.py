"""Repository for single-use email verification and password reset tokens."""

from datetime import datetime
from typing import Optional, Union

from sqlalchemy.orm import Query, Session

from models.security_event_types import TokenPurpose
from repositories.db_models import EmailVerificationToken, PasswordResetToken

TokenModel = Union[EmailVerificationToken, PasswordResetToken]


class VerificationTokenRepository:
    """
    Data access for both token tables.

    Password reset tokens live in `password_reset_tokens`; every email-bound
    purpose shares `email_verification_tokens`, discriminated by `token_type`.
    """

    def __init__(self, db: Session):
        """Initialize the repository."""
        self.db = db

    @staticmethod
    def model_for(purpose: TokenPurpose) -> type[TokenModel]:
        if purpose is TokenPurpose.PASSWORD_RESET:
            return PasswordResetToken
        return EmailVerificationToken

    def _query(self, purpose: TokenPurpose) -> Query:
        model = self.model_for(purpose)
        query = self.db.query(model)
        if model is EmailVerificationToken:
            query = query.filter(EmailVerificationToken.token_type == purpose.value)
        return query

    def create_token(
        self,
        user_id: int,
        purpose: TokenPurpose,
        token_hash: str,
        expires_at: datetime,
        now: datetime,
        email: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> TokenModel:
        """Insert an unused token row."""
        record: TokenModel
        if purpose is TokenPurpose.PASSWORD_RESET:
            record = PasswordResetToken(user_id=user_id)
        else:
            record = EmailVerificationToken(
                user_id=user_id, email=email, token_type=purpose.value
            )
        record.token_hash = token_hash
        record.expires_at = expires_at
        record.ip_address = ip_address
        record.user_agent = user_agent
        record.created_at = now
        self.db.add(record)
        self.db.flush()
        return record

    def mark_used(self, purpose: TokenPurpose, token_hash: str, now: datetime) -> int:
        """
        Consume a token if it is still redeemable.

        One conditional UPDATE; concurrent callers on the same token see
        exactly one row updated between them.
        """
        model = self.model_for(purpose)
        result = (
            self._query(purpose)
            .filter(model.token_hash == token_hash, model.is_redeemable_at(now))
            .update({"used_at": now}, synchronize_session=False)
        )
        self.db.flush()
        return result  # type: ignore[return-value]

    def get_by_hash(self, purpose: TokenPurpose, token_hash: str) -> Optional[TokenModel]:
        model = self.model_for(purpose)
        return (
            self._query(purpose)
            .filter(model.token_hash == token_hash)
            .populate_existing()
            .first()
        )

    def list_for_user(self, user_id: int, purpose: TokenPurpose) -> list[TokenModel]:
        """All tokens of a purpose for a user, newest first."""
        model = self.model_for(purpose)
        return (
            self._query(purpose)
            .filter(model.user_id == user_id)
            .order_by(model.created_at.desc(), model.id.desc())
            .all()
        )

    def delete_unused_for_user(self, user_id: int, purpose: TokenPurpose) -> int:
        """Hard-delete outstanding (unused) tokens of a purpose for a user."""
        model = self.model_for(purpose)
        result = (
            self._query(purpose)
            .filter(model.user_id == user_id, model.used_at.is_(None))
            .delete(synchronize_session=False)
        )
        self.db.flush()
        return result  # type: ignore[return-value]

    def delete_expired_before(self, model: type[TokenModel], cutoff: datetime) -> int:
        """Delete rows whose expiry is older than the cutoff, used or not."""
        result = (
            self.db.query(model)
            .filter(model.is_purgeable_at(cutoff))
            .delete(synchronize_session=False)
        )
        self.db.flush()
        return result  # type: ignore[return-value]
