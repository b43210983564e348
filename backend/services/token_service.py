"""
Token issuance service.

Issues and redeems single-use, expiring tokens for email verification,
email change and password reset. Redemption is one conditional UPDATE on
`used_at`; zero rows affected means the token is unknown, spent or expired,
and those cases are not told apart.

Issuing a token does not invalidate earlier unused tokens of the same
purpose; callers that want that call `revoke_all_for_user` first.
"""

import hashlib
import secrets
from datetime import timedelta
from typing import Optional, Union

from loguru import logger
from sqlalchemy.orm import Session

import models.schemas as schemas
from helpers.store_errors import translate_store_errors
from helpers.time_utils import mask_ip_address, utc_now
from models.config import settings
from models.exceptions import TokenNotFoundException, ValidationException
from models.security_event_types import TokenPurpose
from repositories.db_models import EmailVerificationToken, PasswordResetToken
from repositories.verification_token_repository import VerificationTokenRepository


class TokenService:
    """Service for single-use verification tokens."""

    @staticmethod
    def generate_token() -> str:
        """Generate a hex token (VERIFICATION_TOKEN_BYTES of randomness)."""
        return secrets.token_hex(settings.VERIFICATION_TOKEN_BYTES)

    @staticmethod
    def hash_token(token: str) -> str:
        return hashlib.sha256(token.strip().encode("utf-8")).hexdigest()

    @staticmethod
    def default_ttl(purpose: TokenPurpose) -> timedelta:
        if purpose is TokenPurpose.PASSWORD_RESET:
            return timedelta(hours=settings.PASSWORD_RESET_TTL_HOURS)
        return timedelta(hours=settings.EMAIL_VERIFICATION_TTL_HOURS)

    @staticmethod
    def issue(
        db: Session,
        user_id: int,
        purpose: TokenPurpose,
        email: Optional[str] = None,
        ttl: Optional[timedelta] = None,
        context: Optional[schemas.ClientContext] = None,
    ) -> schemas.IssuedToken:
        """
        Create a new unused token.

        Args:
            db: Database session
            user_id: Owning account
            purpose: What the token authorises
            email: Address being verified (required for email purposes)
            ttl: Lifetime, defaults per purpose
            context: Requesting client (informational)

        Returns:
            The token, shown exactly once

        Raises:
            ValidationException: If an email purpose is issued without an email
            InfrastructureException: If the token could not be stored
        """
        if purpose.carries_email and not email:
            raise ValidationException(f"{purpose.value} tokens require an email")

        context = context or schemas.ClientContext()
        now = utc_now()
        if ttl is None:
            ttl = TokenService.default_ttl(purpose)
        expires_at = now + ttl
        token = TokenService.generate_token()

        repo = VerificationTokenRepository(db)
        with translate_store_errors(db, "token.issue"):
            repo.create_token(
                user_id=user_id,
                purpose=purpose,
                token_hash=TokenService.hash_token(token),
                expires_at=expires_at,
                now=now,
                email=email if purpose.carries_email else None,
                ip_address=context.ip_address,
                user_agent=context.user_agent,
            )
            db.commit()

        logger.info(
            f"Token issued: purpose={purpose.value}, user_id={user_id}, "
            f"ip={mask_ip_address(context.ip_address)}"
        )
        return schemas.IssuedToken(
            token=token,
            user_id=user_id,
            purpose=purpose,
            email=email if purpose.carries_email else None,
            expires_at=expires_at,
        )

    @staticmethod
    def redeem(
        db: Session, token: str, purpose: TokenPurpose, commit: bool = True
    ) -> schemas.TokenRecord:
        """
        Consume a token exactly once.

        With `commit=False` the consumption stays in the open transaction so
        the caller can commit it together with the state the token guards;
        a rollback leaves the token redeemable.

        Returns:
            The consumed token (owning user, email for email purposes)

        Raises:
            TokenNotFoundException: If the token is unknown, already used or expired
            InfrastructureException: If the store could not be updated
        """
        token_hash = TokenService.hash_token(token)
        repo = VerificationTokenRepository(db)

        with translate_store_errors(db, "token.redeem"):
            consumed = repo.mark_used(purpose, token_hash, utc_now())
            if commit:
                db.commit()
            if consumed != 1:
                raise TokenNotFoundException()
            record = repo.get_by_hash(purpose, token_hash)

        if record is None:
            raise TokenNotFoundException()

        logger.info(f"Token redeemed: purpose={purpose.value}, user_id={record.user_id}")
        return TokenService._to_record(record, purpose)

    @staticmethod
    def revoke_all_for_user(db: Session, user_id: int, purpose: TokenPurpose) -> int:
        """
        Hard-delete every unused token of a purpose for a user.

        Returns:
            Number of tokens deleted
        """
        repo = VerificationTokenRepository(db)
        with translate_store_errors(db, "token.revoke_all_for_user"):
            deleted = repo.delete_unused_for_user(user_id, purpose)
            db.commit()
        return deleted

    @staticmethod
    def list_for_user(
        db: Session, user_id: int, purpose: TokenPurpose
    ) -> list[schemas.TokenRecord]:
        """Tokens of a purpose for a user, newest first. Values are never returned."""
        with translate_store_errors(db, "token.list_for_user"):
            records = VerificationTokenRepository(db).list_for_user(user_id, purpose)
        return [TokenService._to_record(r, purpose) for r in records]

    @staticmethod
    def sweep_expired(db: Session, retention: Optional[timedelta] = None) -> int:
        """
        Delete tokens that expired longer than `retention` ago, used or not.

        Expired rows are kept for a while for correlation with security events.

        Returns:
            Number of tokens deleted across both tables
        """
        if retention is None:
            retention = timedelta(hours=settings.EXPIRED_TOKEN_RETENTION_HOURS)
        cutoff = utc_now() - retention
        repo = VerificationTokenRepository(db)

        with translate_store_errors(db, "token.sweep_expired"):
            deleted = repo.delete_expired_before(EmailVerificationToken, cutoff)
            deleted += repo.delete_expired_before(PasswordResetToken, cutoff)
            db.commit()

        if deleted:
            logger.info(f"Cleaned up {deleted} expired verification tokens")
        return deleted

    @staticmethod
    def _to_record(
        record: Union[EmailVerificationToken, PasswordResetToken], purpose: TokenPurpose
    ) -> schemas.TokenRecord:
        return schemas.TokenRecord(
            id=record.id,
            user_id=record.user_id,
            purpose=purpose,
            email=getattr(record, "email", None),
            expires_at=record.expires_at,
            used_at=record.used_at,
            created_at=record.created_at,
        )
