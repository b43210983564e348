"""Tests for TokenService."""

from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest
from sqlalchemy.orm import Session

import repositories.db_models as db_models
from helpers.time_utils import utc_now
from models.exceptions import TokenNotFoundException, ValidationException
from models.security_event_types import TokenPurpose
from services.token_service import TokenService


class TestIssue:
    """Tests for token issuance."""

    def test_password_reset_token(
        self, db_session: Session, test_user: db_models.User
    ) -> None:
        issued = TokenService.issue(db_session, test_user.id, TokenPurpose.PASSWORD_RESET)

        assert len(issued.token) == 64  # 32 random bytes, hex encoded
        assert issued.email is None
        assert issued.expires_at <= utc_now() + timedelta(hours=1)

        row = db_session.query(db_models.PasswordResetToken).one()
        assert row.token_hash == TokenService.hash_token(issued.token)
        assert row.token_hash != issued.token
        assert row.used_at is None

    def test_email_verification_token_carries_email(
        self, db_session: Session, test_user: db_models.User
    ) -> None:
        issued = TokenService.issue(
            db_session,
            test_user.id,
            TokenPurpose.EMAIL_VERIFICATION,
            email=test_user.email,
        )

        assert issued.email == test_user.email
        assert issued.expires_at > utc_now() + timedelta(hours=23)
        row = db_session.query(db_models.EmailVerificationToken).one()
        assert row.token_type == TokenPurpose.EMAIL_VERIFICATION.value
        assert row.email == test_user.email

    def test_email_purpose_requires_email(
        self, db_session: Session, test_user: db_models.User
    ) -> None:
        with pytest.raises(ValidationException):
            TokenService.issue(db_session, test_user.id, TokenPurpose.EMAIL_CHANGE)

    def test_reissue_keeps_earlier_tokens_valid(
        self, db_session: Session, test_user: db_models.User
    ) -> None:
        first = TokenService.issue(db_session, test_user.id, TokenPurpose.PASSWORD_RESET)
        second = TokenService.issue(
            db_session, test_user.id, TokenPurpose.PASSWORD_RESET
        )

        assert TokenService.redeem(
            db_session, first.token, TokenPurpose.PASSWORD_RESET
        ).user_id == test_user.id
        assert TokenService.redeem(
            db_session, second.token, TokenPurpose.PASSWORD_RESET
        ).user_id == test_user.id


class TestRedeem:
    """Tests for single-use redemption."""

    def test_redeem_once(self, db_session: Session, test_user: db_models.User) -> None:
        issued = TokenService.issue(db_session, test_user.id, TokenPurpose.PASSWORD_RESET)

        record = TokenService.redeem(db_session, issued.token, TokenPurpose.PASSWORD_RESET)

        assert record.user_id == test_user.id
        assert record.used_at is not None
        with pytest.raises(TokenNotFoundException):
            TokenService.redeem(db_session, issued.token, TokenPurpose.PASSWORD_RESET)

    def test_expired_token_rejected(
        self, db_session: Session, test_user: db_models.User
    ) -> None:
        issued = TokenService.issue(
            db_session,
            test_user.id,
            TokenPurpose.PASSWORD_RESET,
            ttl=timedelta(seconds=-1),
        )

        with pytest.raises(TokenNotFoundException):
            TokenService.redeem(db_session, issued.token, TokenPurpose.PASSWORD_RESET)

    def test_zero_ttl_token_is_already_expired(
        self, db_session: Session, test_user: db_models.User
    ) -> None:
        issued = TokenService.issue(
            db_session, test_user.id, TokenPurpose.PASSWORD_RESET, ttl=timedelta(0)
        )

        assert issued.expires_at <= utc_now()
        with pytest.raises(TokenNotFoundException):
            TokenService.redeem(db_session, issued.token, TokenPurpose.PASSWORD_RESET)

    def test_wrong_purpose_rejected(
        self, db_session: Session, test_user: db_models.User
    ) -> None:
        issued = TokenService.issue(
            db_session,
            test_user.id,
            TokenPurpose.EMAIL_VERIFICATION,
            email=test_user.email,
        )

        with pytest.raises(TokenNotFoundException):
            TokenService.redeem(db_session, issued.token, TokenPurpose.EMAIL_CHANGE)
        with pytest.raises(TokenNotFoundException):
            TokenService.redeem(db_session, issued.token, TokenPurpose.PASSWORD_RESET)

        assert TokenService.redeem(
            db_session, issued.token, TokenPurpose.EMAIL_VERIFICATION
        ).email == test_user.email

    def test_unknown_token_rejected(self, db_session: Session) -> None:
        with pytest.raises(TokenNotFoundException):
            TokenService.redeem(db_session, "f" * 64, TokenPurpose.PASSWORD_RESET)

    def test_concurrent_redeem_succeeds_exactly_once(
        self, file_session_factory
    ) -> None:
        with file_session_factory() as db:
            user = db_models.User(email="race@example.com", hashed_password="x")
            db.add(user)
            db.commit()
            issued = TokenService.issue(db, user.id, TokenPurpose.PASSWORD_RESET)

        def attempt() -> bool:
            with file_session_factory() as db:
                try:
                    TokenService.redeem(db, issued.token, TokenPurpose.PASSWORD_RESET)
                    return True
                except TokenNotFoundException:
                    return False

        with ThreadPoolExecutor(max_workers=8) as executor:
            results = list(executor.map(lambda _: attempt(), range(8)))

        assert results.count(True) == 1


class TestRevokeAndList:
    """Tests for revocation and listing."""

    def test_revoke_all_deletes_only_unused(
        self, db_session: Session, test_user: db_models.User
    ) -> None:
        used = TokenService.issue(db_session, test_user.id, TokenPurpose.PASSWORD_RESET)
        TokenService.redeem(db_session, used.token, TokenPurpose.PASSWORD_RESET)
        pending = TokenService.issue(
            db_session, test_user.id, TokenPurpose.PASSWORD_RESET
        )

        assert TokenService.revoke_all_for_user(
            db_session, test_user.id, TokenPurpose.PASSWORD_RESET
        ) == 1

        with pytest.raises(TokenNotFoundException):
            TokenService.redeem(db_session, pending.token, TokenPurpose.PASSWORD_RESET)
        records = TokenService.list_for_user(
            db_session, test_user.id, TokenPurpose.PASSWORD_RESET
        )
        assert len(records) == 1
        assert records[0].used_at is not None

    def test_revoke_all_is_scoped_to_purpose(
        self, db_session: Session, test_user: db_models.User
    ) -> None:
        verification = TokenService.issue(
            db_session,
            test_user.id,
            TokenPurpose.EMAIL_VERIFICATION,
            email=test_user.email,
        )
        TokenService.issue(
            db_session,
            test_user.id,
            TokenPurpose.EMAIL_CHANGE,
            email="new@example.com",
        )

        assert TokenService.revoke_all_for_user(
            db_session, test_user.id, TokenPurpose.EMAIL_CHANGE
        ) == 1
        TokenService.redeem(db_session, verification.token, TokenPurpose.EMAIL_VERIFICATION)


class TestSweepExpired:
    """Tests for the token retention sweep."""

    def test_deletes_tokens_past_retention(
        self, db_session: Session, test_user: db_models.User
    ) -> None:
        TokenService.issue(
            db_session,
            test_user.id,
            TokenPurpose.PASSWORD_RESET,
            ttl=timedelta(hours=-48),
        )
        TokenService.issue(
            db_session,
            test_user.id,
            TokenPurpose.EMAIL_VERIFICATION,
            email=test_user.email,
            ttl=timedelta(hours=-30),
        )
        # Expired but still inside the retention window
        TokenService.issue(
            db_session,
            test_user.id,
            TokenPurpose.PASSWORD_RESET,
            ttl=timedelta(hours=-1),
        )
        live = TokenService.issue(
            db_session, test_user.id, TokenPurpose.PASSWORD_RESET
        )

        assert TokenService.sweep_expired(db_session) == 2
        assert db_session.query(db_models.PasswordResetToken).count() == 2
        assert db_session.query(db_models.EmailVerificationToken).count() == 0
        TokenService.redeem(db_session, live.token, TokenPurpose.PASSWORD_RESET)
