"""
Two-factor manager.

Owns the enrollment row: begin, confirm, disable, backup-code regeneration
and removal. Every mutation on an account with no enrollment is a no-op
rather than an error, so retried or out-of-order admin calls are safe.
"""

from typing import Callable, Optional, TypeVar

import pyotp
from loguru import logger
from sqlalchemy.orm import Session

import models.schemas as schemas
from helpers.store_errors import translate_store_errors
from helpers.time_utils import utc_now
from models.config import settings
from models.exceptions import (
    TwoFactorAlreadyEnabledException,
    TwoFactorConfigurationException,
    TwoFactorInvalidCodeException,
    TwoFactorNotConfiguredException,
    TwoFactorNotEnabledException,
)
from repositories.two_factor_repository import TwoFactorRepository

R = TypeVar("R")

# Attempts at the backup-code compare-and-set before giving up
_CONSUME_RETRIES = 3


class TwoFactorService:
    """Service for TOTP 2FA enrollment and verification."""

    @staticmethod
    def _wrap_config_error(func: Callable[..., R], *args, **kwargs) -> R:
        """Wrap repository calls to convert ValueError to domain exception.

        Repository methods raise ValueError for configuration issues
        (missing or wrong encryption key).
        """
        try:
            return func(*args, **kwargs)
        except ValueError as e:
            raise TwoFactorConfigurationException(str(e)) from e

    @staticmethod
    def generate_backup_codes(db: Session) -> list[str]:
        """Fresh plain text backup codes, TOTP_BACKUP_CODE_COUNT of them."""
        return TwoFactorRepository(db).generate_backup_codes(
            settings.TOTP_BACKUP_CODE_COUNT
        )

    @staticmethod
    def begin_enrollment(
        db: Session, user_id: int, account_name: str
    ) -> schemas.TwoFactorEnrollment:
        """
        Generate a secret and backup codes and store them with enabled=false.

        Restarting an unfinished (or disabled) enrollment replaces the secret
        and codes.

        Args:
            db: Database session
            user_id: Account enrolling
            account_name: Label for the authenticator app (usually the email)

        Returns:
            Secret, provisioning URI and backup codes, shown once

        Raises:
            TwoFactorAlreadyEnabledException: If 2FA is currently enabled
            TwoFactorConfigurationException: If the encryption key is unusable
        """
        repo = TwoFactorRepository(db)
        secret = repo.generate_secret()
        encrypted = TwoFactorService._wrap_config_error(repo.encrypt_secret, secret)
        codes = repo.generate_backup_codes(settings.TOTP_BACKUP_CODE_COUNT)

        with translate_store_errors(db, "two_factor.begin_enrollment"):
            written = repo.start_enrollment(
                user_id,
                encrypted_secret=encrypted,
                backup_code_hashes=[repo.hash_code(c) for c in codes],
                now=utc_now(),
            )
            repo.commit()

        if not written:
            raise TwoFactorAlreadyEnabledException()

        logger.info(f"2FA enrollment started: user_id={user_id}")
        return schemas.TwoFactorEnrollment(
            secret=secret,
            provisioning_uri=repo.get_provisioning_uri(secret, account_name),
            backup_codes=codes,
        )

    @staticmethod
    def confirm_enrollment(db: Session, user_id: int) -> bool:
        """
        Enable 2FA after the caller verified a code from the secret.

        Sets verified_at only if it was never set. No-op if already enabled
        or not enrolled.

        Returns:
            True if 2FA went from disabled to enabled
        """
        repo = TwoFactorRepository(db)
        with translate_store_errors(db, "two_factor.confirm_enrollment"):
            updated = repo.mark_enabled(user_id, utc_now())
            repo.commit()
        if updated:
            logger.info(f"2FA enabled: user_id={user_id}")
        return updated > 0

    @staticmethod
    def disable(db: Session, user_id: int) -> bool:
        """
        Set enabled=false, keeping the secret and verified_at.

        Returns:
            True if 2FA went from enabled to disabled
        """
        repo = TwoFactorRepository(db)
        with translate_store_errors(db, "two_factor.disable"):
            updated = repo.mark_disabled(user_id, utc_now())
            repo.commit()
        if updated:
            logger.info(f"2FA disabled: user_id={user_id}")
        return updated > 0

    @staticmethod
    def regenerate_backup_codes(db: Session, user_id: int, new_codes: list[str]) -> bool:
        """
        Replace the entire backup-code set. Leaves enabled/verified_at alone.

        Returns:
            True if an enrollment existed and was updated
        """
        repo = TwoFactorRepository(db)
        with translate_store_errors(db, "two_factor.regenerate_backup_codes"):
            updated = repo.replace_backup_codes(
                user_id, [repo.hash_code(c) for c in new_codes], utc_now()
            )
            repo.commit()
        return updated > 0

    @staticmethod
    def remove(db: Session, user_id: int) -> bool:
        """
        Delete the enrollment row entirely.

        Returns:
            True if a row was deleted
        """
        repo = TwoFactorRepository(db)
        with translate_store_errors(db, "two_factor.remove"):
            deleted = repo.delete_for_user(user_id)
            repo.commit()
        if deleted:
            logger.info(f"2FA removed: user_id={user_id}")
        return deleted > 0

    @staticmethod
    def get_status(db: Session, user_id: int) -> schemas.TwoFactorStatus:
        with translate_store_errors(db, "two_factor.get_status"):
            record = TwoFactorRepository(db).get_by_user(user_id)
        if record is None:
            return schemas.TwoFactorStatus(configured=False, enabled=False)
        return schemas.TwoFactorStatus(
            configured=True,
            enabled=record.enabled,
            verified_at=record.verified_at,
            backup_codes_remaining=len(record.backup_codes or []),
        )

    @staticmethod
    def is_enabled(db: Session, user_id: int) -> bool:
        return TwoFactorService.get_status(db, user_id).enabled

    @staticmethod
    def verify_totp(db: Session, user_id: int, code: str) -> bool:
        """
        Check a TOTP code against the stored secret, enabled or not.

        Raises:
            TwoFactorNotConfiguredException: If the account has no enrollment
            TwoFactorConfigurationException: If the secret cannot be decrypted
        """
        repo = TwoFactorRepository(db)
        with translate_store_errors(db, "two_factor.verify_totp"):
            record = repo.get_by_user(user_id)
        if record is None:
            raise TwoFactorNotConfiguredException()

        secret = TwoFactorService._wrap_config_error(
            repo.decrypt_secret, record.encrypted_secret
        )
        # valid_window allows codes from neighbouring 30-second steps (clock skew)
        return pyotp.TOTP(secret).verify(
            code.strip(), valid_window=settings.TOTP_VALID_WINDOW
        )

    @staticmethod
    def consume_backup_code(db: Session, user_id: int, code: str) -> bool:
        """
        Remove a matching backup code from the set.

        Compare-and-set on the row version, so one code can never be spent
        twice by concurrent logins.

        Returns:
            True if the code matched and was consumed
        """
        repo = TwoFactorRepository(db)
        code_hash = repo.hash_code(code)

        for _ in range(_CONSUME_RETRIES):
            with translate_store_errors(db, "two_factor.consume_backup_code"):
                record = repo.get_by_user(user_id)
                if record is None or code_hash not in (record.backup_codes or []):
                    return False

                remaining = list(record.backup_codes)
                remaining.remove(code_hash)
                swapped = repo.swap_backup_codes(
                    user_id, record.version, remaining, utc_now()
                )
                repo.commit()

            if swapped:
                logger.info(
                    f"Backup code used: user_id={user_id}, remaining={len(remaining)}"
                )
                return True

        logger.warning(f"Backup code consumption kept conflicting: user_id={user_id}")
        return False

    @staticmethod
    def verify_code(db: Session, user_id: int, code: Optional[str]) -> str:
        """
        Verify a second factor: a TOTP code, or else a backup code.

        Returns:
            "totp" or "backup_code", whichever matched

        Raises:
            TwoFactorNotEnabledException: If 2FA is not enabled for the account
            TwoFactorInvalidCodeException: If neither kind of code matched
        """
        if not TwoFactorService.is_enabled(db, user_id):
            raise TwoFactorNotEnabledException()
        if not code:
            raise TwoFactorInvalidCodeException()

        if TwoFactorService.verify_totp(db, user_id, code):
            return "totp"
        if TwoFactorService.consume_backup_code(db, user_id, code):
            return "backup_code"
        raise TwoFactorInvalidCodeException()
