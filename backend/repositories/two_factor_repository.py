"""Repository for TOTP 2FA enrollments."""

import hashlib
import secrets
from datetime import datetime
from typing import Optional

import pyotp
from cryptography.fernet import Fernet, InvalidToken
from sqlalchemy import func
from sqlalchemy.orm import Session

from models.config import settings
from repositories.base import BaseRepository
from repositories.db_models import UserTwoFactor


class TwoFactorRepository(BaseRepository[UserTwoFactor]):
    """Repository for the `user_2fa` table and its secret material."""

    CODE_LENGTH = 8  # 8-character alphanumeric codes
    # Use only unambiguous characters (no 0/O, 1/l/I)
    ALPHABET = "23456789ABCDEFGHJKLMNPQRSTUVWXYZ"  # pragma: allowlist secret

    def __init__(self, db: Session):
        """Initialize the repository."""
        super().__init__(UserTwoFactor, db)
        self._fernet: Optional[Fernet] = None

    def _get_fernet(self) -> Fernet:
        """Get Fernet instance for encryption/decryption.

        Raises:
            ValueError: If TOTP_ENCRYPTION_KEY is not configured or invalid.
        """
        if self._fernet is None:
            if not settings.TOTP_ENCRYPTION_KEY:
                raise ValueError("TOTP_ENCRYPTION_KEY is not configured")
            try:
                self._fernet = Fernet(settings.TOTP_ENCRYPTION_KEY.encode())
            except (TypeError, ValueError) as e:
                raise ValueError(f"Invalid TOTP_ENCRYPTION_KEY: {e}") from e
        return self._fernet

    # ------------------------------------------------------------------
    # Secret material
    # ------------------------------------------------------------------

    @staticmethod
    def generate_secret() -> str:
        """Generate a new TOTP secret (32-character base32 string)."""
        return pyotp.random_base32()

    def encrypt_secret(self, secret: str) -> str:
        """Encrypt TOTP secret for database storage."""
        return self._get_fernet().encrypt(secret.encode()).decode()

    def decrypt_secret(self, encrypted: str) -> str:
        """Decrypt TOTP secret from database.

        Raises:
            ValueError: If decryption fails (invalid token or key mismatch).
        """
        try:
            return self._get_fernet().decrypt(encrypted.encode()).decode()
        except InvalidToken as e:
            raise ValueError(f"Failed to decrypt TOTP secret: {e}") from e

    def generate_code(self) -> str:
        """Generate a single backup code (8 alphanumeric characters)."""
        return "".join(secrets.choice(self.ALPHABET) for _ in range(self.CODE_LENGTH))

    def generate_backup_codes(self, count: int) -> list[str]:
        """Generate `count` distinct plain text backup codes."""
        codes: list[str] = []
        while len(codes) < count:
            code = self.generate_code()
            if code not in codes:
                codes.append(code)
        return codes

    @staticmethod
    def hash_code(code: str) -> str:
        """Hash backup code for storage."""
        normalized = code.upper().replace("-", "").replace(" ", "")
        return hashlib.sha256(normalized.encode()).hexdigest()

    @staticmethod
    def get_provisioning_uri(secret: str, account_name: str) -> str:
        """
        Generate provisioning URI for QR code.

        Args:
            secret: Plain text TOTP secret
            account_name: Label shown in the authenticator app (usually the email)

        Returns:
            otpauth:// URI for QR code generation
        """
        totp = pyotp.TOTP(secret)
        return totp.provisioning_uri(
            name=account_name, issuer_name=settings.TOTP_ISSUER_NAME
        )

    # ------------------------------------------------------------------
    # Rows
    # ------------------------------------------------------------------

    def get_by_user(self, user_id: int) -> Optional[UserTwoFactor]:
        """Get the enrollment row for a user, bypassing the identity map."""
        return (
            self.db.query(UserTwoFactor)
            .filter(UserTwoFactor.user_id == user_id)
            .populate_existing()
            .first()
        )

    def start_enrollment(
        self,
        user_id: int,
        encrypted_secret: str,
        backup_code_hashes: list[str],
        now: datetime,
    ) -> bool:
        """
        Insert or reset the enrollment row unless 2FA is currently enabled.

        Resetting replaces the secret and codes and clears `verified_at`, so a
        new secret always needs fresh proof of possession.

        Returns:
            False if the row exists with `enabled = true` (nothing written)
        """
        table = UserTwoFactor.__table__
        stmt = self.upsert().values(
            user_id=user_id,
            encrypted_secret=encrypted_secret,
            backup_codes=backup_code_hashes,
            enabled=False,
            verified_at=None,
            version=1,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.user_id],
            set_={
                "encrypted_secret": stmt.excluded.encrypted_secret,
                "backup_codes": stmt.excluded.backup_codes,
                "verified_at": None,
                "version": table.c.version + 1,
                "updated_at": now,
            },
            where=table.c.enabled == False,  # noqa: E712
        ).returning(table.c.id)
        written = self.db.execute(stmt).first()
        self.db.flush()
        return written is not None

    def mark_enabled(self, user_id: int, now: datetime) -> int:
        """Enable 2FA, stamping verified_at only if it was never set."""
        result = (
            self.db.query(UserTwoFactor)
            .filter(
                UserTwoFactor.user_id == user_id,
                UserTwoFactor.enabled == False,  # noqa: E712
            )
            .update(
                {
                    "enabled": True,
                    "verified_at": func.coalesce(UserTwoFactor.verified_at, now),
                    "updated_at": now,
                },
                synchronize_session=False,
            )
        )
        self.db.flush()
        return result  # type: ignore[return-value]

    def mark_disabled(self, user_id: int, now: datetime) -> int:
        """Disable 2FA. Secret and verified_at are kept."""
        result = (
            self.db.query(UserTwoFactor)
            .filter(
                UserTwoFactor.user_id == user_id,
                UserTwoFactor.enabled == True,  # noqa: E712
            )
            .update({"enabled": False, "updated_at": now}, synchronize_session=False)
        )
        self.db.flush()
        return result  # type: ignore[return-value]

    def replace_backup_codes(
        self, user_id: int, backup_code_hashes: list[str], now: datetime
    ) -> int:
        """Replace the whole backup-code set."""
        result = (
            self.db.query(UserTwoFactor)
            .filter(UserTwoFactor.user_id == user_id)
            .update(
                {
                    "backup_codes": backup_code_hashes,
                    "version": UserTwoFactor.version + 1,
                    "updated_at": now,
                },
                synchronize_session=False,
            )
        )
        self.db.flush()
        return result  # type: ignore[return-value]

    def swap_backup_codes(
        self,
        user_id: int,
        expected_version: int,
        remaining_hashes: list[str],
        now: datetime,
    ) -> int:
        """
        Compare-and-set the backup-code list.

        Applies only if nobody changed the codes since `expected_version` was
        read. Returns the number of rows updated (0 or 1).
        """
        result = (
            self.db.query(UserTwoFactor)
            .filter(
                UserTwoFactor.user_id == user_id,
                UserTwoFactor.version == expected_version,
            )
            .update(
                {
                    "backup_codes": remaining_hashes,
                    "version": expected_version + 1,
                    "updated_at": now,
                },
                synchronize_session=False,
            )
        )
        self.db.flush()
        return result  # type: ignore[return-value]

    def delete_for_user(self, user_id: int) -> int:
        """Delete a user's enrollment row."""
        result = (
            self.db.query(UserTwoFactor)
            .filter(UserTwoFactor.user_id == user_id)
            .delete(synchronize_session=False)
        )
        self.db.flush()
        return result  # type: ignore[return-value]
