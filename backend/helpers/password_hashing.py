"""
Password hashing with bcrypt.

Treated as an opaque one-way function: callers only hash and verify.
"""

from functools import lru_cache

import bcrypt

from models.config import settings


def get_password_hash(password: str) -> str:
    return bcrypt.hashpw(
        password.encode(), bcrypt.gensalt(rounds=settings.PASSWORD_BCRYPT_ROUNDS)
    ).decode()


def verify_password(plain_password: str, hashed_password: str) -> bool:
    try:
        return bcrypt.checkpw(plain_password.encode(), hashed_password.encode())
    except ValueError:
        # Malformed stored hash
        return False


@lru_cache(maxsize=1)
def _dummy_hash() -> bytes:
    # Same cost as real hashes, so unknown and locked accounts take as long
    # to reject as a wrong password.
    return bcrypt.hashpw(
        b"dummy_password_for_timing",
        bcrypt.gensalt(rounds=settings.PASSWORD_BCRYPT_ROUNDS),
    )


def burn_verification_time(plain_password: str) -> None:
    """Spend one bcrypt verification on a password that cannot match."""
    bcrypt.checkpw(plain_password.encode(), _dummy_hash())
