"""Tests for bcrypt password hashing."""

from helpers.password_hashing import (
    _dummy_hash,
    burn_verification_time,
    get_password_hash,
    verify_password,
)
from models.config import settings


class TestPasswordHashing:
    """Tests for hash/verify."""

    def test_roundtrip(self):
        hashed = get_password_hash("correct horse")
        assert hashed != "correct horse"
        assert verify_password("correct horse", hashed) is True
        assert verify_password("wrong horse", hashed) is False

    def test_salted(self):
        assert get_password_hash("same") != get_password_hash("same")

    def test_malformed_hash_is_a_mismatch(self):
        assert verify_password("anything", "not-a-bcrypt-hash") is False


class TestBurnVerificationTime:
    """Tests for the dummy verification used on rejected logins."""

    def test_returns_nothing(self):
        assert burn_verification_time("whatever") is None

    def test_dummy_hash_uses_configured_cost(self):
        cost = f"${settings.PASSWORD_BCRYPT_ROUNDS:02d}$"
        assert _dummy_hash().decode()[3:7] == cost
        assert get_password_hash("x")[3:7] == cost
