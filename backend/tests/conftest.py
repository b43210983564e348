"""
Pytest configuration and fixtures for backend tests.
"""

import os
import sys
from pathlib import Path

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Add backend directory to path for imports
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

# Set test environment variables before importing config
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
# Cheap bcrypt cost keeps the login tests fast
os.environ["PASSWORD_BCRYPT_ROUNDS"] = "4"
# Generate a valid Fernet key for TOTP encryption (base64-encoded 32 bytes)
os.environ["TOTP_ENCRYPTION_KEY"] = "P0LYDU58oBna0xcCcu-fgUPuS02-HzzJRarCoSA1ySA="

from helpers.password_hashing import get_password_hash  # noqa: E402
from init_db import drop_db, init_db  # noqa: E402
import repositories.db_models as db_models  # noqa: E402
from repositories.database import _enable_sqlite_foreign_keys  # noqa: E402

# Test database engine (in-memory SQLite)
TEST_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
event.listen(engine, "connect", _enable_sqlite_foreign_keys)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

TEST_PASSWORD = "testpassword123"


@pytest.fixture(scope="function")
def db_session():
    """Create a fresh in-memory database session for each test."""
    init_db(engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        drop_db(engine)


@pytest.fixture(scope="function")
def db(db_session):
    """Alias for db_session."""
    return db_session


@pytest.fixture
def session_factory(db_session):
    """Factory bound to the same in-memory database as `db_session`."""
    return TestingSessionLocal


@pytest.fixture
def file_session_factory(tmp_path):
    """
    Session factory on a file-backed SQLite database.

    Each session gets its own connection, so threads really race on the
    same rows.
    """
    from repositories.database import create_db_engine

    file_engine = create_db_engine(f"sqlite:///{tmp_path / 'race.db'}")
    init_db(file_engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=file_engine)
    yield factory
    file_engine.dispose()


@pytest.fixture
def user_factory(db_session):
    """Create active users with a known password."""

    def _make(email: str, password: str = TEST_PASSWORD) -> db_models.User:
        user = db_models.User(
            email=email,
            hashed_password=get_password_hash(password),
            is_active=True,
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make


@pytest.fixture
def test_user(user_factory) -> db_models.User:
    """Create a test user."""
    return user_factory("test@example.com")


@pytest.fixture
def other_user(user_factory) -> db_models.User:
    """Create a second user."""
    return user_factory("other@example.com")
