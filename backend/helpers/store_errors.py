"""
Translation of store failures into domain errors.

Repositories raise SQLAlchemy errors; services wrap their store calls in
`translate_store_errors` so callers only ever see `InfrastructureException`.
"""

from contextlib import contextmanager
from typing import Iterator

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models.exceptions import InfrastructureException


@contextmanager
def translate_store_errors(db: Session, operation: str) -> Iterator[None]:
    """
    Roll back and re-raise store failures as a retryable domain error.

    Args:
        db: Session whose transaction is rolled back on failure
        operation: Short name of the operation, used in the log line

    Raises:
        InfrastructureException: If the wrapped block raised a SQLAlchemyError
    """
    try:
        yield
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Store failure during {operation}: {e.__class__.__name__}: {e}")
        raise InfrastructureException() from e
