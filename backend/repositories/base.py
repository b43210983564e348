"""
Base repository class providing common database operations.
"""

from typing import Any, Generic, TypeVar

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from repositories.database import Base

T = TypeVar("T", bound=Base)  # type: ignore[type-arg]


class BaseRepository(Generic[T]):
    """
    Base repository providing common CRUD operations.

    Type parameter T should be a SQLAlchemy model class.
    """

    def __init__(self, model: type[T], db: Session):
        """
        Initialize repository.

        Args:
            model: SQLAlchemy model class
            db: Database session
        """
        self.model = model
        self.db = db

    def get_by_id(self, id: int) -> T | None:
        """
        Get entity by ID.

        Args:
            id: Entity ID

        Returns:
            Entity if found, None otherwise
        """
        return self.db.query(self.model).filter(self.model.id == id).first()

    def add(self, entity: T) -> None:
        """
        Add entity to session without committing.

        Args:
            entity: Entity to add
        """
        self.db.add(entity)

    def create(self, entity: T) -> T:
        """
        Create new entity.

        Args:
            entity: Entity to create

        Returns:
            Created entity
        """
        self.db.add(entity)
        self.db.commit()
        self.db.refresh(entity)
        return entity

    def count(self) -> int:
        """Count total number of entities."""
        return self.db.query(self.model).count()

    def commit(self) -> None:
        """Commit the current transaction."""
        self.db.commit()

    def flush(self) -> None:
        """Flush pending changes without committing."""
        self.db.flush()

    def rollback(self) -> None:
        """Rollback the current transaction."""
        self.db.rollback()

    def upsert(self) -> Any:
        """
        Dialect-specific INSERT for this model's table.

        The returned statement supports `on_conflict_do_update` /
        `on_conflict_do_nothing`, so an insert-or-update is one statement.

        Raises:
            NotImplementedError: If the bound database is neither SQLite nor PostgreSQL
        """
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            return postgresql.insert(self.model)
        if dialect == "sqlite":
            return sqlite.insert(self.model)
        raise NotImplementedError(f"Upsert is not supported on {dialect}")
