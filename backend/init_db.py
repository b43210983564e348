"""Create the account security tables directly from the ORM metadata.

Development and test convenience; deployed databases are managed with
Alembic (`alembic upgrade head`).
"""

from typing import Optional

from loguru import logger
from sqlalchemy import Engine

import repositories.db_models  # noqa: F401
from repositories.database import Base, engine as default_engine


def init_db(bind: Optional[Engine] = None) -> None:
    """Create every missing table on the given engine (default: app engine)."""
    bind = bind or default_engine
    Base.metadata.create_all(bind=bind)
    logger.info(f"Database tables ready: {', '.join(sorted(Base.metadata.tables))}")


def drop_db(bind: Optional[Engine] = None) -> None:
    """Drop every table known to the metadata."""
    Base.metadata.drop_all(bind=bind or default_engine)


if __name__ == "__main__":
    init_db()
