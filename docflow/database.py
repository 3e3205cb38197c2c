"""Database configuration and session management."""

import logging
from contextlib import contextmanager
from typing import Generator, Iterator

from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from docflow.config import get_settings
from docflow.errors import ConflictError, StorageError

logger = logging.getLogger(__name__)

DATABASE_URL = get_settings().database_url

engine = create_engine(
    DATABASE_URL,
    connect_args={"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {},
    echo=False,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Base(DeclarativeBase):
    pass


def get_db() -> Generator[Session, None, None]:
    """Dependency that provides a database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db() -> None:
    """Create all database tables."""
    # Import models so every table is registered on the metadata.
    from docflow import models  # noqa: F401

    Base.metadata.create_all(bind=engine)


@contextmanager
def atomic(db: Session) -> Iterator[None]:
    """Commit everything done in the block, or nothing.

    Lost optimistic-locking races surface as ``ConflictError`` and any other
    database failure as ``StorageError``. The session is rolled back first in
    every failure case.
    """
    try:
        yield
        db.commit()
    except StaleDataError as exc:
        db.rollback()
        raise ConflictError(
            "Document was modified concurrently; reload and retry"
        ) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Database write failed: %s", exc)
        raise StorageError("The document store is unavailable") from exc
    except Exception:
        db.rollback()
        raise
