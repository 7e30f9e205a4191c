# pyright: reportMissingTypeStubs=false
"""
Database configuration and session management.

This module sets up SQLAlchemy database connection, session management,
and provides context-managed sessions for services, schedulers and scripts.
"""

import logging
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from core.config import DATABASE_URL
from core.constants import DB_POOL_RECYCLE_SECONDS
from core.exceptions import BookingCoreError

logger = logging.getLogger(__name__)

# Columns stamped automatically by the mapper listeners below
_INSERT_TIMESTAMP_COLUMNS = ("created_at", "updated_at", "last_updated", "timestamp")
_UPDATE_TIMESTAMP_COLUMNS = ("updated_at", "last_updated")

# Create SQLAlchemy engine with optimized settings
engine = create_engine(
    DATABASE_URL,
    pool_pre_ping=True,  # Verify connections before use
    pool_recycle=DB_POOL_RECYCLE_SECONDS,
    echo=False,          # Disable SQL logging
    future=True,         # Use SQLAlchemy 2.0 style
)

# Create configured SessionLocal class
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    expire_on_commit=False,  # Don't expire objects after commit
)


# Create Base class for declarative models
class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


@event.listens_for(Base, "before_insert", propagate=True)  # type: ignore
def receive_before_insert(mapper, connection, target):  # type: ignore
    """Set created_at/updated_at/last_updated/timestamp on insert using UTC."""
    # Import here to avoid circular import
    from utils.datetime_utils import utc_now
    now = utc_now()
    # Properties won't be in mapper.columns, only mapped columns are stamped
    for column_name in _INSERT_TIMESTAMP_COLUMNS:
        if column_name in mapper.columns:  # type: ignore
            if getattr(target, column_name, None) is None:  # type: ignore
                setattr(target, column_name, now)  # type: ignore


@event.listens_for(Base, "before_update", propagate=True)  # type: ignore
def receive_before_update(mapper, connection, target):  # type: ignore
    """
    Set updated_at/last_updated on ORM flush of a modified object.

    Bulk UPDATE statements bypass mapper events; services issuing them
    set the timestamp columns explicitly.
    """
    # Import here to avoid circular import
    from utils.datetime_utils import utc_now
    now = utc_now()
    for column_name in _UPDATE_TIMESTAMP_COLUMNS:
        if column_name in mapper.columns:  # type: ignore
            setattr(target, column_name, now)  # type: ignore


@contextmanager
def get_db_context() -> Generator[Session, None, None]:
    """
    Context manager for database sessions.

    Useful for background tasks, scripts, or testing where you need manual
    session management. Commits on success and rolls back on any exception.

    Yields:
        Session: SQLAlchemy database session

    Example:
        ```python
        with get_db_context() as db:
            pool = ResourcePoolService.get_pool(db, hospital_id, "icu")
        ```
    """
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except BookingCoreError:
        # Don't log domain errors as failures - they're expected business outcomes
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception(f"Database transaction failed: {e}")
        raise
    except Exception as e:
        db.rollback()
        logger.exception(f"Unexpected error in database session: {e}")
        raise
    finally:
        db.close()


def create_tables() -> None:
    """
    Create all database tables defined in SQLAlchemy models.

    Safe to call multiple times - will not recreate existing tables.
    """
    # Import models so every table is registered on Base.metadata
    import models  # noqa: F401

    try:
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables created successfully")
    except SQLAlchemyError as e:
        logger.exception(f"Failed to create database tables: {e}")
        raise


def drop_tables() -> None:
    """
    Drop all database tables defined in SQLAlchemy models.

    WARNING: This will permanently delete all data in the tables!
    Only use in testing or development environments.
    """
    import models  # noqa: F401

    try:
        Base.metadata.drop_all(bind=engine)
        logger.info("Database tables dropped successfully")
    except SQLAlchemyError as e:
        logger.exception(f"Failed to drop database tables: {e}")
        raise
