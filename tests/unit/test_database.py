"""
Unit tests for database functionality.
"""

import pytest
from unittest.mock import patch, MagicMock
from sqlalchemy.exc import SQLAlchemyError

from core.database import get_db_context, create_tables, drop_tables
from core.exceptions import NotFoundError
from models import ResourcePool
from tests.conftest import HOSPITAL_ID, STAFF_ID


class TestDatabaseFunctions:
    """Test cases for database utility functions."""

    @patch('core.database.SessionLocal')
    def test_get_db_context_success(self, mock_session_local):
        """Test successful database context manager."""
        mock_session = MagicMock()
        mock_session_local.return_value = mock_session

        with get_db_context() as db:
            assert db == mock_session

        # Should commit and close on success
        mock_session.commit.assert_called_once()
        mock_session.close.assert_called_once()

    @patch('core.database.SessionLocal')
    def test_get_db_context_with_exception(self, mock_session_local):
        """Test database context manager with exception."""
        mock_session = MagicMock()
        mock_session_local.return_value = mock_session

        with pytest.raises(ValueError):
            with get_db_context():
                raise ValueError("Test exception")

        mock_session.rollback.assert_called_once()
        mock_session.close.assert_called_once()
        mock_session.commit.assert_not_called()

    @patch('core.database.logger')
    @patch('core.database.SessionLocal')
    def test_get_db_context_domain_error_not_logged(self, mock_session_local, mock_logger):
        """Domain errors roll back without an error log."""
        mock_session = MagicMock()
        mock_session_local.return_value = mock_session

        with pytest.raises(NotFoundError):
            with get_db_context():
                raise NotFoundError("Booking not found: 1")

        mock_session.rollback.assert_called_once()
        mock_logger.exception.assert_not_called()

    @patch('core.database.Base')
    @patch('core.database.engine')
    def test_create_tables_success(self, mock_engine, mock_base):
        """Test successful table creation."""
        mock_metadata = MagicMock()
        mock_base.metadata = mock_metadata

        create_tables()

        mock_metadata.create_all.assert_called_once_with(bind=mock_engine)

    @patch('core.database.Base')
    @patch('core.database.engine')
    def test_create_tables_with_exception(self, mock_engine, mock_base):
        """Test table creation with SQLAlchemy error."""
        mock_metadata = MagicMock()
        mock_metadata.create_all.side_effect = SQLAlchemyError("Test error")
        mock_base.metadata = mock_metadata

        with pytest.raises(SQLAlchemyError):
            create_tables()

    @patch('core.database.Base')
    @patch('core.database.engine')
    def test_drop_tables_success(self, mock_engine, mock_base):
        """Test successful table dropping."""
        mock_metadata = MagicMock()
        mock_base.metadata = mock_metadata

        drop_tables()

        mock_metadata.drop_all.assert_called_once_with(bind=mock_engine)


class TestTimestampListeners:
    """Test cases for the insert/update timestamp listeners."""

    def test_insert_and_update_stamp_last_updated(self, db_session):
        pool = ResourcePool(
            hospital_id=HOSPITAL_ID, resource_type="beds", total=3, available=3,
            occupied=0, reserved=0, maintenance=0, updated_by=STAFF_ID,
        )
        db_session.add(pool)
        db_session.commit()
        inserted_at = pool.last_updated

        assert inserted_at is not None
        assert pool.created_at is not None

        pool.available = 2
        pool.maintenance = 1
        db_session.commit()

        assert pool.last_updated >= inserted_at
