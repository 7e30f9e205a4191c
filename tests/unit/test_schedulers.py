"""
Unit tests for the booking expiry and ledger cleanup schedulers.
"""

from contextlib import contextmanager
from datetime import timedelta
from unittest.mock import patch

import pytest

from services.booking_expiry_scheduler import BookingExpiryScheduler
from services.booking_service import BookingService
from services.cleanup_scheduler import CleanupScheduler
from services.resource_audit_service import ResourceAuditService
from utils.datetime_utils import utc_now
from tests.conftest import HOSPITAL_ID


def _db_context_for(db_session):
    @contextmanager
    def mock_db_context():
        yield db_session
    return mock_db_context


class TestBookingExpiryScheduler:
    """Test cases for BookingExpiryScheduler."""

    def test_sweep_cancels_expired_bookings(self, db_session, pool_factory, booking_factory):
        pool_factory("icu", total=5)
        expired = booking_factory(expires_at=utc_now() - timedelta(minutes=5))
        fresh = booking_factory(expires_at=utc_now() + timedelta(hours=5))

        with patch('services.booking_expiry_scheduler.get_db_context', _db_context_for(db_session)):
            result = BookingExpiryScheduler()._execute_sweep()

        assert result.found == 1
        assert result.expired_booking_ids == [expired.id]
        assert result.failures == []
        assert BookingService.get_booking(db_session, expired.id).status == "cancelled"
        assert BookingService.get_booking(db_session, fresh.id).status == "pending"

    def test_sweep_errors_are_swallowed(self, db_session):
        with patch('services.booking_expiry_scheduler.get_db_context', _db_context_for(db_session)), \
             patch('services.booking_expiry_scheduler.BookingApprovalService.process_expired_bookings',
                   side_effect=RuntimeError("database unavailable")):
            result = BookingExpiryScheduler()._execute_sweep()

        assert result is None

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        scheduler = BookingExpiryScheduler(interval_minutes=2)

        await scheduler.start_scheduler()
        try:
            job = scheduler.scheduler.get_job("booking_expiry_sweep")
            assert job is not None
            assert job.max_instances == 1
            # Starting twice is a no-op
            await scheduler.start_scheduler()
            assert len(scheduler.scheduler.get_jobs()) == 1
        finally:
            await scheduler.stop_scheduler()

        assert not scheduler._is_started


class TestCleanupScheduler:
    """Test cases for CleanupScheduler."""

    def test_cleanup_deletes_old_ledger_entries(self, db_session, pool_factory, booking_factory):
        pool_factory("icu", total=5)
        booking_factory()
        for entry in ResourceAuditService.get_by_hospital(db_session, HOSPITAL_ID):
            entry.timestamp = utc_now() - timedelta(days=40)
        db_session.commit()

        with patch('services.cleanup_scheduler.get_db_context', _db_context_for(db_session)):
            results = CleanupScheduler(retention_days=30)._execute_cleanup_logic()

        assert results == {'resource_audit_log': 1, 'booking_status_history': 0}

    def test_cleanup_errors_are_swallowed(self, db_session):
        with patch('services.cleanup_scheduler.get_db_context', _db_context_for(db_session)), \
             patch('services.cleanup_scheduler.ResourceAuditService.cleanup',
                   side_effect=RuntimeError("database unavailable")):
            results = CleanupScheduler()._execute_cleanup_logic()

        assert results == {}

    @pytest.mark.asyncio
    async def test_start_registers_daily_job(self):
        scheduler = CleanupScheduler()

        await scheduler.start_scheduler()
        try:
            assert scheduler.scheduler.get_job("ledger_cleanup") is not None
        finally:
            await scheduler.stop_scheduler()
