"""
Booking expiry scheduler.

Periodically cancels pending/approved bookings whose expires_at has passed.
The sweep cadence is a deployment parameter (EXPIRY_SWEEP_INTERVAL_MINUTES);
correctness does not depend on it because each expiry goes through the
normal guarded cancel transition.
"""

import asyncio
import logging
from typing import Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler  # type: ignore
from apscheduler.triggers.interval import IntervalTrigger  # type: ignore

from core.config import EXPIRY_SWEEP_INTERVAL_MINUTES
from core.database import get_db_context
from services.booking_approval_service import BookingApprovalService
from shared_types.bookings import ExpirySweepResult
from utils.datetime_utils import UTC

logger = logging.getLogger(__name__)

# Global singleton instance
_expiry_scheduler: Optional['BookingExpiryScheduler'] = None


class BookingExpiryScheduler:
    """Scheduler running the booking expiry sweep at a fixed interval."""

    def __init__(self, interval_minutes: int = EXPIRY_SWEEP_INTERVAL_MINUTES):
        self.interval_minutes = interval_minutes
        self.scheduler = AsyncIOScheduler(timezone=UTC)
        self._is_started = False

    async def start_scheduler(self) -> None:
        """Start the background expiry sweep."""
        if self._is_started:
            logger.warning("Booking expiry scheduler is already started")
            return

        self.scheduler.add_job(  # type: ignore
            self._run_sweep,
            IntervalTrigger(minutes=self.interval_minutes),
            id="booking_expiry_sweep",
            name="Cancel expired bookings",
            replace_existing=True,
            max_instances=1,  # Never overlap sweeps
            coalesce=True,
        )

        self.scheduler.start()
        self._is_started = True
        logger.info(f"Booking expiry scheduler started (every {self.interval_minutes} minutes)")

    async def stop_scheduler(self) -> None:
        """Stop the background expiry sweep."""
        if self._is_started:
            self.scheduler.shutdown(wait=True)
            self._is_started = False
            logger.info("Booking expiry scheduler stopped")

    async def _run_sweep(self) -> None:
        await asyncio.to_thread(self._execute_sweep)

    def _execute_sweep(self) -> Optional[ExpirySweepResult]:
        """Run one sweep in a fresh session. Errors are logged, never raised."""
        with get_db_context() as db:
            try:
                result = BookingApprovalService.process_expired_bookings(db)
                if result.found:
                    logger.info(
                        f"Expiry sweep processed {result.processed} of {result.found} bookings "
                        f"({len(result.failures)} failures)"
                    )
                return result
            except Exception as e:
                logger.exception(f"Error during booking expiry sweep: {e}")
                db.rollback()
                # Don't re-raise - allow scheduler to continue
                return None


def get_booking_expiry_scheduler() -> BookingExpiryScheduler:
    global _expiry_scheduler
    if _expiry_scheduler is None:
        _expiry_scheduler = BookingExpiryScheduler()
    return _expiry_scheduler


async def start_booking_expiry_scheduler() -> None:
    """Start the global booking expiry scheduler."""
    scheduler = get_booking_expiry_scheduler()
    await scheduler.start_scheduler()


async def stop_booking_expiry_scheduler() -> None:
    """Stop the global booking expiry scheduler."""
    global _expiry_scheduler
    if _expiry_scheduler:
        await _expiry_scheduler.stop_scheduler()
