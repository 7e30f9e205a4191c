"""
Cleanup scheduler for the audit ledgers.

This scheduler runs daily to delete resource audit entries and booking status
history entries older than AUDIT_RETENTION_DAYS. Ledger cleanup is a
maintenance operation and never runs inside a booking transaction.
"""

import asyncio
import logging
from typing import Dict, Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler  # type: ignore
from apscheduler.triggers.cron import CronTrigger  # type: ignore

from core.config import AUDIT_RETENTION_DAYS
from core.constants import CLEANUP_HOUR
from core.database import get_db_context
from services.booking_history_service import BookingStatusHistoryService
from services.resource_audit_service import ResourceAuditService
from utils.datetime_utils import UTC

logger = logging.getLogger(__name__)

# Global singleton instance
_cleanup_scheduler: Optional['CleanupScheduler'] = None


class CleanupScheduler:
    """
    Scheduler for ledger retention cleanup.

    Runs daily at CLEANUP_HOUR (UTC).
    """

    def __init__(self, retention_days: int = AUDIT_RETENTION_DAYS):
        """
        Initialize the cleanup scheduler.

        Note: Database sessions are created fresh for each scheduler run
        to avoid stale session issues.
        """
        self.retention_days = retention_days
        self.scheduler = AsyncIOScheduler(timezone=UTC)
        self._is_started = False

    async def start_scheduler(self) -> None:
        """Start the background scheduler for ledger cleanup."""
        if self._is_started:
            logger.warning("Cleanup scheduler is already started")
            return

        self.scheduler.add_job(  # type: ignore
            self._run_cleanup,
            CronTrigger(hour=CLEANUP_HOUR, minute=0),
            id="ledger_cleanup",
            name="Audit ledger retention cleanup",
            replace_existing=True,
            misfire_grace_time=3600,  # Allow 1 hour grace time if the worker was down
        )

        self.scheduler.start()
        self._is_started = True
        logger.info(f"Cleanup scheduler started (runs daily at {CLEANUP_HOUR}:00 UTC)")

    async def stop_scheduler(self) -> None:
        """Stop the background scheduler."""
        if self._is_started:
            self.scheduler.shutdown(wait=True)
            self._is_started = False
            logger.info("Cleanup scheduler stopped")

    async def _run_cleanup(self) -> None:
        """
        Run cleanup tasks.

        Offloads the blocking database work to a thread so the event loop
        keeps serving other jobs.
        """
        logger.info("Starting scheduled ledger cleanup...")
        await asyncio.to_thread(self._execute_cleanup_logic)

    def _execute_cleanup_logic(self) -> Dict[str, int]:
        """Delete expired ledger entries. Errors are logged, never raised."""
        results: Dict[str, int] = {}
        with get_db_context() as db:
            try:
                results['resource_audit_log'] = ResourceAuditService.cleanup(db, self.retention_days)
                results['booking_status_history'] = BookingStatusHistoryService.cleanup(db, self.retention_days)
                logger.info(
                    f"Ledger cleanup completed: {results['resource_audit_log']} audit entries, "
                    f"{results['booking_status_history']} history entries deleted"
                )
            except Exception as e:
                logger.exception(f"Error during scheduled ledger cleanup: {e}")
                db.rollback()
                # Don't re-raise - allow scheduler to continue
        return results


def get_cleanup_scheduler() -> CleanupScheduler:
    """
    Get the global cleanup scheduler instance.

    Returns:
        CleanupScheduler: The global scheduler instance
    """
    global _cleanup_scheduler
    if _cleanup_scheduler is None:
        _cleanup_scheduler = CleanupScheduler()
    return _cleanup_scheduler


async def start_cleanup_scheduler() -> None:
    """Start the global cleanup scheduler."""
    scheduler = get_cleanup_scheduler()
    await scheduler.start_scheduler()


async def stop_cleanup_scheduler() -> None:
    """Stop the global cleanup scheduler."""
    global _cleanup_scheduler
    if _cleanup_scheduler:
        await _cleanup_scheduler.stop_scheduler()
