# pyright: reportMissingTypeStubs=false
"""
Hospital Booking Core worker

Runs the background jobs of the booking core:
- Booking expiry sweep (cancels pending/approved bookings past expires_at)
- Daily audit ledger retention cleanup

Booking operations themselves are called in-process by the host
application through the services package.
"""

import asyncio
import logging
import signal
from typing import Optional

from services.booking_expiry_scheduler import start_booking_expiry_scheduler, stop_booking_expiry_scheduler
from services.cleanup_scheduler import start_cleanup_scheduler, stop_cleanup_scheduler

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler()],
)

logger = logging.getLogger(__name__)


async def run_worker(stop_event: Optional[asyncio.Event] = None) -> None:
    """Start both schedulers and wait until interrupted (or stop_event is set)."""
    logger.info("🚀 Starting hospital booking worker")

    if stop_event is None:
        stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Signal handlers are unavailable on some platforms (e.g. Windows)
            pass

    try:
        await start_booking_expiry_scheduler()
        logger.info("✅ Booking expiry scheduler started")
    except Exception as e:
        logger.exception(f"❌ Failed to start booking expiry scheduler: {e}")

    try:
        await start_cleanup_scheduler()
        logger.info("✅ Ledger cleanup scheduler started")
    except Exception as e:
        logger.exception(f"❌ Failed to start cleanup scheduler: {e}")

    try:
        await stop_event.wait()
    finally:
        try:
            await stop_booking_expiry_scheduler()
        except Exception as e:
            logger.exception(f"❌ Error stopping booking expiry scheduler: {e}")
        try:
            await stop_cleanup_scheduler()
        except Exception as e:
            logger.exception(f"❌ Error stopping cleanup scheduler: {e}")
        logger.info("🛑 Hospital booking worker stopped")


def main() -> None:
    try:
        asyncio.run(run_worker())
    except KeyboardInterrupt:
        logger.info("Interrupted")


if __name__ == "__main__":
    main()
