"""
Booking cleanup service: deletes pending bookings past their expiry and
sends reminders for upcoming confirmed games.

Background worker that polls every 5 minutes by default. Each pass also
removes used or expired password reset tokens.
"""

import asyncio
import logging
import os
from typing import Dict, Optional

from hoa_courts.database import db
from hoa_courts.services import booking_service, password_reset_service

logger = logging.getLogger(__name__)

# How often the worker sweeps for expired bookings (seconds)
POLL_INTERVAL_SECONDS = int(os.getenv("BOOKING_CLEANUP_INTERVAL_SECONDS", "300"))


class BookingCleanupService:
    """Background service that removes expired pending bookings."""

    def __init__(self, interval_seconds: float = POLL_INTERVAL_SECONDS):
        self.interval_seconds = interval_seconds
        self._worker_task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    @property
    def is_running(self) -> bool:
        return self._worker_task is not None and not self._worker_task.done()

    def start(self) -> None:
        """Start the background cleanup worker."""
        if not self.is_running:
            self._stop_event.clear()
            self._worker_task = asyncio.create_task(self._poll_loop())
            logger.info("Booking cleanup worker started")

    def stop(self) -> None:
        """Stop the background cleanup worker."""
        self._stop_event.set()
        if self._worker_task and not self._worker_task.done():
            self._worker_task.cancel()
            logger.info("Booking cleanup worker stopped")

    async def _poll_loop(self) -> None:
        """Main loop: sweep, then wait for the interval. Repeats until stopped."""
        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"Error in booking cleanup worker: {e}", exc_info=True)

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
                break
            except asyncio.TimeoutError:
                pass

    async def run_once(self) -> Dict[str, int]:
        """
        Run a single sweep.

        Returns:
            {"bookings_deleted": <count>, "tokens_deleted": <count>, "reminders_sent": <count>}
        """
        async with db.AsyncSessionLocal() as session:
            bookings_deleted = await booking_service.delete_expired_bookings(session)

        tokens_deleted = 0
        try:
            async with db.AsyncSessionLocal() as session:
                tokens_deleted = await password_reset_service.cleanup_expired_tokens(session)
        except Exception as e:
            logger.warning(f"Failed to clean up password reset tokens: {e}")

        reminders_sent = 0
        try:
            async with db.AsyncSessionLocal() as session:
                reminders = await booking_service.claim_due_reminders(session)
            # Notifications open their own sessions
            reminders_sent = await booking_service.dispatch_reminders(reminders)
        except Exception as e:
            logger.warning(f"Failed to send booking reminders: {e}")

        if bookings_deleted or tokens_deleted:
            logger.info(
                f"Cleanup pass removed {bookings_deleted} booking(s) and {tokens_deleted} reset token(s)"
            )
        return {
            "bookings_deleted": bookings_deleted,
            "tokens_deleted": tokens_deleted,
            "reminders_sent": reminders_sent,
        }


# Global singleton
_cleanup_service = BookingCleanupService()


def get_booking_cleanup_service() -> BookingCleanupService:
    """Get the global booking cleanup service instance."""
    return _cleanup_service
