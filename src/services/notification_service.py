"""
Booking notification service.

Notifications are handed to a pluggable notifier after the booking
transaction has committed. Delivery (push, SMS, email) lives outside the
core; failures are logged and never propagate to the caller.
"""

import logging
from typing import Any, Dict, Optional, Protocol

from models import Booking
from shared_types.enums import NotificationEvent

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    """Delivery collaborator."""

    def notify(
        self,
        event: NotificationEvent,
        booking_id: int,
        recipient_user_id: int,
        details: Dict[str, Any],
    ) -> None:
        ...


class LoggingNotifier:
    """Default notifier: records the event in the application log."""

    def notify(
        self,
        event: NotificationEvent,
        booking_id: int,
        recipient_user_id: int,
        details: Dict[str, Any],
    ) -> None:
        logger.info(f"Notification '{event.value}' for booking {booking_id} to user {recipient_user_id}")


_notifier: Notifier = LoggingNotifier()


def set_notifier(notifier: Optional[Notifier]) -> None:
    """Install the delivery collaborator. None restores the logging notifier."""
    global _notifier
    _notifier = notifier if notifier is not None else LoggingNotifier()


def get_notifier() -> Notifier:
    return _notifier


class BookingNotificationService:
    """Service for post-commit booking notifications."""

    @staticmethod
    def _build_details(booking: Booking, extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        details: Dict[str, Any] = {
            'hospital_id': booking.hospital_id,
            'resource_type': booking.resource_type,
            'status': booking.status,
            'patient_name': booking.patient_name,
            'resources_allocated': booking.resources_allocated,
            'scheduled_date': booking.scheduled_date,
        }
        if extra:
            details.update(extra)
        return details

    @staticmethod
    def send(
        event: NotificationEvent,
        booking: Booking,
        extra: Optional[Dict[str, Any]] = None
    ) -> bool:
        """
        Notify the booking's user of a committed transition.

        Returns:
            True if the notifier accepted the event, False if it failed
        """
        try:
            get_notifier().notify(
                event,
                booking.id,
                booking.user_id,
                BookingNotificationService._build_details(booking, extra),
            )
            return True
        except Exception as e:
            logger.exception(f"Failed to send '{event.value}' notification for booking {booking.id}: {e}")
            return False

    @staticmethod
    def send_approval(booking: Booking) -> bool:
        return BookingNotificationService.send(NotificationEvent.APPROVED, booking, {
            'approved_by': booking.approved_by,
            'expires_at': booking.expires_at,
            'notes': booking.authority_notes,
        })

    @staticmethod
    def send_decline(booking: Booking, alternative_suggestions: Optional[list[str]] = None) -> bool:
        return BookingNotificationService.send(NotificationEvent.DECLINED, booking, {
            'reason': booking.decline_reason,
            'notes': booking.authority_notes,
            'alternative_suggestions': list(alternative_suggestions or []),
        })

    @staticmethod
    def send_completion(booking: Booking) -> bool:
        return BookingNotificationService.send(NotificationEvent.COMPLETED, booking, {
            'completed_by': booking.completed_by,
        })

    @staticmethod
    def send_cancellation(booking: Booking) -> bool:
        return BookingNotificationService.send(NotificationEvent.CANCELLED, booking, {
            'reason': booking.cancellation_reason,
            'was_approved': booking.was_approved_when_cancelled,
        })
