"""
Shared type definitions for the booking core.

This package contains enums, dataclasses and pydantic models that are used
across multiple services.
"""

from shared_types.enums import (
    ResourceType,
    Urgency,
    BookingStatus,
    BookingEvent,
    PaymentStatus,
    ResourceChangeType,
    ReleaseCause,
    BalanceTransactionType,
    NotificationEvent,
    TERMINAL_STATUSES,
)
from shared_types.booking_details import (
    ApprovedDetails,
    DeclinedDetails,
    CompletedDetails,
    CancelledDetails,
    BookingDetails,
)

__all__ = [
    "ResourceType",
    "Urgency",
    "BookingStatus",
    "BookingEvent",
    "PaymentStatus",
    "ResourceChangeType",
    "ReleaseCause",
    "BalanceTransactionType",
    "NotificationEvent",
    "TERMINAL_STATUSES",
    "ApprovedDetails",
    "DeclinedDetails",
    "CompletedDetails",
    "CancelledDetails",
    "BookingDetails",
]
