"""
Enumerations shared by models and services.

Values are the strings persisted in the database and exchanged with
collaborators, so they must never be renamed.
"""

from enum import Enum


class ResourceType(str, Enum):
    """Hospital resource categories tracked by a resource pool."""
    BEDS = "beds"
    ICU = "icu"
    OPERATION_THEATRES = "operationTheatres"


class Urgency(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class BookingStatus(str, Enum):
    """Stored booking states. Expiry is a cancellation, not a separate state."""
    PENDING = "pending"
    APPROVED = "approved"
    DECLINED = "declined"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    BookingStatus.DECLINED,
    BookingStatus.COMPLETED,
    BookingStatus.CANCELLED,
})


class BookingEvent(str, Enum):
    """Events that drive the booking state machine."""
    CREATE = "create"
    APPROVE = "approve"
    DECLINE = "decline"
    COMPLETE = "complete"
    CANCEL = "cancel"
    EXPIRE = "expire"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"


class ResourceChangeType(str, Enum):
    """Cause recorded on every resource audit log entry."""
    MANUAL_UPDATE = "manual_update"
    BOOKING_APPROVED = "booking_approved"
    BOOKING_COMPLETED = "booking_completed"
    BOOKING_CANCELLED = "booking_cancelled"
    SYSTEM_ADJUSTMENT = "system_adjustment"


class ReleaseCause(str, Enum):
    """Why allocated capacity goes back to the pool."""
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def change_type(self) -> ResourceChangeType:
        if self is ReleaseCause.COMPLETED:
            return ResourceChangeType.BOOKING_COMPLETED
        return ResourceChangeType.BOOKING_CANCELLED


class BalanceTransactionType(str, Enum):
    BOOKING_PAYMENT = "booking_payment"
    PAYMENT_RECEIVED = "payment_received"
    SERVICE_CHARGE = "service_charge"
    REFUND_PROCESSED = "refund_processed"
    WITHDRAWAL = "withdrawal"
    ADJUSTMENT = "adjustment"


class NotificationEvent(str, Enum):
    """Events handed to the notification collaborator after commit."""
    APPROVED = "approved"
    DECLINED = "declined"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
