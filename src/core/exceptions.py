"""
Domain error taxonomy for the booking core.

Every error raised here is raised before any side effect becomes visible:
callers either get the committed result or one of these exceptions with the
session rolled back.
"""

from decimal import Decimal
from typing import Optional


class BookingCoreError(Exception):
    """Base class for all booking core errors."""
    pass


class ValidationError(BookingCoreError, ValueError):
    """Missing or malformed input."""
    pass


class NotFoundError(BookingCoreError, LookupError):
    """Booking, resource pool or balance account does not exist."""
    pass


class InvalidStateTransitionError(BookingCoreError):
    """The booking's current status does not permit the requested event."""

    def __init__(self, current_status: Optional[str], event: str, message: Optional[str] = None):
        self.current_status = current_status
        self.event = event
        super().__init__(
            message or f"Cannot {event} booking with status: {current_status}"
        )


class InsufficientResourcesError(BookingCoreError):
    """Allocation would drive the pool's available count below zero."""

    def __init__(self, resource_type: str, requested: int, available: Optional[int]):
        self.resource_type = resource_type
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient {resource_type} available: requested {requested}, "
            f"available {available if available is not None else 0}"
        )


class InsufficientBalanceError(BookingCoreError):
    """Debit amount exceeds the user's current balance."""

    def __init__(self, user_id: int, requested: Decimal, balance: Decimal):
        self.user_id = user_id
        self.requested = requested
        self.balance = balance
        super().__init__(
            f"Insufficient balance for user {user_id}: requested {requested}, balance {balance}"
        )
