# Package initialization
# Import all models to ensure relationships are properly established
from .resource_pool import ResourcePool
from .booking import Booking
from .booking_status_history import BookingStatusHistoryEntry
from .resource_audit_log import ResourceAuditLogEntry
from .user_balance import UserBalance
from .balance_transaction import BalanceTransaction

__all__ = [
    "ResourcePool",
    "Booking",
    "BookingStatusHistoryEntry",
    "ResourceAuditLogEntry",
    "UserBalance",
    "BalanceTransaction",
]
