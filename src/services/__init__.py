"""
Services package for the booking core's business logic.

Each service is a class of static methods taking a SQLAlchemy session as the
first argument.
"""

from .resource_audit_service import ResourceAuditService
from .booking_history_service import BookingStatusHistoryService
from .resource_pool_service import ResourcePoolService
from .booking_service import BookingService
from .booking_approval_service import BookingApprovalService
from .balance_ledger_service import BalanceLedgerService
from .payment_service import PaymentService
from .notification_service import BookingNotificationService
from .polling_service import PollingService

__all__ = [
    "ResourceAuditService",
    "BookingStatusHistoryService",
    "ResourcePoolService",
    "BookingService",
    "BookingApprovalService",
    "BalanceLedgerService",
    "PaymentService",
    "BookingNotificationService",
    "PollingService",
]
