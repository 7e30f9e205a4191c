"""
Payment service tying booking payments to the balance ledger.

Capture debits the booking's user and distributes the amount: the hospital
authority account is credited with the hospital's share (payment_received)
and the platform account with the service charge (service_charge). Refund
reverses both credits and returns the full amount to the user.

Each operation runs as one transaction across the booking row and every
ledger entry it writes: either all of them change, or none do.
"""

import logging
from decimal import Decimal
from typing import Iterable, Optional, Tuple, Union

from sqlalchemy import update
from sqlalchemy.orm import Session

from core import config
from core.constants import MAX_SERVICE_CHARGE_RATE
from core.exceptions import InvalidStateTransitionError, ValidationError
from models import Booking
from services.balance_ledger_service import BalanceLedgerService, to_money
from services.booking_service import BookingService
from shared_types.balance import BalanceChange, PaymentResult
from shared_types.enums import BalanceTransactionType, BookingStatus, PaymentStatus
from utils.datetime_utils import utc_now

logger = logging.getLogger(__name__)

PAYABLE_STATUSES = frozenset({
    BookingStatus.PENDING.value,
    BookingStatus.APPROVED.value,
    BookingStatus.COMPLETED.value,
})
REFUNDABLE_STATUSES = frozenset({BookingStatus.CANCELLED.value, BookingStatus.DECLINED.value})

_DISTRIBUTION_TYPES = [BalanceTransactionType.PAYMENT_RECEIVED, BalanceTransactionType.SERVICE_CHARGE]


def booking_reference(booking_id: int) -> str:
    return f"booking:{booking_id}"


def split_payment(
    amount: Union[Decimal, int, float, str],
    rate: Optional[Union[Decimal, str]] = None
) -> Tuple[Decimal, Decimal]:
    """
    Split a payment into (hospital_amount, service_charge).

    The service charge is rounded to cents and the hospital receives the
    remainder, so the two always add up to the amount.

    Raises:
        ValidationError: If the rate is outside 0..MAX_SERVICE_CHARGE_RATE
    """
    rate = Decimal(str(config.SERVICE_CHARGE_RATE if rate is None else rate))
    if rate < 0 or rate > Decimal(MAX_SERVICE_CHARGE_RATE):
        raise ValidationError(
            f"Invalid service charge rate: {rate}. Must be between 0 and {MAX_SERVICE_CHARGE_RATE}"
        )
    total = to_money(amount)
    service_charge = to_money(total * rate)
    return total - service_charge, service_charge


class PaymentService:
    """Service for booking payment capture, revenue distribution and refunds."""

    @staticmethod
    def _set_payment_status(
        db: Session,
        booking: Booking,
        expected: PaymentStatus,
        target: PaymentStatus,
        event: str,
        allowed_statuses: Iterable[str],
        transaction_id: Optional[str] = None
    ) -> None:
        """Guarded on both payment status and booking status."""
        values = {'payment_status': target.value, 'updated_at': utc_now()}
        if transaction_id is not None:
            values['transaction_id'] = transaction_id
        result = db.execute(
            update(Booking)
            .where(
                Booking.id == booking.id,
                Booking.payment_status == expected.value,
                Booking.status.in_(list(allowed_statuses)),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:  # type: ignore[attr-defined]
            status, payment_status = db.query(Booking.status, Booking.payment_status).filter(
                Booking.id == booking.id
            ).one()
            logger.warning(
                f"Lost {event} race on booking {booking.id}: status {status}, payment status {payment_status}"
            )
            if payment_status != expected.value:
                raise InvalidStateTransitionError(
                    payment_status, event,
                    f"Cannot {event} payment of booking {booking.id} with payment status: {payment_status}"
                )
            raise InvalidStateTransitionError(
                status, event, f"Cannot {event} payment of booking {booking.id} with status: {status}"
            )

    @staticmethod
    def capture_booking_payment(db: Session, booking_id: int, processed_by: int) -> PaymentResult:
        """
        Debit the booking's user for payment_amount, distribute it and mark
        the booking paid.

        Raises:
            NotFoundError: If the booking, the user's account, the hospital's
                revenue account or the platform account does not exist
            InvalidStateTransitionError: If the booking is cancelled or
                declined, or its payment is already paid or refunded
            ValidationError: If the booking has no positive amount to capture
                or the service charge rate is invalid
            InsufficientBalanceError: If the user cannot cover the amount
        """
        try:
            booking = BookingService.get_booking(db, booking_id, for_update=True)
            if booking.payment_status != PaymentStatus.PENDING.value:
                raise InvalidStateTransitionError(
                    booking.payment_status, "capture",
                    f"Booking {booking_id} payment already {booking.payment_status}"
                )
            if booking.status not in PAYABLE_STATUSES:
                raise InvalidStateTransitionError(
                    booking.status, "capture",
                    f"Cannot capture payment of booking {booking_id} with status: {booking.status}"
                )
            if booking.payment_amount is None or booking.payment_amount <= 0:
                raise ValidationError(f"Booking {booking_id} has no payment amount to capture")

            reference = booking_reference(booking_id)
            amount = to_money(booking.payment_amount)
            hospital_amount, service_charge = split_payment(amount)
            hospital_account = BalanceLedgerService.get_hospital_account(db, booking.hospital_id)
            platform_account = BalanceLedgerService.get_account(db, config.PLATFORM_ACCOUNT_USER_ID)

            payer = BalanceLedgerService.debit(
                db,
                user_id=booking.user_id,
                amount=amount,
                description=f"Payment for booking {booking_id}",
                transaction_type=BalanceTransactionType.BOOKING_PAYMENT,
                reference_id=reference,
                processed_by=processed_by,
                commit=False,
            )
            hospital: Optional[BalanceChange] = None
            if hospital_amount > 0:
                hospital = BalanceLedgerService.credit(
                    db,
                    user_id=hospital_account.user_id,
                    amount=hospital_amount,
                    description=f"Revenue from booking {booking_id}",
                    transaction_type=BalanceTransactionType.PAYMENT_RECEIVED,
                    reference_id=reference,
                    processed_by=processed_by,
                    commit=False,
                )
            platform: Optional[BalanceChange] = None
            if service_charge > 0:
                platform = BalanceLedgerService.credit(
                    db,
                    user_id=platform_account.user_id,
                    amount=service_charge,
                    description=f"Service charge from booking {booking_id} - Hospital: {booking.hospital_id}",
                    transaction_type=BalanceTransactionType.SERVICE_CHARGE,
                    reference_id=reference,
                    processed_by=processed_by,
                    commit=False,
                )
            PaymentService._set_payment_status(
                db, booking, PaymentStatus.PENDING, PaymentStatus.PAID, "capture",
                allowed_statuses=PAYABLE_STATUSES,
                transaction_id=str(payer.transaction_id),
            )
            db.commit()
        except Exception:
            db.rollback()
            raise

        db.refresh(booking)
        logger.info(
            f"Captured payment of {amount} for booking {booking_id}: "
            f"hospital {hospital_amount}, service charge {service_charge}"
        )
        return PaymentResult(
            booking_id=booking_id,
            amount=amount,
            hospital_amount=hospital_amount,
            service_charge=service_charge,
            payer=payer,
            hospital=hospital,
            platform=platform,
        )

    @staticmethod
    def refund_booking_payment(
        db: Session,
        booking_id: int,
        processed_by: int,
        reason: Optional[str] = None
    ) -> PaymentResult:
        """
        Reverse a paid, cancelled or declined booking's payment.

        The hospital and platform credits written at capture are debited back
        and the full amount is credited to the booking's user.

        Raises:
            NotFoundError: If the booking or an affected account does not exist
            InvalidStateTransitionError: If the booking is not paid, or is not
                cancelled/declined
            InsufficientBalanceError: If the hospital or platform account no
                longer holds its share
        """
        try:
            booking = BookingService.get_booking(db, booking_id, for_update=True)
            if booking.status not in REFUNDABLE_STATUSES:
                raise InvalidStateTransitionError(
                    booking.status, "refund",
                    f"Cannot refund booking {booking_id} with status: {booking.status}"
                )
            if booking.payment_status != PaymentStatus.PAID.value:
                raise InvalidStateTransitionError(
                    booking.payment_status, "refund",
                    f"Cannot refund booking {booking_id} with payment status: {booking.payment_status}"
                )

            reference = booking_reference(booking_id)
            amount = to_money(booking.payment_amount)
            description = reason or f"Refund for booking {booking_id}"
            hospital: Optional[BalanceChange] = None
            platform: Optional[BalanceChange] = None
            hospital_amount = Decimal("0.00")
            service_charge = Decimal("0.00")

            for entry in BalanceLedgerService.get_entries_by_reference(db, reference, _DISTRIBUTION_TYPES):
                share = to_money(entry.amount)
                if share <= 0:
                    continue
                reversal = BalanceLedgerService.debit(
                    db,
                    user_id=entry.user_id,
                    amount=share,
                    description=description,
                    transaction_type=BalanceTransactionType.REFUND_PROCESSED,
                    reference_id=reference,
                    processed_by=processed_by,
                    commit=False,
                )
                if entry.transaction_type == BalanceTransactionType.PAYMENT_RECEIVED.value:
                    hospital, hospital_amount = reversal, hospital_amount + share
                else:
                    platform, service_charge = reversal, service_charge + share

            payer = BalanceLedgerService.credit(
                db,
                user_id=booking.user_id,
                amount=amount,
                description=description,
                transaction_type=BalanceTransactionType.REFUND_PROCESSED,
                reference_id=reference,
                processed_by=processed_by,
                commit=False,
            )
            PaymentService._set_payment_status(
                db, booking, PaymentStatus.PAID, PaymentStatus.REFUNDED, "refund",
                allowed_statuses=REFUNDABLE_STATUSES,
            )
            db.commit()
        except Exception:
            db.rollback()
            raise

        db.refresh(booking)
        logger.info(
            f"Refunded {amount} for booking {booking_id}: "
            f"hospital {hospital_amount}, service charge {service_charge} reversed"
        )
        return PaymentResult(
            booking_id=booking_id,
            amount=amount,
            hospital_amount=hospital_amount,
            service_charge=service_charge,
            payer=payer,
            hospital=hospital,
            platform=platform,
        )
