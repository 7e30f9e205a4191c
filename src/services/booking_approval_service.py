"""
Booking approval service: the booking lifecycle orchestrator.

Every transition follows the same shape:
1. Lock the booking and check the transition against the state machine
   (InvalidStateTransitionError, no side effects)
2. In one transaction: guarded status update, pool allocate/release,
   status history entry
3. Commit, then notify best-effort

The status update is guarded by `WHERE status = <expected>`, so when two
callers race on the same booking exactly one wins and the other gets
InvalidStateTransitionError. Any failure inside step 2 rolls back the
whole operation.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Union

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.config import DEFAULT_BOOKING_EXPIRY_HOURS, SYSTEM_USER_ID
from core.constants import EXPIRED_REASON
from core.exceptions import (
    BookingCoreError,
    InsufficientResourcesError,
    InvalidStateTransitionError,
    ValidationError,
)
from models import Booking
from services.booking_history_service import BookingStatusHistoryService
from services.booking_service import BookingService
from services.booking_state_machine import next_status
from services.notification_service import BookingNotificationService
from services.resource_pool_service import ResourcePoolService
from shared_types.bookings import ApprovalOptions, DeclineOptions, ExpirySweepResult, SweepFailure
from shared_types.enums import BookingEvent, BookingStatus, ReleaseCause
from utils.datetime_utils import ensure_utc, hours_from, utc_now
from utils.validation import coerce_model

logger = logging.getLogger(__name__)


class BookingApprovalService:
    """Service for booking state transitions and the expiry sweep."""

    @staticmethod
    def _apply_transition(
        db: Session,
        booking: Booking,
        event: BookingEvent,
        expected_status: str,
        values: Dict[str, Any]
    ) -> BookingStatus:
        """
        Move the booking from expected_status to the event's target status.

        Raises:
            InvalidStateTransitionError: If the stored status is no longer
                expected_status
        """
        target = next_status(expected_status, event)
        result = db.execute(
            update(Booking)
            .where(Booking.id == booking.id, Booking.status == expected_status)
            .values(status=target.value, updated_at=utc_now(), **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:  # type: ignore[attr-defined]
            current = db.query(Booking.status).filter(Booking.id == booking.id).scalar()
            logger.warning(
                f"Lost transition race on booking {booking.id}: expected {expected_status}, found {current}"
            )
            raise InvalidStateTransitionError(current, event.value)
        return target

    @staticmethod
    def _load_for_transition(db: Session, booking_id: int, event: BookingEvent) -> Booking:
        """Lock the booking and reject events its current status does not permit."""
        booking = BookingService.get_booking(db, booking_id, for_update=True)
        try:
            next_status(booking.status, event)
        except InvalidStateTransitionError:
            logger.warning(f"Rejected {event.value} of booking {booking_id} in status {booking.status}")
            raise
        return booking

    @staticmethod
    def approve_booking(
        db: Session,
        booking_id: int,
        approved_by: int,
        options: Union[ApprovalOptions, Mapping[str, Any], None] = None
    ) -> Booking:
        """
        Approve a pending booking and allocate its resources.

        Args:
            db: Database session
            booking_id: Booking to approve
            approved_by: Approving authority
            options: notes, resources_allocated override, scheduled_date
                override, auto_allocate_resources (default True)

        Returns:
            The approved booking

        Raises:
            NotFoundError: If the booking does not exist
            InvalidStateTransitionError: If the booking is not pending
            ValidationError: If the options are invalid or the booking expired
            InsufficientResourcesError: If the pool cannot cover the claim
        """
        opts = coerce_model(ApprovalOptions, options)

        try:
            booking = BookingApprovalService._load_for_transition(db, booking_id, BookingEvent.APPROVE)
            previous_status = booking.status
            now = utc_now()

            expires_at = ensure_utc(booking.expires_at)
            if expires_at is not None and expires_at <= now:
                raise ValidationError(f"Booking {booking_id} has expired")

            quantity = opts.resources_allocated or booking.resources_allocated

            if opts.auto_allocate_resources:
                availability = ResourcePoolService.check_availability(
                    db, booking.hospital_id, booking.resource_type, quantity
                )
                if not availability.available:
                    logger.warning(f"Cannot approve booking {booking_id}: {availability.message}")
                    raise InsufficientResourcesError(
                        booking.resource_type, quantity, availability.current_available
                    )

            values: Dict[str, Any] = {
                'approved_by': approved_by,
                'approved_at': now,
                'resources_allocated': quantity,
                'allocated_quantity': quantity if opts.auto_allocate_resources else 0,
            }
            if opts.notes is not None:
                values['authority_notes'] = opts.notes
            if opts.scheduled_date is not None:
                values['scheduled_date'] = opts.scheduled_date
            if expires_at is None:
                values['expires_at'] = hours_from(
                    now, booking.estimated_duration or DEFAULT_BOOKING_EXPIRY_HOURS
                )

            new_status = BookingApprovalService._apply_transition(
                db, booking, BookingEvent.APPROVE, previous_status, values
            )

            if opts.auto_allocate_resources:
                ResourcePoolService.allocate(
                    db,
                    hospital_id=booking.hospital_id,
                    resource_type=booking.resource_type,
                    quantity=quantity,
                    booking_id=booking.id,
                    actor=approved_by,
                    reason=f"Booking {booking.id} approved",
                )

            BookingStatusHistoryService.create(
                db,
                booking_id=booking.id,
                old_status=previous_status,
                new_status=new_status.value,
                changed_by=approved_by,
                reason="Booking approved",
                notes=opts.notes,
            )
            db.commit()
        except Exception:
            db.rollback()
            raise

        db.refresh(booking)
        logger.info(
            f"Booking {booking.id} approved by {approved_by}: "
            f"{booking.allocated_quantity} {booking.resource_type} allocated"
        )
        BookingNotificationService.send_approval(booking)
        return booking

    @staticmethod
    def decline_booking(
        db: Session,
        booking_id: int,
        declined_by: int,
        reason: Optional[str],
        notes: Optional[str] = None,
        alternative_suggestions: Optional[List[str]] = None
    ) -> Booking:
        """
        Decline a pending booking. The pool is not touched.

        Alternative suggestions are appended to the authority notes.

        Raises:
            ValidationError: If reason is missing
            NotFoundError: If the booking does not exist
            InvalidStateTransitionError: If the booking is not pending
        """
        opts = coerce_model(DeclineOptions, {
            'reason': reason or "",
            'notes': notes,
            'alternative_suggestions': alternative_suggestions or [],
        })

        authority_notes = opts.notes
        if opts.alternative_suggestions:
            suggestions = "Alternative suggestions: " + "; ".join(opts.alternative_suggestions)
            authority_notes = f"{authority_notes}\n{suggestions}" if authority_notes else suggestions

        try:
            booking = BookingApprovalService._load_for_transition(db, booking_id, BookingEvent.DECLINE)
            previous_status = booking.status

            new_status = BookingApprovalService._apply_transition(
                db, booking, BookingEvent.DECLINE, previous_status, {
                    'decline_reason': opts.reason,
                    'declined_by': declined_by,
                    'declined_at': utc_now(),
                    'authority_notes': authority_notes,
                }
            )

            BookingStatusHistoryService.create(
                db,
                booking_id=booking.id,
                old_status=previous_status,
                new_status=new_status.value,
                changed_by=declined_by,
                reason=opts.reason,
                notes=authority_notes,
            )
            db.commit()
        except Exception:
            db.rollback()
            raise

        db.refresh(booking)
        logger.info(f"Booking {booking.id} declined by {declined_by}: {opts.reason}")
        BookingNotificationService.send_decline(booking, opts.alternative_suggestions)
        return booking

    @staticmethod
    def complete_booking(
        db: Session,
        booking_id: int,
        completed_by: int,
        notes: Optional[str] = None
    ) -> Booking:
        """
        Complete an approved booking and release its claim.

        Raises:
            NotFoundError: If the booking does not exist
            InvalidStateTransitionError: If the booking is not approved
        """
        try:
            booking = BookingApprovalService._load_for_transition(db, booking_id, BookingEvent.COMPLETE)
            previous_status = booking.status
            claim = booking.allocated_quantity

            new_status = BookingApprovalService._apply_transition(
                db, booking, BookingEvent.COMPLETE, previous_status, {
                    'completed_by': completed_by,
                    'completed_at': utc_now(),
                    'allocated_quantity': 0,
                }
            )

            if claim > 0:
                ResourcePoolService.release(
                    db,
                    hospital_id=booking.hospital_id,
                    resource_type=booking.resource_type,
                    quantity=claim,
                    booking_id=booking.id,
                    actor=completed_by,
                    cause=ReleaseCause.COMPLETED,
                )

            BookingStatusHistoryService.create(
                db,
                booking_id=booking.id,
                old_status=previous_status,
                new_status=new_status.value,
                changed_by=completed_by,
                reason="Booking completed",
                notes=notes,
            )
            db.commit()
        except Exception:
            db.rollback()
            raise

        db.refresh(booking)
        logger.info(f"Booking {booking.id} completed by {completed_by}: released {claim} {booking.resource_type}")
        BookingNotificationService.send_completion(booking)
        return booking

    @staticmethod
    def cancel_booking(
        db: Session,
        booking_id: int,
        cancelled_by: int,
        reason: Optional[str] = None,
        notes: Optional[str] = None,
        event: BookingEvent = BookingEvent.CANCEL
    ) -> Booking:
        """
        Cancel a pending or approved booking, releasing its claim if it holds one.

        Args:
            event: CANCEL for user/staff cancellations, EXPIRE for the sweep

        Raises:
            NotFoundError: If the booking does not exist
            InvalidStateTransitionError: If the booking is already terminal
        """
        if event not in (BookingEvent.CANCEL, BookingEvent.EXPIRE):
            raise ValidationError(f"Not a cancellation event: {event}")
        reason = reason or "Booking cancelled"

        try:
            booking = BookingApprovalService._load_for_transition(db, booking_id, event)
            previous_status = booking.status
            claim = booking.allocated_quantity
            was_approved = previous_status == BookingStatus.APPROVED.value

            new_status = BookingApprovalService._apply_transition(
                db, booking, event, previous_status, {
                    'cancelled_by': cancelled_by,
                    'cancelled_at': utc_now(),
                    'cancellation_reason': reason,
                    'was_approved_when_cancelled': was_approved,
                    'allocated_quantity': 0,
                }
            )

            if was_approved and claim > 0:
                ResourcePoolService.release(
                    db,
                    hospital_id=booking.hospital_id,
                    resource_type=booking.resource_type,
                    quantity=claim,
                    booking_id=booking.id,
                    actor=cancelled_by,
                    cause=ReleaseCause.CANCELLED,
                    reason=f"Booking {booking.id} cancelled: {reason}",
                )

            BookingStatusHistoryService.create(
                db,
                booking_id=booking.id,
                old_status=previous_status,
                new_status=new_status.value,
                changed_by=cancelled_by,
                reason=reason,
                notes=notes,
            )
            db.commit()
        except Exception:
            db.rollback()
            raise

        db.refresh(booking)
        logger.info(
            f"Booking {booking.id} cancelled by {cancelled_by} ({reason}), "
            f"was {previous_status}, released {claim if was_approved else 0}"
        )
        BookingNotificationService.send_cancellation(booking)
        return booking

    @staticmethod
    def expire_booking(db: Session, booking_id: int) -> Booking:
        """Cancel a booking as the system user with reason 'expired'."""
        return BookingApprovalService.cancel_booking(
            db, booking_id, SYSTEM_USER_ID, reason=EXPIRED_REASON, event=BookingEvent.EXPIRE
        )

    @staticmethod
    def find_expired_booking_ids(db: Session, hospital_id: Optional[int] = None) -> List[int]:
        query = db.query(Booking.id).filter(
            Booking.status.in_([BookingStatus.PENDING.value, BookingStatus.APPROVED.value]),
            Booking.expires_at.isnot(None),
            Booking.expires_at < utc_now(),
        )
        if hospital_id is not None:
            query = query.filter(Booking.hospital_id == hospital_id)
        return [booking_id for (booking_id,) in query.order_by(Booking.expires_at, Booking.id).all()]

    @staticmethod
    def process_expired_bookings(db: Session, hospital_id: Optional[int] = None) -> ExpirySweepResult:
        """
        Cancel every pending/approved booking past its expires_at.

        Each booking is its own transaction; a failure (for example a
        concurrent cancel) is recorded and the sweep continues.
        """
        booking_ids = BookingApprovalService.find_expired_booking_ids(db, hospital_id)
        db.commit()  # End the read transaction before per-booking transactions

        expired: List[int] = []
        failures: List[SweepFailure] = []
        for booking_id in booking_ids:
            try:
                BookingApprovalService.expire_booking(db, booking_id)
                expired.append(booking_id)
            except BookingCoreError as e:
                logger.warning(f"Skipped expiry of booking {booking_id}: {e}")
                failures.append(SweepFailure(booking_id=booking_id, error=str(e)))
            except SQLAlchemyError as e:
                logger.exception(f"Database error expiring booking {booking_id}: {e}")
                failures.append(SweepFailure(booking_id=booking_id, error=str(e)))

        if booking_ids:
            logger.info(
                f"Expiry sweep: {len(expired)} of {len(booking_ids)} expired bookings cancelled, "
                f"{len(failures)} failed"
            )
        return ExpirySweepResult(found=len(booking_ids), expired_booking_ids=expired, failures=failures)
