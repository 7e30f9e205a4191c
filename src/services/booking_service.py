"""
Booking service for creating and reading bookings.

Status changes after creation belong to BookingApprovalService.
"""

import logging
from typing import Any, Mapping, Union

from sqlalchemy.orm import Session

from core.exceptions import NotFoundError
from models import Booking
from services.booking_history_service import BookingStatusHistoryService
from services.booking_state_machine import next_status
from services.resource_pool_service import ResourcePoolService
from shared_types.bookings import BookingCreate
from shared_types.enums import BookingEvent, PaymentStatus
from utils.validation import coerce_model

logger = logging.getLogger(__name__)


class BookingService:
    """Service for booking creation and lookup."""

    @staticmethod
    def create_booking(
        db: Session,
        user_id: int,
        data: Union[BookingCreate, Mapping[str, Any]]
    ) -> Booking:
        """
        Create a pending booking and its null -> pending history entry.

        No resources are touched; allocation happens on approval.

        Args:
            db: Database session
            user_id: Requesting user
            data: Booking request (payment_amount comes from the pricing collaborator)

        Returns:
            The committed booking

        Raises:
            ValidationError: If the request is malformed
            NotFoundError: If the hospital has no pool for the resource type
        """
        request = coerce_model(BookingCreate, data)
        resource_type = request.resource_type.value

        ResourcePoolService.require_pool(db, request.hospital_id, resource_type)
        status = next_status(None, BookingEvent.CREATE)

        try:
            booking = Booking(
                user_id=user_id,
                hospital_id=request.hospital_id,
                resource_type=resource_type,
                patient_name=request.patient_name,
                patient_age=request.patient_age,
                patient_gender=request.patient_gender,
                emergency_contact_name=request.emergency_contact_name,
                emergency_contact_phone=request.emergency_contact_phone,
                emergency_contact_relationship=request.emergency_contact_relationship,
                medical_condition=request.medical_condition,
                urgency=request.urgency.value,
                scheduled_date=request.scheduled_date,
                estimated_duration=request.estimated_duration,
                resources_allocated=request.resources_allocated,
                allocated_quantity=0,
                payment_amount=request.payment_amount,
                payment_status=PaymentStatus.PENDING.value,
                payment_method=request.payment_method,
                status=status.value,
                expires_at=request.expires_at,
            )
            db.add(booking)
            db.flush()

            BookingStatusHistoryService.create(
                db,
                booking_id=booking.id,
                old_status=None,
                new_status=status.value,
                changed_by=user_id,
                reason="Booking created",
            )
            db.commit()
        except Exception:
            db.rollback()
            raise

        logger.info(
            f"Created booking {booking.id} for user {user_id}: hospital {booking.hospital_id}, "
            f"{booking.resource_type} x{booking.resources_allocated}, urgency {booking.urgency}"
        )
        return booking

    @staticmethod
    def get_booking(db: Session, booking_id: int, for_update: bool = False) -> Booking:
        """
        Load a booking or raise NotFoundError.

        Args:
            for_update: Lock the row until the caller's transaction ends
        """
        query = db.query(Booking).filter(Booking.id == booking_id)
        if for_update:
            query = query.with_for_update().populate_existing()
        booking = query.first()
        if not booking:
            raise NotFoundError(f"Booking not found: {booking_id}")
        return booking

