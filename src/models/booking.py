"""
Booking model representing a request for a hospital resource.

A booking is created pending and only changes status through
BookingApprovalService. It is never hard-deleted.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional, List, TYPE_CHECKING
from sqlalchemy import String, Integer, Text, TIMESTAMP, Numeric, CheckConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import (
    MAX_STRING_LENGTH, MAX_STATUS_LENGTH, MAX_REFERENCE_LENGTH, MONEY_PRECISION, MONEY_SCALE
)
from core.database import Base
from shared_types.booking_details import (
    ApprovedDetails, DeclinedDetails, CompletedDetails, CancelledDetails, BookingDetails
)
from shared_types.enums import BookingStatus, PaymentStatus, Urgency
from utils.datetime_utils import ensure_utc

if TYPE_CHECKING:
    from models.booking_status_history import BookingStatusHistoryEntry


class Booking(Base):
    """
    Booking entity.

    Holds an allocation claim on its (hospital_id, resource_type) pool only
    while status is 'approved'; allocated_quantity records the claim so it is
    released exactly once.
    """

    __tablename__ = "bookings"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    """Unique identifier for the booking."""

    user_id: Mapped[int] = mapped_column(Integer, index=True)
    """User who requested the booking."""

    hospital_id: Mapped[int] = mapped_column(Integer, index=True)
    """Hospital the booking is for."""

    resource_type: Mapped[str] = mapped_column(String(MAX_STATUS_LENGTH))
    """Resource type requested; together with hospital_id identifies the pool."""

    # Patient information
    patient_name: Mapped[str] = mapped_column(String(MAX_STRING_LENGTH))
    patient_age: Mapped[int] = mapped_column(Integer)
    patient_gender: Mapped[str] = mapped_column(String(MAX_STATUS_LENGTH))

    # Emergency contact
    emergency_contact_name: Mapped[str] = mapped_column(String(MAX_STRING_LENGTH))
    emergency_contact_phone: Mapped[str] = mapped_column(String(MAX_STATUS_LENGTH))
    emergency_contact_relationship: Mapped[str] = mapped_column(String(MAX_STATUS_LENGTH))

    medical_condition: Mapped[str] = mapped_column(Text)
    """Free-text description of the patient's condition."""

    urgency: Mapped[str] = mapped_column(String(MAX_STATUS_LENGTH), default=Urgency.MEDIUM.value)
    """One of 'low', 'medium', 'high', 'critical'."""

    scheduled_date: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True))
    """When the resource is needed."""

    estimated_duration: Mapped[int] = mapped_column(Integer, default=24)
    """Expected stay in hours. Also used to derive expires_at on approval."""

    resources_allocated: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    """Units requested; becomes the claim size when the booking is approved."""

    allocated_quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    """Units currently claimed from the pool. Non-zero only while approved."""

    # Payment
    payment_amount: Mapped[Decimal] = mapped_column(Numeric(MONEY_PRECISION, MONEY_SCALE), default=Decimal("0"))
    """Amount supplied by the pricing collaborator at creation."""

    payment_status: Mapped[str] = mapped_column(String(MAX_STATUS_LENGTH), default=PaymentStatus.PENDING.value)
    payment_method: Mapped[Optional[str]] = mapped_column(String(MAX_STATUS_LENGTH), nullable=True)
    transaction_id: Mapped[Optional[str]] = mapped_column(String(MAX_REFERENCE_LENGTH), nullable=True)
    """Balance transaction id of the captured payment."""

    # Lifecycle
    status: Mapped[str] = mapped_column(String(MAX_STATUS_LENGTH), default=BookingStatus.PENDING.value, index=True)
    """Current state in the booking state machine."""

    expires_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    """Pending/approved bookings past this time are cancelled by the expiry sweep."""

    approved_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    authority_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    decline_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    declined_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    declined_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)

    completed_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)

    cancelled_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    was_approved_when_cancelled: Mapped[bool] = mapped_column(default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp when the booking was created."""

    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False, index=True)
    """Timestamp of the last change. Polling filters on this column."""

    # Relationships
    status_history: Mapped[List["BookingStatusHistoryEntry"]] = relationship(
        "BookingStatusHistoryEntry",
        back_populates="booking",
        order_by="[BookingStatusHistoryEntry.timestamp, BookingStatusHistoryEntry.id]",
    )
    """Append-only status history of this booking."""

    __table_args__ = (
        CheckConstraint('resources_allocated > 0', name='ck_booking_resources_allocated_positive'),
        CheckConstraint('allocated_quantity >= 0', name='ck_booking_allocated_quantity_non_negative'),
        CheckConstraint('patient_age >= 0', name='ck_booking_patient_age_non_negative'),
        Index('idx_booking_hospital_resource', 'hospital_id', 'resource_type'),
        Index('idx_booking_status_expires', 'status', 'expires_at'),
    )

    @property
    def status_enum(self) -> BookingStatus:
        return BookingStatus(self.status)

    @property
    def is_terminal(self) -> bool:
        return self.status_enum.is_terminal

    @property
    def details(self) -> Optional[BookingDetails]:
        """
        State-specific payload for the current status.

        Returns None for pending bookings, which carry no state-specific data.
        """
        status = self.status_enum
        if status == BookingStatus.APPROVED:
            return ApprovedDetails(
                approved_by=self.approved_by,  # type: ignore[arg-type]
                approved_at=ensure_utc(self.approved_at),  # type: ignore[arg-type]
                allocated_quantity=self.allocated_quantity,
                expires_at=ensure_utc(self.expires_at),
                authority_notes=self.authority_notes,
            )
        if status == BookingStatus.DECLINED:
            return DeclinedDetails(
                declined_by=self.declined_by,  # type: ignore[arg-type]
                declined_at=ensure_utc(self.declined_at),  # type: ignore[arg-type]
                reason=self.decline_reason or "",
                authority_notes=self.authority_notes,
            )
        if status == BookingStatus.COMPLETED:
            return CompletedDetails(
                completed_by=self.completed_by,  # type: ignore[arg-type]
                completed_at=ensure_utc(self.completed_at),  # type: ignore[arg-type]
                approved_by=self.approved_by,
                approved_at=ensure_utc(self.approved_at),
                notes=self.authority_notes,
            )
        if status == BookingStatus.CANCELLED:
            return CancelledDetails(
                cancelled_by=self.cancelled_by,  # type: ignore[arg-type]
                cancelled_at=ensure_utc(self.cancelled_at),  # type: ignore[arg-type]
                reason=self.cancellation_reason or "",
                was_approved=self.was_approved_when_cancelled,
                notes=self.authority_notes,
            )
        return None

    def __repr__(self) -> str:
        return (
            f"<Booking(id={self.id}, hospital_id={self.hospital_id}, "
            f"type='{self.resource_type}', status='{self.status}')>"
        )
