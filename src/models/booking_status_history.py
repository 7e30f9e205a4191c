"""
Booking status history model.

Append-only ledger of booking state transitions. The entries of one booking,
ordered by timestamp, form a path through the booking state machine starting
with a null -> pending creation entry.
"""

from datetime import datetime
from typing import Optional, TYPE_CHECKING
from sqlalchemy import String, Integer, Text, TIMESTAMP, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import MAX_STATUS_LENGTH
from core.database import Base

if TYPE_CHECKING:
    from models.booking import Booking


class BookingStatusHistoryEntry(Base):
    """One booking state transition."""

    __tablename__ = "booking_status_history"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    """Unique identifier for the entry."""

    booking_id: Mapped[int] = mapped_column(
        ForeignKey("bookings.id", ondelete="CASCADE"),
        index=True
    )
    """Booking that transitioned."""

    old_status: Mapped[Optional[str]] = mapped_column(String(MAX_STATUS_LENGTH), nullable=True)
    """Status before the transition. None for the creation entry."""

    new_status: Mapped[str] = mapped_column(String(MAX_STATUS_LENGTH))
    """Status after the transition."""

    changed_by: Mapped[int] = mapped_column(Integer, index=True)
    """Actor who performed the transition."""

    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    timestamp: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False, index=True)
    """When the transition was committed."""

    # Relationships
    booking: Mapped["Booking"] = relationship("Booking", back_populates="status_history")

    def __repr__(self) -> str:
        return (
            f"<BookingStatusHistoryEntry(booking_id={self.booking_id}, "
            f"{self.old_status} -> {self.new_status})>"
        )
