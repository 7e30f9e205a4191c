"""
Resource audit log model.

Append-only ledger of every resource pool mutation. Rows are written in the
same transaction as the mutation they describe and are never updated; the
only deletion path is the retention cleanup.
"""

from datetime import datetime
from typing import Optional
from sqlalchemy import String, Integer, Text, TIMESTAMP, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column

from core.constants import MAX_STATUS_LENGTH
from core.database import Base


class ResourceAuditLogEntry(Base):
    """
    One resource pool mutation.

    For booking-caused mutations, quantity is the signed delta applied to
    available (-q on approval, +q on completion/cancellation).
    """

    __tablename__ = "resource_audit_log"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    """Unique identifier for the entry."""

    hospital_id: Mapped[int] = mapped_column(Integer, index=True)
    """Hospital whose pool changed."""

    resource_type: Mapped[str] = mapped_column(String(MAX_STATUS_LENGTH))
    """Resource type of the pool that changed."""

    change_type: Mapped[str] = mapped_column(String(MAX_STATUS_LENGTH))
    """Cause of the change (see ResourceChangeType)."""

    old_value: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    """Available count before the change."""

    new_value: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    """Available count after the change."""

    quantity: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    """Signed delta applied to available."""

    booking_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("bookings.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    """Booking that caused the change, if any."""

    changed_by: Mapped[int] = mapped_column(Integer, index=True)
    """Actor who performed the change."""

    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    """Human-readable reason."""

    timestamp: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False, index=True)
    """When the change was committed."""

    __table_args__ = (
        Index('idx_resource_audit_hospital_type', 'hospital_id', 'resource_type'),
    )

    def __repr__(self) -> str:
        return (
            f"<ResourceAuditLogEntry(id={self.id}, hospital_id={self.hospital_id}, "
            f"type='{self.resource_type}', change='{self.change_type}', quantity={self.quantity})>"
        )
