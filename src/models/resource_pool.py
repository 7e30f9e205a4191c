"""
Resource pool model holding per-hospital, per-resource-type counters.

A pool is the single source of truth for how many units of a resource type a
hospital can still hand out. Counters are only ever changed through
ResourcePoolService so that every mutation is guarded and audited.
"""

from datetime import datetime
from typing import Optional
from sqlalchemy import String, Integer, TIMESTAMP, UniqueConstraint, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column

from core.constants import MAX_STATUS_LENGTH
from core.database import Base


class ResourcePool(Base):
    """
    Resource pool entity keyed by (hospital_id, resource_type).

    Conservation holds after every mutation:
    total == available + occupied + reserved + maintenance.
    """

    __tablename__ = "resource_pools"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    """Unique identifier for the pool."""

    hospital_id: Mapped[int] = mapped_column(Integer, index=True)
    """Hospital that owns the pool. Hospitals themselves live outside the core."""

    resource_type: Mapped[str] = mapped_column(String(MAX_STATUS_LENGTH))
    """Resource category: 'beds', 'icu' or 'operationTheatres'."""

    total: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    """Total units of this resource type at the hospital."""

    available: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    """Units that can be allocated right now."""

    occupied: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    """Units held by approved bookings (or marked occupied by staff)."""

    reserved: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    """Advisory counter set by manual update."""

    maintenance: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    """Units out of service, set by manual or maintenance update."""

    updated_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    """Actor of the most recent mutation."""

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp when the pool was registered."""

    last_updated: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False, index=True)
    """Timestamp of the most recent mutation. Polling filters on this column."""

    __table_args__ = (
        UniqueConstraint('hospital_id', 'resource_type', name='uq_resource_pool_hospital_type'),
        CheckConstraint('available >= 0', name='ck_resource_pool_available_non_negative'),
        CheckConstraint('occupied >= 0', name='ck_resource_pool_occupied_non_negative'),
        CheckConstraint('reserved >= 0', name='ck_resource_pool_reserved_non_negative'),
        CheckConstraint('maintenance >= 0', name='ck_resource_pool_maintenance_non_negative'),
        CheckConstraint(
            'total = available + occupied + reserved + maintenance',
            name='ck_resource_pool_conservation'
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<ResourcePool(hospital_id={self.hospital_id}, type='{self.resource_type}', "
            f"total={self.total}, available={self.available}, occupied={self.occupied})>"
        )
