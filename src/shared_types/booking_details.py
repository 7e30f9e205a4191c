"""
State-specific booking payloads.

A booking row carries nullable approval/decline/cancellation columns. These
dataclasses expose only the fields that are meaningful for the booking's
current status, so callers never read a decline reason off an approved
booking by accident.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from core.constants import EXPIRED_REASON


@dataclass(frozen=True)
class ApprovedDetails:
    approved_by: int
    approved_at: datetime
    allocated_quantity: int  # Claim currently held on the pool (0 if approved without allocation)
    expires_at: Optional[datetime] = None
    authority_notes: Optional[str] = None


@dataclass(frozen=True)
class DeclinedDetails:
    declined_by: int
    declined_at: datetime
    reason: str
    authority_notes: Optional[str] = None


@dataclass(frozen=True)
class CompletedDetails:
    completed_by: int
    completed_at: datetime
    approved_by: Optional[int] = None
    approved_at: Optional[datetime] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class CancelledDetails:
    cancelled_by: int
    cancelled_at: datetime
    reason: str
    was_approved: bool  # True if the booking held (and released) a claim when cancelled
    notes: Optional[str] = None

    @property
    def is_expiry(self) -> bool:
        return self.reason == EXPIRED_REASON


BookingDetails = ApprovedDetails | DeclinedDetails | CompletedDetails | CancelledDetails
