"""
Pydantic models for booking inputs and orchestration results.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from shared_types.enums import ResourceType, Urgency
from utils.datetime_utils import ensure_utc


class BookingCreate(BaseModel):
    """Booking request as received from the requesting user."""
    model_config = ConfigDict(str_strip_whitespace=True)

    hospital_id: int
    resource_type: ResourceType
    patient_name: str = Field(min_length=1, max_length=255)
    patient_age: int = Field(ge=0, le=150)
    patient_gender: str = Field(min_length=1, max_length=50)
    emergency_contact_name: str = Field(min_length=1, max_length=255)
    emergency_contact_phone: str = Field(min_length=1, max_length=50)
    emergency_contact_relationship: str = Field(min_length=1, max_length=50)
    medical_condition: str = Field(min_length=1)
    urgency: Urgency = Urgency.MEDIUM
    scheduled_date: datetime
    estimated_duration: int = Field(default=24, gt=0)
    resources_allocated: int = Field(default=1, gt=0)
    payment_amount: Decimal = Field(default=Decimal("0"), ge=0)  # Supplied by the pricing collaborator
    payment_method: Optional[str] = None
    expires_at: Optional[datetime] = None

    @field_validator('scheduled_date', 'expires_at')
    @classmethod
    def _normalize_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)


class ApprovalOptions(BaseModel):
    """Optional overrides supplied by the approving authority."""
    notes: Optional[str] = None
    resources_allocated: Optional[int] = Field(default=None, gt=0)
    scheduled_date: Optional[datetime] = None
    auto_allocate_resources: bool = True

    @field_validator('scheduled_date')
    @classmethod
    def _normalize_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)


class DeclineOptions(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    reason: str = Field(min_length=1)
    notes: Optional[str] = None
    alternative_suggestions: List[str] = Field(default_factory=list)


class SweepFailure(BaseModel):
    booking_id: int
    error: str


class ExpirySweepResult(BaseModel):
    """Outcome of one expiry sweep. Failures never stop the sweep."""
    found: int
    expired_booking_ids: List[int]
    failures: List[SweepFailure]

    @property
    def processed(self) -> int:
        return len(self.expired_booking_ids)
