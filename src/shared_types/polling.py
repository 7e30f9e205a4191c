"""
Pydantic models returned by the polling gateway.

Every result carries current_timestamp (when the read ran) and next_since,
the cursor dashboards pass back as `since` on their next poll. next_since
lags current_timestamp, so consecutive polls overlap and a row can be
reported more than once; clients key rows by id.
"""

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, field_validator

from utils.datetime_utils import ensure_utc


class ResourceChange(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    hospital_id: int
    resource_type: str
    total: int
    available: int
    occupied: int
    reserved: int
    maintenance: int
    last_updated: datetime
    updated_by: Optional[int] = None

    @field_validator('last_updated')
    @classmethod
    def _normalize_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)  # type: ignore[return-value]


class BookingChange(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    hospital_id: int
    resource_type: str
    patient_name: str
    urgency: str
    status: str
    payment_status: str
    payment_amount: Decimal
    resources_allocated: int
    approved_by: Optional[int] = None
    approved_at: Optional[datetime] = None
    decline_reason: Optional[str] = None
    authority_notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @field_validator('approved_at', 'created_at', 'updated_at')
    @classmethod
    def _normalize_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)


class AuditLogChange(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    hospital_id: int
    resource_type: str
    change_type: str
    old_value: Optional[int] = None
    new_value: Optional[int] = None
    quantity: Optional[int] = None
    booking_id: Optional[int] = None
    changed_by: int
    reason: Optional[str] = None
    timestamp: datetime

    @field_validator('timestamp')
    @classmethod
    def _normalize_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)  # type: ignore[return-value]


class ResourceUpdates(BaseModel):
    has_changes: bool
    total_changes: int
    current_timestamp: datetime
    next_since: datetime
    last_polled: Optional[datetime] = None
    changes: List[ResourceChange]
    by_resource_type: Dict[str, List[ResourceChange]]


class BookingUpdates(BaseModel):
    has_changes: bool
    total_changes: int
    current_timestamp: datetime
    next_since: datetime
    last_polled: Optional[datetime] = None
    changes: List[BookingChange]
    by_status: Dict[str, List[BookingChange]]


class AuditLogUpdates(BaseModel):
    has_changes: bool
    total_changes: int
    current_timestamp: datetime
    next_since: datetime
    last_polled: Optional[datetime] = None
    changes: List[AuditLogChange]


class CombinedUpdates(BaseModel):
    has_changes: bool
    current_timestamp: datetime
    next_since: datetime
    last_polled: Optional[datetime] = None
    resources: ResourceUpdates
    bookings: BookingUpdates
    suggested_interval_seconds: int


class ChangeCheck(BaseModel):
    has_changes: bool
    resource_changes: int
    booking_changes: int
    total_changes: int
    last_checked: datetime
    next_since: datetime


class PollingConfig(BaseModel):
    recommended_interval_seconds: int
    min_interval_seconds: int
    max_interval_seconds: int
    default_interval_seconds: int
    last_change_at: Optional[datetime] = None
    adaptive_polling: bool = True
