"""
Pydantic models for resource pool inputs and results.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from utils.datetime_utils import ensure_utc


class ResourceTotalsUpdate(BaseModel):
    """
    Manual correction of a pool's counters.

    Omitted fields keep their current value. When total is omitted it is
    recomputed from the other counters; when given it must match their sum.
    """
    model_config = ConfigDict(extra="forbid")

    total: Optional[int] = Field(default=None, ge=0)
    available: Optional[int] = Field(default=None, ge=0)
    occupied: Optional[int] = Field(default=None, ge=0)
    reserved: Optional[int] = Field(default=None, ge=0)
    maintenance: Optional[int] = Field(default=None, ge=0)


class AvailabilityResult(BaseModel):
    """Result of a side-effect free availability check."""
    available: bool
    current_available: int
    requested: int
    message: str


class PoolSnapshot(BaseModel):
    """Read-only copy of a resource pool row."""
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

    @property
    def is_conserved(self) -> bool:
        return self.total == self.available + self.occupied + self.reserved + self.maintenance


class PoolMutationResult(BaseModel):
    """Outcome of allocate/release/manual update: the pool after the change plus the audit entry id."""
    pool: PoolSnapshot
    old_available: int
    new_available: int
    quantity: int  # Signed delta applied to available
    audit_entry_id: int


class ResourceUtilization(BaseModel):
    resource_type: str
    total: int
    available: int
    occupied: int
    reserved: int
    maintenance: int
    utilization_percentage: float
