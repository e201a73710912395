from datetime import date
from typing import Optional
from pydantic import BaseModel, Field

from staffplan.storage.models import AllocationStatus


class AllocationCreate(BaseModel):
    """
    Input for a new allocation.

    Only types are enforced here; business rules (date order, hour bounds,
    non-empty role) are checked by AllocationService so they surface as
    staffplan.errors.ValidationError.
    """
    employee_id: str
    project_id: str
    start_date: date
    end_date: date
    allocated_hours: float = Field(..., description="Weekly hours committed for every covered week")
    role: str = ""
    hourly_rate: Optional[float] = None
    billable_rate: Optional[float] = None
    utilization_target: Optional[float] = Field(None, description="Percent replacing the 100% threshold")
    status: AllocationStatus = AllocationStatus.TENTATIVE
    notes: Optional[str] = None


class AllocationUpdate(BaseModel):
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    allocated_hours: Optional[float] = None
    actual_hours: Optional[float] = None
    role: Optional[str] = None
    hourly_rate: Optional[float] = None
    billable_rate: Optional[float] = None
    utilization_target: Optional[float] = None
    status: Optional[AllocationStatus] = None
    notes: Optional[str] = None
