from datetime import date, datetime
from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


# --- Allocations ---

class AllocationResponse(BaseModel):
    id: str
    employee_id: str
    project_id: str
    start_date: date
    end_date: date
    allocated_hours: float
    actual_hours: Optional[float] = None
    role: str
    hourly_rate: Optional[float] = None
    billable_rate: Optional[float] = None
    utilization_target: Optional[float] = None
    status: str
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    version: int

    class Config:
        from_attributes = True


class AllocationOutcomeResponse(BaseModel):
    allocation: AllocationResponse
    warnings: List[str] = Field(default_factory=list)
    conflicts: Optional[Dict[str, Any]] = None
    capacity: Optional[Dict[str, Any]] = None


class PageResponse(BaseModel, Generic[T]):
    items: List[T]
    total: int
    page: int
    limit: int
    total_pages: int


class CompleteRequest(BaseModel):
    actual_hours: Optional[float] = None


# --- Capacity ---

class ConflictCheckRequest(BaseModel):
    employee_id: str
    start_date: date
    end_date: date
    exclude_allocation_id: Optional[str] = None


class CapacityValidateRequest(BaseModel):
    employee_id: str
    allocated_hours: float
    start_date: date
    end_date: date
    exclude_allocation_id: Optional[str] = None
    utilization_target: Optional[float] = None
