from datetime import date, datetime
from enum import Enum
from typing import List, Optional
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy import (
    String, Integer, Boolean, Text, Float, Date, DateTime, ForeignKey,
    Index, CheckConstraint, func
)
from sqlalchemy.dialects.postgresql import TIMESTAMP

class Base(DeclarativeBase):
    pass

# Postgres TIMESTAMPTZ with a generic fallback (for SQLite tests)
TIMESTAMP_TYPE = DateTime(timezone=True).with_variant(TIMESTAMP(timezone=True), 'postgresql')


class AllocationStatus(str, Enum):
    """Lifecycle states of a resource allocation."""
    TENTATIVE = "tentative"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_live(self) -> bool:
        return self in LIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


LIVE_STATUSES = frozenset({AllocationStatus.TENTATIVE, AllocationStatus.ACTIVE})
TERMINAL_STATUSES = frozenset({AllocationStatus.COMPLETED, AllocationStatus.CANCELLED})

# --- Departments ---

class DepartmentModel(Base):
    __tablename__ = "departments"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP_TYPE, server_default=func.now())

    employees: Mapped[List["EmployeeModel"]] = relationship(back_populates="department")

# --- Employees ---

class EmployeeModel(Base):
    __tablename__ = "employees"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    first_name: Mapped[str] = mapped_column(String, nullable=False)
    last_name: Mapped[str] = mapped_column(String, nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String, unique=True)
    department_id: Mapped[Optional[str]] = mapped_column(ForeignKey("departments.id"), index=True)
    # Null means "use the configured default" (40h)
    weekly_capacity_hours: Mapped[Optional[float]] = mapped_column(Float)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, server_default='true')
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP_TYPE, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP_TYPE, server_default=func.now(), onupdate=func.now())

    department: Mapped[Optional["DepartmentModel"]] = relationship(back_populates="employees")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

# --- Projects ---

class ProjectModel(Base):
    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[Optional[date]] = mapped_column(Date)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, server_default='true')
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP_TYPE, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP_TYPE, server_default=func.now(), onupdate=func.now())

# --- Resource Allocations ---

class AllocationModel(Base):
    """
    One employee committed to one project for an inclusive date range.

    allocated_hours is the weekly commitment for every week the range covers.
    """
    __tablename__ = "resource_allocations"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    employee_id: Mapped[str] = mapped_column(ForeignKey("employees.id"), nullable=False, index=True)
    project_id: Mapped[str] = mapped_column(ForeignKey("projects.id"), nullable=False, index=True)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    allocated_hours: Mapped[float] = mapped_column(Float, nullable=False)
    actual_hours: Mapped[Optional[float]] = mapped_column(Float)
    role: Mapped[str] = mapped_column(String, nullable=False)
    hourly_rate: Mapped[Optional[float]] = mapped_column(Float)
    billable_rate: Mapped[Optional[float]] = mapped_column(Float)
    utilization_target: Mapped[Optional[float]] = mapped_column(Float)
    status: Mapped[str] = mapped_column(String, default=AllocationStatus.TENTATIVE.value, index=True)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP_TYPE, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP_TYPE, server_default=func.now(), onupdate=func.now())
    deleted_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP_TYPE)
    version: Mapped[int] = mapped_column(Integer, default=1, server_default='1')

    # Relationships
    employee: Mapped["EmployeeModel"] = relationship()
    project: Mapped["ProjectModel"] = relationship()

    __table_args__ = (
        CheckConstraint('start_date < end_date', name='ck_allocation_dates'),
        CheckConstraint('allocated_hours > 0', name='ck_allocation_hours_positive'),
        Index('idx_allocations_employee_range', 'employee_id', 'start_date', 'end_date'),
        Index('idx_allocations_project_start', 'project_id', 'start_date'),
    )

    @property
    def status_enum(self) -> AllocationStatus:
        return AllocationStatus(self.status)

    @property
    def is_live(self) -> bool:
        return self.deleted_at is None and self.status_enum.is_live
