"""
Allocation Service - lifecycle manager for resource allocations.

State machine:

    tentative --confirm--> active --complete--> completed
        |                    |
        +------cancel--------+------cancel----> cancelled

completed and cancelled are terminal. create/update run the conflict and
capacity checks inside the caller's session; the caller's session scope
(DatabaseAdapter.get_session) is the atomic unit, this service only flushes.
"""

import math
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy.orm import Session

from staffplan.errors import (
    CapacityExceededError,
    ConflictError,
    NotFoundError,
    StateTransitionError,
    ValidationError,
)
from staffplan.platform.logging import get_logger
from staffplan.platform.metrics import ALLOCATIONS_CREATED, LIFECYCLE_TRANSITIONS
from staffplan.storage.models import AllocationModel, AllocationStatus, EmployeeModel, ProjectModel
from staffplan.storage.repositories.allocation_repository import AllocationFilters, AllocationRepository
from staffplan.storage.repositories.base import Page
from staffplan.storage.repositories.employee_repository import EmployeeRepository
from staffplan.storage.repositories.project_repository import ProjectRepository
from .capacity_validator import CapacityValidationResult, CapacityValidator
from .conflict_detector import ConflictReport
from .policy import CapacityPolicy, EnforcementMode
from .schemas import AllocationCreate, AllocationUpdate

logger = get_logger(__name__)

ALLOWED_TRANSITIONS = {
    AllocationStatus.TENTATIVE: frozenset({AllocationStatus.ACTIVE, AllocationStatus.CANCELLED}),
    AllocationStatus.ACTIVE: frozenset({AllocationStatus.COMPLETED, AllocationStatus.CANCELLED}),
    AllocationStatus.COMPLETED: frozenset(),
    AllocationStatus.CANCELLED: frozenset(),
}

# Fields that define the schedule; frozen once an allocation is terminal
SCHEDULE_FIELDS = ("start_date", "end_date", "allocated_hours")

# Fields that cannot be cleared with an explicit null
REQUIRED_FIELDS = ("start_date", "end_date", "allocated_hours", "role", "status")


@dataclass
class AllocationOutcome:
    """A persisted allocation plus the advisory results of its checks."""
    allocation: AllocationModel
    warnings: List[str] = field(default_factory=list)
    conflicts: Optional[ConflictReport] = None
    capacity: Optional[CapacityValidationResult] = None


def can_transition(current: AllocationStatus, target: AllocationStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


class AllocationService:
    """
    Create, mutate and move allocations through their lifecycle.

    All dependencies are passed in; nothing here holds state between calls.
    """

    def __init__(
        self,
        allocation_repo: AllocationRepository,
        employee_repo: EmployeeRepository,
        project_repo: ProjectRepository,
        capacity_validator: CapacityValidator,
        policy: Optional[CapacityPolicy] = None,
    ):
        self.allocation_repo = allocation_repo
        self.employee_repo = employee_repo
        self.project_repo = project_repo
        self.capacity_validator = capacity_validator
        self.policy = policy or CapacityPolicy.from_settings()

    # --- Queries ---

    def get(self, session: Session, allocation_id: str) -> AllocationModel:
        allocation = self.allocation_repo.get(session, allocation_id)
        if not allocation:
            raise NotFoundError("Allocation", allocation_id)
        return allocation

    def list_for_project(
        self,
        session: Session,
        project_id: str,
        filters: Optional[AllocationFilters] = None,
        page: int = 1,
        limit: int = 50,
    ) -> Page[AllocationModel]:
        if not self.project_repo.get(session, project_id):
            raise NotFoundError("Project", project_id)
        return self.allocation_repo.find_by_project(session, project_id, filters, page, limit)

    def list_for_employee(
        self,
        session: Session,
        employee_id: str,
        filters: Optional[AllocationFilters] = None,
        page: int = 1,
        limit: int = 50,
    ) -> Page[AllocationModel]:
        if not self.employee_repo.get(session, employee_id):
            raise NotFoundError("Employee", employee_id)
        return self.allocation_repo.find_by_employee(session, employee_id, filters, page, limit)

    # --- Create ---

    def create(
        self,
        session: Session,
        data: AllocationCreate,
        mode: EnforcementMode = EnforcementMode.CHECKED,
    ) -> AllocationOutcome:
        """
        Validate, check and persist a new allocation.

        Raises:
            ValidationError: malformed input or dates outside the project span
            NotFoundError: employee or project missing
            ConflictError: overlapping live allocation (CHECKED and STRICT)
            CapacityExceededError: utilization above threshold (STRICT only)
        """
        field_errors = self._validate_create(data)
        if field_errors:
            raise ValidationError.from_fields(field_errors)

        employee = self._require_employee(session, data.employee_id)
        project = self._require_project(session, data.project_id)
        self._check_project_bounds(project, data.start_date, data.end_date)

        self.allocation_repo.lock_employee(session, data.employee_id)
        capacity = self._run_checks(
            session,
            employee,
            data.allocated_hours,
            data.start_date,
            data.end_date,
            mode,
            utilization_target=data.utilization_target,
        )

        allocation = AllocationModel(
            id=str(uuid4()),
            employee_id=data.employee_id,
            project_id=data.project_id,
            start_date=data.start_date,
            end_date=data.end_date,
            allocated_hours=data.allocated_hours,
            role=data.role.strip(),
            hourly_rate=data.hourly_rate,
            billable_rate=data.billable_rate,
            utilization_target=data.utilization_target,
            status=data.status.value,
            notes=data.notes,
            version=1,
        )
        created = self.allocation_repo.create(session, allocation)

        ALLOCATIONS_CREATED.labels(mode=mode.value).inc()
        logger.info(
            "allocation.created",
            allocation_id=created.id,
            employee_id=created.employee_id,
            project_id=created.project_id,
            status=created.status,
            mode=mode.value,
            utilization_rate=capacity.utilization_rate,
        )
        return AllocationOutcome(
            allocation=created,
            warnings=list(capacity.warnings),
            conflicts=capacity.conflicts,
            capacity=capacity,
        )

    # --- Update ---

    def update(
        self,
        session: Session,
        allocation_id: str,
        data: AllocationUpdate,
        mode: EnforcementMode = EnforcementMode.CHECKED,
    ) -> AllocationOutcome:
        """
        Apply a partial update.

        Date or hour changes re-run the checks against every other live
        allocation of the employee. Status changes follow the lifecycle table.
        """
        allocation = self.get(session, allocation_id)
        updates = {
            k: v for k, v in data.model_dump(exclude_unset=True).items()
            if not (k in REQUIRED_FIELDS and v is None)
        }
        if not updates:
            return AllocationOutcome(allocation=allocation)

        current = allocation.status_enum
        schedule_changes = {
            k for k in SCHEDULE_FIELDS if k in updates and updates[k] != getattr(allocation, k)
        }

        if current.is_terminal and schedule_changes:
            raise StateTransitionError(
                allocation.id,
                current.value,
                current.value,
                reason=f"Cannot change {', '.join(sorted(schedule_changes))} of a {current.value} allocation",
            )

        target = AllocationStatus(updates["status"]) if "status" in updates else current
        if target != current:
            self._check_transition(allocation, target)
        else:
            updates.pop("status", None)

        start = updates.get("start_date", allocation.start_date)
        end = updates.get("end_date", allocation.end_date)
        hours = updates.get("allocated_hours", allocation.allocated_hours)
        field_errors = self._validate_values(
            start, end, hours, updates.get("role", allocation.role),
            actual_hours=updates.get("actual_hours"),
            utilization_target=updates.get("utilization_target"),
            hourly_rate=updates.get("hourly_rate"),
            billable_rate=updates.get("billable_rate"),
        )
        if field_errors:
            raise ValidationError.from_fields(field_errors)

        outcome = AllocationOutcome(allocation=allocation)
        if schedule_changes and target.is_live:
            employee = self._require_employee(session, allocation.employee_id)
            if {"start_date", "end_date"} & schedule_changes:
                self._check_project_bounds(self._require_project(session, allocation.project_id), start, end)

            self.allocation_repo.lock_employee(session, allocation.employee_id)
            capacity = self._run_checks(
                session,
                employee,
                hours,
                start,
                end,
                mode,
                exclude_allocation_id=allocation.id,
                utilization_target=updates.get("utilization_target", allocation.utilization_target),
            )
            outcome.warnings = list(capacity.warnings)
            outcome.conflicts = capacity.conflicts
            outcome.capacity = capacity

        if "role" in updates:
            updates["role"] = updates["role"].strip()
        outcome.allocation = self.allocation_repo.update(session, allocation.id, updates)

        if target != current:
            LIFECYCLE_TRANSITIONS.labels(to=target.value).inc()
        logger.info(
            "allocation.updated",
            allocation_id=allocation.id,
            fields=sorted(updates),
            mode=mode.value,
        )
        return outcome

    # --- Lifecycle ---

    def confirm(self, session: Session, allocation_id: str) -> AllocationModel:
        """tentative -> active. Confirming an active allocation is a no-op."""
        allocation = self.get(session, allocation_id)
        if allocation.status_enum == AllocationStatus.ACTIVE:
            return allocation
        return self._transition(session, allocation, AllocationStatus.ACTIVE)

    def complete(
        self,
        session: Session,
        allocation_id: str,
        actual_hours: Optional[float] = None,
    ) -> AllocationModel:
        """active -> completed, optionally recording actual hours."""
        allocation = self.get(session, allocation_id)
        extra: Dict[str, Any] = {}
        if actual_hours is not None:
            errors = self._check_actual_hours(actual_hours)
            if errors:
                raise ValidationError.from_fields(errors)
            extra["actual_hours"] = actual_hours
        return self._transition(session, allocation, AllocationStatus.COMPLETED, extra)

    def cancel(self, session: Session, allocation_id: str) -> AllocationModel:
        """tentative/active -> cancelled."""
        allocation = self.get(session, allocation_id)
        return self._transition(session, allocation, AllocationStatus.CANCELLED)

    def delete(self, session: Session, allocation_id: str) -> AllocationModel:
        """Soft delete. Reports re-query live state, so nothing cascades."""
        removed = self.allocation_repo.delete(session, allocation_id)
        if not removed:
            raise NotFoundError("Allocation", allocation_id)
        logger.info("allocation.deleted", allocation_id=allocation_id)
        return removed

    # --- Internals ---

    def _transition(
        self,
        session: Session,
        allocation: AllocationModel,
        target: AllocationStatus,
        extra: Optional[Dict[str, Any]] = None,
    ) -> AllocationModel:
        self._check_transition(allocation, target)
        updates = dict(extra or {})
        updates["status"] = target.value
        updated = self.allocation_repo.update(session, allocation.id, updates)
        LIFECYCLE_TRANSITIONS.labels(to=target.value).inc()
        logger.info(
            "allocation.transitioned",
            allocation_id=allocation.id,
            to_status=target.value,
        )
        return updated

    def _check_transition(self, allocation: AllocationModel, target: AllocationStatus) -> None:
        current = allocation.status_enum
        if not can_transition(current, target):
            raise StateTransitionError(allocation.id, current.value, target.value)

    def _run_checks(
        self,
        session: Session,
        employee: EmployeeModel,
        hours: float,
        start_date: date,
        end_date: date,
        mode: EnforcementMode,
        exclude_allocation_id: Optional[str] = None,
        utilization_target: Optional[float] = None,
    ) -> CapacityValidationResult:
        capacity = self.capacity_validator.validate_capacity(
            session,
            employee.id,
            hours,
            start_date,
            end_date,
            exclude_allocation_id=exclude_allocation_id,
            utilization_target=utilization_target,
        )

        if mode == EnforcementMode.FORCE:
            if not capacity.is_valid:
                logger.warning(
                    "allocation.enforcement_bypassed",
                    employee_id=employee.id,
                    conflict_count=capacity.conflict_count,
                    utilization_rate=capacity.utilization_rate,
                    warnings=capacity.warnings,
                )
            return capacity

        if capacity.conflicts is not None and capacity.conflicts.has_conflicts:
            raise ConflictError(capacity.conflicts)
        if mode == EnforcementMode.STRICT and capacity.is_over_allocated:
            raise CapacityExceededError(capacity)
        return capacity

    def _require_employee(self, session: Session, employee_id: str) -> EmployeeModel:
        employee = self.employee_repo.get(session, employee_id)
        if not employee:
            raise NotFoundError("Employee", employee_id)
        if not employee.is_active:
            raise ValidationError.from_fields([{
                "field": "employee_id",
                "message": "Cannot allocate to inactive employee",
                "value": employee_id,
            }])
        return employee

    def _require_project(self, session: Session, project_id: str) -> ProjectModel:
        project = self.project_repo.get(session, project_id)
        if not project:
            raise NotFoundError("Project", project_id)
        if not project.is_active:
            raise ValidationError.from_fields([{
                "field": "project_id",
                "message": "Cannot allocate to inactive project",
                "value": project_id,
            }])
        return project

    def _check_project_bounds(self, project: ProjectModel, start_date: date, end_date: date) -> None:
        errors = []
        if start_date < project.start_date:
            errors.append({
                "field": "start_date",
                "message": "Allocation start date cannot be before project start date",
                "value": start_date.isoformat(),
            })
        if project.end_date and end_date > project.end_date:
            errors.append({
                "field": "end_date",
                "message": "Allocation end date cannot be after project end date",
                "value": end_date.isoformat(),
            })
        if errors:
            raise ValidationError.from_fields(errors)

    def _validate_create(self, data: AllocationCreate) -> List[Dict[str, Any]]:
        errors: List[Dict[str, Any]] = []
        if not data.employee_id:
            errors.append({"field": "employee_id", "message": "Employee ID is required", "value": data.employee_id})
        if not data.project_id:
            errors.append({"field": "project_id", "message": "Project ID is required", "value": data.project_id})
        if not data.status.is_live:
            errors.append({
                "field": "status",
                "message": "New allocations must be tentative or active",
                "value": data.status.value,
            })
        errors.extend(self._validate_values(
            data.start_date,
            data.end_date,
            data.allocated_hours,
            data.role,
            utilization_target=data.utilization_target,
            hourly_rate=data.hourly_rate,
            billable_rate=data.billable_rate,
        ))
        return errors

    def _validate_values(
        self,
        start_date: date,
        end_date: date,
        allocated_hours: float,
        role: Optional[str],
        actual_hours: Optional[float] = None,
        utilization_target: Optional[float] = None,
        hourly_rate: Optional[float] = None,
        billable_rate: Optional[float] = None,
    ) -> List[Dict[str, Any]]:
        errors: List[Dict[str, Any]] = []
        if start_date >= end_date:
            errors.append({
                "field": "end_date",
                "message": "End date must be after start date",
                "value": end_date.isoformat(),
            })
        if not math.isfinite(allocated_hours) or allocated_hours <= 0:
            errors.append({
                "field": "allocated_hours",
                "message": "Allocated hours must be greater than 0",
                "value": allocated_hours,
            })
        elif allocated_hours > self.policy.max_allocation_hours:
            errors.append({
                "field": "allocated_hours",
                "message": f"Allocated hours seems unreasonably high (>{self.policy.max_allocation_hours:g})",
                "value": allocated_hours,
            })
        if not role or not role.strip():
            errors.append({"field": "role", "message": "Role on project is required", "value": role})
        if actual_hours is not None:
            errors.extend(self._check_actual_hours(actual_hours))
        if utilization_target is not None and (not math.isfinite(utilization_target) or utilization_target <= 0):
            errors.append({
                "field": "utilization_target",
                "message": "Utilization target must be greater than 0",
                "value": utilization_target,
            })
        for name, rate in (("hourly_rate", hourly_rate), ("billable_rate", billable_rate)):
            if rate is not None and (not math.isfinite(rate) or rate < 0):
                errors.append({"field": name, "message": f"{name} must not be negative", "value": rate})
        return errors

    def _check_actual_hours(self, actual_hours: float) -> List[Dict[str, Any]]:
        if math.isfinite(actual_hours) and 0 <= actual_hours <= self.policy.max_allocation_hours:
            return []
        return [{
            "field": "actual_hours",
            "message": f"Actual hours must be between 0 and {self.policy.max_allocation_hours:g}",
            "value": actual_hours,
        }]
