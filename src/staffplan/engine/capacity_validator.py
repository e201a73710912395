"""
Capacity Validator

Combines an employee's weekly capacity with the hours already committed in
a date range and the hours of a candidate allocation.

    utilization_rate = (current_allocated_hours + candidate_hours) / max_capacity_hours * 100

current_allocated_hours is the busiest week of the range (the analyzer's
weekly aggregation collapsed to its maximum). An invalid result does not
block anything by itself; AllocationService decides based on the
enforcement mode.
"""

import math
from dataclasses import asdict, dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from staffplan.errors import NotFoundError, ValidationError
from staffplan.storage.repositories.employee_repository import EmployeeRepository
from .conflict_detector import ConflictDetector, ConflictReport
from .over_allocation import OverAllocationAnalyzer
from .policy import CapacityPolicy


@dataclass
class CapacityValidationResult:
    is_valid: bool
    warnings: List[str] = field(default_factory=list)
    max_capacity_hours: float = 0.0
    current_allocated_hours: float = 0.0
    candidate_hours: float = 0.0
    utilization_rate: float = 0.0
    threshold: float = 100.0
    conflict_count: int = 0
    conflicts: Optional[ConflictReport] = None

    @property
    def is_over_allocated(self) -> bool:
        return self.utilization_rate > self.threshold

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class CapacityValidator:
    def __init__(
        self,
        employee_repo: EmployeeRepository,
        analyzer: OverAllocationAnalyzer,
        conflict_detector: ConflictDetector,
        policy: Optional[CapacityPolicy] = None,
    ):
        self.employee_repo = employee_repo
        self.analyzer = analyzer
        self.conflict_detector = conflict_detector
        self.policy = policy or CapacityPolicy.from_settings()

    def validate_capacity(
        self,
        session: Session,
        employee_id: str,
        candidate_hours: float,
        start_date: date,
        end_date: date,
        exclude_allocation_id: Optional[str] = None,
        utilization_target: Optional[float] = None,
    ) -> CapacityValidationResult:
        """
        Check whether candidate_hours per week fit into the employee's capacity.

        Args:
            session: Database session
            employee_id: Employee receiving the hours
            candidate_hours: Weekly hours of the candidate allocation
            start_date: Candidate start
            end_date: Candidate end
            exclude_allocation_id: Allocation being updated, not counted as existing load
            utilization_target: Percent threshold replacing the configured 100%

        Returns:
            CapacityValidationResult with advisory warnings
        """
        errors: List[Dict[str, Any]] = []
        if not math.isfinite(candidate_hours) or candidate_hours < 0:
            errors.append({
                "field": "allocated_hours",
                "message": "Allocated hours must be a non-negative number",
                "value": candidate_hours,
            })
        if utilization_target is not None and (not math.isfinite(utilization_target) or utilization_target <= 0):
            errors.append({
                "field": "utilization_target",
                "message": "Utilization target must be greater than 0",
                "value": utilization_target,
            })
        if errors:
            raise ValidationError.from_fields(errors)

        employee = self.employee_repo.get(session, employee_id)
        if not employee:
            raise NotFoundError("Employee", employee_id)

        max_capacity = self.policy.capacity_for(employee)
        threshold = utilization_target or self.policy.over_allocation_threshold

        current = self.analyzer.peak_weekly_hours(
            session, employee, start_date, end_date, exclude_allocation_id
        )
        total = current + candidate_hours
        utilization_rate = round(total / max_capacity * 100, 2) if max_capacity > 0 else 0.0

        warnings: List[str] = []
        if utilization_rate > threshold:
            warnings.append(
                f"Over-allocation detected: {utilization_rate:.1f}% capacity (max {threshold:g}%)"
            )
        elif utilization_rate > self.policy.high_utilization_threshold:
            warnings.append(f"High utilization: {utilization_rate:.1f}% capacity")

        report = self.conflict_detector.check_conflicts(
            session, employee_id, start_date, end_date, exclude_allocation_id
        )
        conflict_count = len(report.conflicts)
        if conflict_count:
            warnings.append(f"{conflict_count} scheduling conflict(s) detected")

        return CapacityValidationResult(
            is_valid=utilization_rate <= threshold and conflict_count == 0,
            warnings=warnings,
            max_capacity_hours=max_capacity,
            current_allocated_hours=current,
            candidate_hours=candidate_hours,
            utilization_rate=utilization_rate,
            threshold=threshold,
            conflict_count=conflict_count,
            conflicts=report,
        )
