"""
Over-Allocation Analyzer

Walks a date range week by week, sums the live allocated hours of each
employee per week and flags weeks above the employee's weekly capacity.

Weekly load rule:
    allocated_hours is a weekly commitment. An allocation contributes
    allocated_hours * shared_days / bucket_days to a week bucket, i.e. the
    average weekly load over that bucket. A bucket the allocation covers
    completely receives the full weekly hours; clipped first/last buckets
    are treated the same way.

Severity bands (utilization as a fraction, see CapacityPolicy):
    < 1.1 low, < 1.2 medium, < 1.4 high, >= 1.4 critical

Usage:
    analyzer = OverAllocationAnalyzer(AllocationRepository(), EmployeeRepository())
    summary = analyzer.analyze_range(session, date(2024, 1, 1), date(2024, 3, 31))
    warning = analyzer.analyze_week(session, "emp_1", date(2024, 1, 8), date(2024, 1, 14))
"""

import logging
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy.orm import Session

from staffplan.errors import NotFoundError, ValidationError
from staffplan.platform.metrics import OVER_ALLOCATION_WARNINGS
from staffplan.storage.models import AllocationModel, EmployeeModel
from staffplan.storage.repositories.allocation_repository import AllocationRepository
from staffplan.storage.repositories.employee_repository import EmployeeRepository
from .intervals import WeekBucket, overlap_days, weeks_between
from .policy import CapacityPolicy, Severity

logger = logging.getLogger(__name__)


@dataclass
class AffectedAllocation:
    allocation_id: str
    project_id: str
    project_name: str
    allocated_hours: float
    week_hours: float


@dataclass
class WeeklyLoad:
    """Aggregated live hours of one employee in one week bucket."""
    employee_id: str
    week_start: date
    week_end: date
    capacity_hours: float
    allocated_hours: float
    contributions: List[AffectedAllocation] = field(default_factory=list)

    @property
    def utilization_rate(self) -> float:
        if self.capacity_hours <= 0:
            return 0.0
        return round(self.allocated_hours / self.capacity_hours * 100, 2)

    @property
    def is_over_allocated(self) -> bool:
        return self.allocated_hours > self.capacity_hours


@dataclass
class OverAllocationWarning:
    employee_id: str
    employee_name: str
    week_start: date
    week_end: date
    default_hours: float
    allocated_hours: float
    over_allocation_hours: float
    utilization_rate: float
    severity: Severity
    message: str
    suggestions: List[str] = field(default_factory=list)
    affected_allocations: List[AffectedAllocation] = field(default_factory=list)


@dataclass
class WeeklyBreakdown:
    week_start: date
    week_end: date
    warning_count: int = 0
    critical_count: int = 0


@dataclass
class OverAllocationSummary:
    has_over_allocations: bool
    total_warnings: int
    total_critical: int
    warnings: List[OverAllocationWarning] = field(default_factory=list)
    weekly_breakdown: List[WeeklyBreakdown] = field(default_factory=list)
    # Whole-range statistics, only when no single employee was requested
    total_employees: Optional[int] = None
    over_allocated_count: Optional[int] = None
    average_utilization: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def compute_weekly_load(
    employee_id: str,
    capacity_hours: float,
    allocations: Iterable[AllocationModel],
    bucket: WeekBucket,
) -> WeeklyLoad:
    """Prorated live hours of one employee inside one bucket."""
    total = 0.0
    contributions: List[AffectedAllocation] = []
    for allocation in allocations:
        shared = overlap_days(bucket.week_start, bucket.week_end, allocation.start_date, allocation.end_date)
        if shared == 0:
            continue
        hours = allocation.allocated_hours * shared / bucket.days
        total += hours
        project = allocation.project
        contributions.append(AffectedAllocation(
            allocation_id=allocation.id,
            project_id=allocation.project_id,
            project_name=project.name if project else f"Project {allocation.project_id}",
            allocated_hours=allocation.allocated_hours,
            week_hours=round(hours, 2),
        ))
    return WeeklyLoad(
        employee_id=employee_id,
        week_start=bucket.week_start,
        week_end=bucket.week_end,
        capacity_hours=capacity_hours,
        allocated_hours=round(total, 2),
        contributions=contributions,
    )


def compute_weekly_loads(
    employee_id: str,
    capacity_hours: float,
    allocations: Sequence[AllocationModel],
    start_date: date,
    end_date: date,
) -> List[WeeklyLoad]:
    return [
        compute_weekly_load(employee_id, capacity_hours, allocations, bucket)
        for bucket in weeks_between(start_date, end_date)
    ]


class OverAllocationAnalyzer:
    """Read-side weekly aggregation of live allocations."""

    def __init__(
        self,
        allocation_repo: AllocationRepository,
        employee_repo: EmployeeRepository,
        policy: Optional[CapacityPolicy] = None,
    ):
        self.allocation_repo = allocation_repo
        self.employee_repo = employee_repo
        self.policy = policy or CapacityPolicy.from_settings()
        self.logger = logging.getLogger(self.__class__.__name__)

    # --- Weekly aggregation ---

    def weekly_loads(
        self,
        session: Session,
        employee: EmployeeModel,
        start_date: date,
        end_date: date,
        exclude_allocation_id: Optional[str] = None,
    ) -> List[WeeklyLoad]:
        """Load of every week bucket in [start_date, end_date] for one employee."""
        allocations = self.allocation_repo.find_live_by_employee(
            session,
            employee.id,
            date_from=start_date,
            date_to=end_date,
            exclude_id=exclude_allocation_id,
        )
        return compute_weekly_loads(
            employee.id, self.policy.capacity_for(employee), allocations, start_date, end_date
        )

    def peak_weekly_hours(
        self,
        session: Session,
        employee: EmployeeModel,
        start_date: date,
        end_date: date,
        exclude_allocation_id: Optional[str] = None,
    ) -> float:
        """Weekly aggregation collapsed to its busiest week."""
        loads = self.weekly_loads(session, employee, start_date, end_date, exclude_allocation_id)
        return max((load.allocated_hours for load in loads), default=0.0)

    # --- Warnings ---

    def analyze_week(
        self,
        session: Session,
        employee_id: str,
        week_start: date,
        week_end: date,
    ) -> Optional[OverAllocationWarning]:
        """
        Check one employee in one week.

        Returns:
            OverAllocationWarning, or None when the week is within capacity
        """
        if week_start > week_end:
            raise ValidationError("week_end must not be before week_start")

        employee = self.employee_repo.get(session, employee_id)
        if not employee:
            raise NotFoundError("Employee", employee_id)

        allocations = self.allocation_repo.find_live_by_employee(
            session, employee_id, date_from=week_start, date_to=week_end
        )
        load = compute_weekly_load(
            employee_id, self.policy.capacity_for(employee), allocations, WeekBucket(week_start, week_end)
        )
        return self._build_warning(employee, load)

    def analyze_range(
        self,
        session: Session,
        start_date: date,
        end_date: date,
        employee_id: Optional[str] = None,
    ) -> OverAllocationSummary:
        """
        Analyze every week of [start_date, end_date].

        Args:
            session: Database session
            start_date: First day of the range
            end_date: Last day of the range
            employee_id: Restrict to one employee; otherwise all active employees

        Returns:
            OverAllocationSummary with per-week breakdown
        """
        if start_date > end_date:
            raise ValidationError("end_date must not be before start_date")

        if employee_id:
            employee = self.employee_repo.get(session, employee_id)
            if not employee:
                raise NotFoundError("Employee", employee_id)
            employees = [employee]
        else:
            employees = self.employee_repo.list_active(session)

        allocations = self.allocation_repo.find_live_in_range(
            session, start_date, end_date, employee_ids=[e.id for e in employees]
        )
        by_employee: Dict[str, List[AllocationModel]] = defaultdict(list)
        for allocation in allocations:
            by_employee[allocation.employee_id].append(allocation)

        buckets = weeks_between(start_date, end_date)
        warnings: List[OverAllocationWarning] = []
        breakdown: List[WeeklyBreakdown] = []
        utilization_by_employee: Dict[str, List[float]] = defaultdict(list)

        for bucket in buckets:
            week = WeeklyBreakdown(bucket.week_start, bucket.week_end)
            for employee in employees:
                load = compute_weekly_load(
                    employee.id,
                    self.policy.capacity_for(employee),
                    by_employee.get(employee.id, []),
                    bucket,
                )
                utilization_by_employee[employee.id].append(load.utilization_rate)
                warning = self._build_warning(employee, load)
                if warning is None:
                    continue
                warnings.append(warning)
                week.warning_count += 1
                if warning.severity == Severity.CRITICAL:
                    week.critical_count += 1
            breakdown.append(week)

        total_critical = sum(w.critical_count for w in breakdown)
        summary = OverAllocationSummary(
            has_over_allocations=bool(warnings),
            total_warnings=len(warnings),
            total_critical=total_critical,
            warnings=warnings,
            weekly_breakdown=breakdown,
        )

        if employee_id is None:
            summary.total_employees = len(employees)
            summary.over_allocated_count = len({w.employee_id for w in warnings})
            per_employee = [
                sum(rates) / len(rates) for rates in utilization_by_employee.values() if rates
            ]
            summary.average_utilization = (
                round(sum(per_employee) / len(per_employee), 2) if per_employee else 0.0
            )

        self.logger.info(
            f"Over-allocation analysis {start_date} to {end_date}: "
            f"{len(warnings)} warnings, {total_critical} critical"
        )
        return summary

    def _build_warning(self, employee: EmployeeModel, load: WeeklyLoad) -> Optional[OverAllocationWarning]:
        if not load.is_over_allocated:
            return None

        over_hours = round(max(0.0, load.allocated_hours - load.capacity_hours), 2)
        ratio = load.allocated_hours / load.capacity_hours
        severity = self.policy.classify_severity(ratio)
        OVER_ALLOCATION_WARNINGS.labels(severity=severity.value).inc()

        return OverAllocationWarning(
            employee_id=employee.id,
            employee_name=employee.full_name,
            week_start=load.week_start,
            week_end=load.week_end,
            default_hours=load.capacity_hours,
            allocated_hours=load.allocated_hours,
            over_allocation_hours=over_hours,
            utilization_rate=load.utilization_rate,
            severity=severity,
            message=(
                f"{employee.full_name} is over-allocated by {over_hours:g} hours "
                f"({load.utilization_rate:.1f}% utilization) in week of {load.week_start.isoformat()}"
            ),
            suggestions=build_suggestions(severity, over_hours),
            affected_allocations=list(load.contributions),
        )


def build_suggestions(severity: Severity, over_hours: float) -> List[str]:
    """Remediation hints; higher severities add stronger measures."""
    suggestions = [f"Consider reducing allocation by {over_hours:g} hours"]
    if severity == Severity.LOW:
        suggestions.append("Monitor workload and avoid additional assignments this week")
    if severity.rank >= Severity.MEDIUM.rank:
        suggestions.append("Review project priorities and deadlines")
        suggestions.append("Redistribute workload to other team members")
    if severity.rank >= Severity.HIGH.rank:
        suggestions.append("Extend project timelines to spread the work")
    if severity == Severity.CRITICAL:
        suggestions.append("Consider additional headcount or contractors")
    return suggestions
