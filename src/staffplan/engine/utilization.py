"""
Utilization Aggregator

Read-side rollups over live allocations: per-employee capacity metrics,
organisation and department summaries, weekly trends, the capacity heatmap
and bottleneck detection. Every figure is recomputed from the repository,
so repeated calls over unchanged data return equal results.

Utilization of an employee over a range is the busiest week's load divided
by weekly capacity, using the same weekly proration as OverAllocationAnalyzer.
When a date bound is missing it defaults to the extent of the live
allocations in scope.
"""

import logging
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from staffplan.errors import NotFoundError, ValidationError
from staffplan.storage.models import AllocationModel, EmployeeModel
from staffplan.storage.repositories.allocation_repository import AllocationRepository
from staffplan.storage.repositories.employee_repository import EmployeeRepository
from .intervals import iso_period, overlaps, weeks_between
from .over_allocation import WeeklyLoad, compute_weekly_loads
from .policy import CapacityPolicy, Severity

logger = logging.getLogger(__name__)

UNASSIGNED_DEPARTMENT = "unassigned"


class HeatLevel(str, Enum):
    UNAVAILABLE = "unavailable"
    AVAILABLE = "available"
    GREEN = "green"
    BLUE = "blue"
    YELLOW = "yellow"
    RED = "red"


class Trend(str, Enum):
    INCREASING = "increasing"
    STABLE = "stable"
    DECREASING = "decreasing"


# Upper bounds (percent, inclusive) of the coloured heat levels
HEAT_THRESHOLDS = (
    (70.0, HeatLevel.GREEN),
    (85.0, HeatLevel.BLUE),
    (95.0, HeatLevel.YELLOW),
)


def heat_level(allocated_hours: float, available_hours: float) -> HeatLevel:
    if available_hours <= 0:
        return HeatLevel.UNAVAILABLE
    if allocated_hours <= 0:
        return HeatLevel.AVAILABLE
    percentage = allocated_hours * 100 / available_hours
    for upper, level in HEAT_THRESHOLDS:
        if percentage <= upper:
            return level
    return HeatLevel.RED


def trend_of(values: Sequence[float], index: int) -> Trend:
    """Direction at values[index]: both of the last two steps must agree."""
    if index < 2:
        return Trend.STABLE
    previous, before = values[index - 1], values[index - 2]
    current = values[index]
    if current > previous > before:
        return Trend.INCREASING
    if current < previous < before:
        return Trend.DECREASING
    return Trend.STABLE


def _percentage(allocated: float, available: float) -> float:
    if available <= 0:
        return 0.0
    return round(allocated * 100 / available, 2)


@dataclass
class CapacityMetrics:
    employee_id: str
    employee_name: str
    department_id: Optional[str]
    capacity_hours: float
    total_allocated_hours: float
    peak_weekly_hours: float
    utilization_rate: float
    conflict_count: int
    active_allocations: int


@dataclass
class UtilizationSummary:
    total_employees: int
    average_utilization: float
    overutilized_count: int
    underutilized_count: int
    total_allocations: int
    conflicts_count: int
    date_from: Optional[date] = None
    date_to: Optional[date] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class DepartmentSummary:
    department_id: str
    department_name: str
    employee_count: int
    total_capacity_hours: float
    total_allocated_hours: float
    average_utilization: float
    overutilized_count: int
    underutilized_count: int
    total_allocations: int
    conflicts_count: int


@dataclass
class TrendPoint:
    period: str
    week_start: date
    week_end: date
    allocated_hours: float
    available_hours: float
    utilization_percentage: float
    heat_level: HeatLevel
    trend: Trend = Trend.STABLE


@dataclass
class HeatmapCell:
    employee_id: str
    employee_name: str
    department_id: Optional[str]
    period: str
    week_start: date
    week_end: date
    available_hours: float
    allocated_hours: float
    utilization_percentage: float
    heat_level: HeatLevel
    project_count: int
    project_names: List[str] = field(default_factory=list)


@dataclass
class HeatmapSummary:
    total_employees: int
    total_available_hours: float
    total_allocated_hours: float
    average_utilization: float
    peak_utilization: float
    over_allocated_weeks: int
    under_utilized_weeks: int


@dataclass
class Heatmap:
    date_from: Optional[date]
    date_to: Optional[date]
    cells: List[HeatmapCell]
    summary: HeatmapSummary

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Bottleneck:
    """A run of consecutive over-allocated weeks for one employee."""
    employee_id: str
    employee_name: str
    department_id: Optional[str]
    start_date: date
    end_date: date
    consecutive_weeks: int
    average_utilization: float
    peak_utilization: float
    total_over_allocated_hours: float
    affected_projects: List[str]
    severity: Severity


class UtilizationAggregator:
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

    # --- Per employee ---

    def capacity_metrics(
        self,
        session: Session,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        employee_id: Optional[str] = None,
        department_id: Optional[str] = None,
    ) -> List[CapacityMetrics]:
        """
        Capacity metrics of every active employee in scope.

        Args:
            session: Database session
            date_from: Range start; defaults to the earliest live allocation
            date_to: Range end; defaults to the latest live allocation
            employee_id: Restrict to one employee
            department_id: Restrict to one department

        Returns:
            One CapacityMetrics per employee, including employees with no allocations
        """
        employees, by_employee, start, end = self._load_scope(
            session, date_from, date_to, employee_id=employee_id, department_id=department_id
        )
        return [
            self._metrics_for(employee, by_employee.get(employee.id, []), start, end)
            for employee in employees
        ]

    def summary(
        self,
        session: Session,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        employee_id: Optional[str] = None,
        department_id: Optional[str] = None,
    ) -> UtilizationSummary:
        employees, by_employee, start, end = self._load_scope(
            session, date_from, date_to, employee_id=employee_id, department_id=department_id
        )
        metrics = [
            self._metrics_for(employee, by_employee.get(employee.id, []), start, end)
            for employee in employees
        ]
        result = self._summarize(metrics)
        result.date_from, result.date_to = start, end
        self.logger.info(
            f"Utilization summary {start} to {end}: {result.total_employees} employees, "
            f"{result.overutilized_count} over-utilized"
        )
        return result

    def department_summaries(
        self,
        session: Session,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> List[DepartmentSummary]:
        """Rollup per department; employees without one land in the "unassigned" bucket."""
        employees, by_employee, start, end = self._load_scope(session, date_from, date_to)
        names = {d.id: d.name for d in self.employee_repo.list_departments(session)}

        grouped: Dict[str, List[CapacityMetrics]] = defaultdict(list)
        for employee in employees:
            metrics = self._metrics_for(employee, by_employee.get(employee.id, []), start, end)
            grouped[employee.department_id or UNASSIGNED_DEPARTMENT].append(metrics)

        summaries = []
        for key, metrics in grouped.items():
            totals = self._summarize(metrics)
            summaries.append(DepartmentSummary(
                department_id=key,
                department_name=names.get(key, "Unassigned" if key == UNASSIGNED_DEPARTMENT else key),
                employee_count=totals.total_employees,
                total_capacity_hours=round(sum(m.capacity_hours for m in metrics), 2),
                total_allocated_hours=round(sum(m.total_allocated_hours for m in metrics), 2),
                average_utilization=totals.average_utilization,
                overutilized_count=totals.overutilized_count,
                underutilized_count=totals.underutilized_count,
                total_allocations=totals.total_allocations,
                conflicts_count=totals.conflicts_count,
            ))
        summaries.sort(key=lambda s: (s.department_id == UNASSIGNED_DEPARTMENT, s.department_name))
        return summaries

    # --- Trends ---

    def employee_trend(
        self,
        session: Session,
        employee_id: str,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> List[TrendPoint]:
        employees, by_employee, start, end = self._load_scope(
            session, date_from, date_to, employee_id=employee_id
        )
        return self._trend(employees, by_employee, start, end)

    def department_trend(
        self,
        session: Session,
        department_id: str,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> List[TrendPoint]:
        """Weekly load of a department: allocated and available hours summed over its employees."""
        if not self.employee_repo.get_department(session, department_id):
            raise NotFoundError("Department", department_id)
        employees, by_employee, start, end = self._load_scope(
            session, date_from, date_to, department_id=department_id
        )
        return self._trend(employees, by_employee, start, end)

    def _trend(
        self,
        employees: List[EmployeeModel],
        by_employee: Dict[str, List[AllocationModel]],
        start: Optional[date],
        end: Optional[date],
    ) -> List[TrendPoint]:
        if start is None or end is None:
            return []

        buckets = weeks_between(start, end)
        allocated = [0.0] * len(buckets)
        available = [0.0] * len(buckets)
        for employee in employees:
            capacity = self.policy.capacity_for(employee)
            loads = compute_weekly_loads(
                employee.id, capacity, by_employee.get(employee.id, []), start, end
            )
            for i, load in enumerate(loads):
                allocated[i] += load.allocated_hours
                available[i] += capacity

        percentages = [_percentage(a, c) for a, c in zip(allocated, available)]
        return [
            TrendPoint(
                period=bucket.period,
                week_start=bucket.week_start,
                week_end=bucket.week_end,
                allocated_hours=round(allocated[i], 2),
                available_hours=round(available[i], 2),
                utilization_percentage=percentages[i],
                heat_level=heat_level(allocated[i], available[i]),
                trend=trend_of(percentages, i),
            )
            for i, bucket in enumerate(buckets)
        ]

    # --- Heatmap ---

    def heatmap(
        self,
        session: Session,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        department_id: Optional[str] = None,
    ) -> Heatmap:
        """Weekly cell per employee plus a summary over all cells."""
        employees, by_employee, start, end = self._load_scope(
            session, date_from, date_to, department_id=department_id
        )
        cells: List[HeatmapCell] = []
        if start is not None and end is not None:
            for employee in employees:
                for load in self._loads_for(employee, by_employee.get(employee.id, []), start, end):
                    cells.append(self._to_cell(employee, load))

        utilizations = [c.utilization_percentage for c in cells]
        summary = HeatmapSummary(
            total_employees=len({c.employee_id for c in cells}),
            total_available_hours=round(sum(c.available_hours for c in cells), 2),
            total_allocated_hours=round(sum(c.allocated_hours for c in cells), 2),
            average_utilization=round(sum(utilizations) / len(utilizations), 2) if utilizations else 0.0,
            peak_utilization=max(utilizations, default=0.0),
            over_allocated_weeks=sum(1 for c in cells if c.heat_level == HeatLevel.RED),
            under_utilized_weeks=sum(
                1 for c in cells
                if c.heat_level != HeatLevel.UNAVAILABLE
                and c.utilization_percentage < self.policy.underutilized_threshold
            ),
        )
        return Heatmap(date_from=start, date_to=end, cells=cells, summary=summary)

    def _to_cell(self, employee: EmployeeModel, load: WeeklyLoad) -> HeatmapCell:
        project_names = sorted({c.project_name for c in load.contributions})
        return HeatmapCell(
            employee_id=employee.id,
            employee_name=employee.full_name,
            department_id=employee.department_id,
            period=iso_period(load.week_start),
            week_start=load.week_start,
            week_end=load.week_end,
            available_hours=load.capacity_hours,
            allocated_hours=load.allocated_hours,
            utilization_percentage=load.utilization_rate,
            heat_level=heat_level(load.allocated_hours, load.capacity_hours),
            project_count=len(project_names),
            project_names=project_names,
        )

    # --- Bottlenecks ---

    def bottlenecks(
        self,
        session: Session,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        department_id: Optional[str] = None,
        min_weeks: int = 1,
    ) -> List[Bottleneck]:
        """
        Runs of consecutive over-allocated weeks, most severe first.

        Severity uses the over-allocation bands on the peak week of the run.
        """
        if min_weeks < 1:
            raise ValidationError("min_weeks must be at least 1")

        employees, by_employee, start, end = self._load_scope(
            session, date_from, date_to, department_id=department_id
        )
        if start is None or end is None:
            return []

        found: List[Bottleneck] = []
        for employee in employees:
            run: List[WeeklyLoad] = []
            for load in self._loads_for(employee, by_employee.get(employee.id, []), start, end):
                if load.is_over_allocated:
                    run.append(load)
                    continue
                if len(run) >= min_weeks:
                    found.append(self._to_bottleneck(employee, run))
                run = []
            if len(run) >= min_weeks:
                found.append(self._to_bottleneck(employee, run))

        found.sort(key=lambda b: (-b.severity.rank, -b.peak_utilization, b.start_date))
        return found

    def _to_bottleneck(self, employee: EmployeeModel, run: List[WeeklyLoad]) -> Bottleneck:
        rates = [load.utilization_rate for load in run]
        peak = max(run, key=lambda load: load.allocated_hours)
        projects = sorted({c.project_name for load in run for c in load.contributions})
        return Bottleneck(
            employee_id=employee.id,
            employee_name=employee.full_name,
            department_id=employee.department_id,
            start_date=run[0].week_start,
            end_date=run[-1].week_end,
            consecutive_weeks=len(run),
            average_utilization=round(sum(rates) / len(rates), 2),
            peak_utilization=max(rates),
            total_over_allocated_hours=round(
                sum(load.allocated_hours - load.capacity_hours for load in run), 2
            ),
            affected_projects=projects,
            severity=self.policy.classify_severity(peak.allocated_hours / peak.capacity_hours),
        )

    # --- Internals ---

    def _load_scope(
        self,
        session: Session,
        date_from: Optional[date],
        date_to: Optional[date],
        employee_id: Optional[str] = None,
        department_id: Optional[str] = None,
    ) -> Tuple[List[EmployeeModel], Dict[str, List[AllocationModel]], Optional[date], Optional[date]]:
        """Employees in scope, their live allocations and the resolved range."""
        if date_from and date_to and date_from > date_to:
            raise ValidationError("date_to must not be before date_from")

        if employee_id:
            employee = self.employee_repo.get(session, employee_id)
            if not employee:
                raise NotFoundError("Employee", employee_id)
            employees = [employee]
        else:
            employees = self.employee_repo.list_active(session, department_id=department_id)

        allocations = self.allocation_repo.find_live_in_range(
            session, date_from, date_to, employee_ids=[e.id for e in employees]
        )
        by_employee: Dict[str, List[AllocationModel]] = defaultdict(list)
        for allocation in allocations:
            by_employee[allocation.employee_id].append(allocation)

        start = date_from or min((a.start_date for a in allocations), default=None)
        end = date_to or max((a.end_date for a in allocations), default=None)
        if start is not None and end is not None and start > end:
            # One explicit bound beyond every stored allocation
            start, end = None, None
        return employees, by_employee, start, end

    def _loads_for(
        self,
        employee: EmployeeModel,
        allocations: List[AllocationModel],
        start: date,
        end: date,
    ) -> List[WeeklyLoad]:
        return compute_weekly_loads(
            employee.id, self.policy.capacity_for(employee), allocations, start, end
        )

    def _metrics_for(
        self,
        employee: EmployeeModel,
        allocations: List[AllocationModel],
        start: Optional[date],
        end: Optional[date],
    ) -> CapacityMetrics:
        capacity = self.policy.capacity_for(employee)
        peak = 0.0
        if start is not None and end is not None:
            loads = self._loads_for(employee, allocations, start, end)
            peak = max((load.allocated_hours for load in loads), default=0.0)

        return CapacityMetrics(
            employee_id=employee.id,
            employee_name=employee.full_name,
            department_id=employee.department_id,
            capacity_hours=capacity,
            total_allocated_hours=round(sum(a.allocated_hours for a in allocations), 2),
            peak_weekly_hours=peak,
            utilization_rate=_percentage(peak, capacity),
            conflict_count=count_conflicting(allocations),
            active_allocations=len(allocations),
        )

    def _summarize(self, metrics: List[CapacityMetrics]) -> UtilizationSummary:
        rates = [m.utilization_rate for m in metrics]
        return UtilizationSummary(
            total_employees=len(metrics),
            average_utilization=round(sum(rates) / len(rates), 2) if rates else 0.0,
            overutilized_count=sum(1 for r in rates if r > self.policy.over_allocation_threshold),
            underutilized_count=sum(1 for r in rates if r < self.policy.underutilized_threshold),
            total_allocations=sum(m.active_allocations for m in metrics),
            conflicts_count=sum(m.conflict_count for m in metrics),
        )


def count_conflicting(allocations: Sequence[AllocationModel]) -> int:
    """Allocations that overlap at least one other allocation in the list."""
    conflicting = set()
    for i, first in enumerate(allocations):
        for second in allocations[i + 1:]:
            if overlaps(first.start_date, first.end_date, second.start_date, second.end_date):
                conflicting.add(first.id)
                conflicting.add(second.id)
    return len(conflicting)
