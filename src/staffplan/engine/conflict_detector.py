"""
Conflict Detector

Finds live allocations of an employee whose dates overlap a candidate
interval. Overlap is legal only when forced; the report tells the caller
what collides and when the employee is free again.

Usage:
    detector = ConflictDetector(AllocationRepository())
    report = detector.check_conflicts(session, "emp_1", date(2024, 1, 15), date(2024, 2, 15))
    if report.has_conflicts:
        print(report.suggested_start_date)
"""

import logging
from dataclasses import asdict, dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from staffplan.errors import ValidationError
from staffplan.platform.metrics import CONFLICTS_DETECTED
from staffplan.storage.models import AllocationModel
from staffplan.storage.repositories.allocation_repository import AllocationRepository
from .intervals import ONE_DAY, overlap_days, overlaps

logger = logging.getLogger(__name__)


@dataclass
class ConflictEntry:
    """One existing allocation that collides with the candidate."""
    allocation_id: str
    project_id: str
    project_name: str
    start_date: date
    end_date: date
    allocated_hours: float
    overlap_days: int


@dataclass
class ConflictReport:
    has_conflicts: bool
    conflicts: List[ConflictEntry] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)
    suggested_start_date: Optional[date] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class ConflictDetector:
    """Read-only overlap check against the allocation repository."""

    def __init__(self, allocation_repo: AllocationRepository):
        self.allocation_repo = allocation_repo
        self.logger = logging.getLogger(self.__class__.__name__)

    def check_conflicts(
        self,
        session: Session,
        employee_id: str,
        start_date: date,
        end_date: date,
        exclude_allocation_id: Optional[str] = None,
    ) -> ConflictReport:
        """
        Report live allocations of employee_id overlapping [start_date, end_date].

        Args:
            session: Database session
            employee_id: Employee to check
            start_date: Candidate start (inclusive)
            end_date: Candidate end (inclusive), must be after start_date
            exclude_allocation_id: Allocation being updated, ignored in the check

        Returns:
            ConflictReport; has_conflicts is False when nothing overlaps
        """
        if start_date >= end_date:
            raise ValidationError.from_fields([{
                "field": "end_date",
                "message": "End date must be after start date",
                "value": end_date.isoformat(),
            }])

        candidates = self.allocation_repo.find_live_by_employee(
            session,
            employee_id,
            date_from=start_date,
            date_to=end_date,
            exclude_id=exclude_allocation_id,
        )
        overlapping = [
            a for a in candidates
            if a.id != exclude_allocation_id and overlaps(start_date, end_date, a.start_date, a.end_date)
        ]

        if not overlapping:
            return ConflictReport(has_conflicts=False)

        entries = [self._to_entry(a, start_date, end_date) for a in overlapping]
        suggested_start = max(e.end_date for e in entries) + ONE_DAY

        CONFLICTS_DETECTED.inc(len(entries))
        self.logger.info(
            f"Employee {employee_id} has {len(entries)} conflicting allocation(s) "
            f"for {start_date} to {end_date}"
        )

        return ConflictReport(
            has_conflicts=True,
            conflicts=entries,
            suggestions=self._build_suggestions(entries, suggested_start),
            suggested_start_date=suggested_start,
        )

    def _to_entry(self, allocation: AllocationModel, start_date: date, end_date: date) -> ConflictEntry:
        project = allocation.project
        return ConflictEntry(
            allocation_id=allocation.id,
            project_id=allocation.project_id,
            project_name=project.name if project else f"Project {allocation.project_id}",
            start_date=allocation.start_date,
            end_date=allocation.end_date,
            allocated_hours=allocation.allocated_hours,
            overlap_days=overlap_days(start_date, end_date, allocation.start_date, allocation.end_date),
        )

    def _build_suggestions(self, entries: List[ConflictEntry], suggested_start: date) -> List[str]:
        total_hours = sum(e.allocated_hours for e in entries)
        suggestions = [
            f"Found {len(entries)} conflicting allocation(s) totaling {total_hours:g} hours per week"
        ]
        for entry in entries:
            suggestions.append(
                f'Conflict with "{entry.project_name}" ({entry.start_date.isoformat()} to '
                f'{entry.end_date.isoformat()}, {entry.overlap_days} days overlap, '
                f'{entry.allocated_hours:g}h per week)'
            )
        suggestions.append(f"Consider starting on or after {suggested_start.isoformat()}")
        return suggestions
