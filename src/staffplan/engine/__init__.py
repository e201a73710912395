"""
Allocation conflict and capacity engine.

build_engine() wires repositories and services together; nothing in the
engine is a module-level singleton, callers keep the returned bundle.

Usage:
    engine = build_engine()
    with adapter.get_session() as session:
        outcome = engine.allocations.create(session, AllocationCreate(...))
"""

from dataclasses import dataclass
from typing import Optional

from staffplan.storage.repositories import AllocationRepository, EmployeeRepository, ProjectRepository
from .allocation_service import AllocationOutcome, AllocationService
from .capacity_validator import CapacityValidationResult, CapacityValidator
from .conflict_detector import ConflictDetector, ConflictEntry, ConflictReport
from .over_allocation import OverAllocationAnalyzer, OverAllocationSummary, OverAllocationWarning
from .policy import CapacityPolicy, EnforcementMode, Severity
from .schemas import AllocationCreate, AllocationUpdate
from .utilization import UtilizationAggregator


@dataclass
class AllocationEngine:
    policy: CapacityPolicy
    allocation_repo: AllocationRepository
    employee_repo: EmployeeRepository
    project_repo: ProjectRepository
    conflicts: ConflictDetector
    analyzer: OverAllocationAnalyzer
    validator: CapacityValidator
    allocations: AllocationService
    utilization: UtilizationAggregator


def build_engine(policy: Optional[CapacityPolicy] = None) -> AllocationEngine:
    policy = policy or CapacityPolicy.from_settings()
    allocation_repo = AllocationRepository()
    employee_repo = EmployeeRepository()
    project_repo = ProjectRepository()

    conflicts = ConflictDetector(allocation_repo)
    analyzer = OverAllocationAnalyzer(allocation_repo, employee_repo, policy)
    validator = CapacityValidator(employee_repo, analyzer, conflicts, policy)

    return AllocationEngine(
        policy=policy,
        allocation_repo=allocation_repo,
        employee_repo=employee_repo,
        project_repo=project_repo,
        conflicts=conflicts,
        analyzer=analyzer,
        validator=validator,
        allocations=AllocationService(allocation_repo, employee_repo, project_repo, validator, policy),
        utilization=UtilizationAggregator(allocation_repo, employee_repo, policy),
    )


__all__ = [
    "AllocationCreate",
    "AllocationEngine",
    "AllocationOutcome",
    "AllocationService",
    "AllocationUpdate",
    "CapacityPolicy",
    "CapacityValidationResult",
    "CapacityValidator",
    "ConflictDetector",
    "ConflictEntry",
    "ConflictReport",
    "EnforcementMode",
    "OverAllocationAnalyzer",
    "OverAllocationSummary",
    "OverAllocationWarning",
    "Severity",
    "UtilizationAggregator",
    "build_engine",
]
