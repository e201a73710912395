from datetime import date
from unittest.mock import MagicMock

import pytest

from staffplan.engine import AllocationCreate, AllocationUpdate, EnforcementMode
from staffplan.engine.allocation_service import AllocationService, can_transition
from staffplan.engine.capacity_validator import CapacityValidationResult, CapacityValidator
from staffplan.engine.conflict_detector import ConflictEntry, ConflictReport
from staffplan.errors import (
    CapacityExceededError,
    ConflictError,
    NotFoundError,
    StateTransitionError,
    ValidationError,
)
from staffplan.storage.models import AllocationStatus, EmployeeModel, ProjectModel
from staffplan.storage.repositories import AllocationRepository, EmployeeRepository, ProjectRepository


def make_create(**overrides) -> AllocationCreate:
    data = dict(
        employee_id="emp_alice",
        project_id="proj_apollo",
        start_date=date(2024, 1, 1),
        end_date=date(2024, 1, 31),
        allocated_hours=20,
        role="Developer",
    )
    data.update(overrides)
    return AllocationCreate(**data)


# --- Create ---

def test_create_then_get_round_trip(seeded_session, engine):
    outcome = engine.allocations.create(seeded_session, make_create(hourly_rate=90, notes="Backend"))

    fetched = engine.allocations.get(seeded_session, outcome.allocation.id)

    assert fetched.id == outcome.allocation.id
    assert fetched.employee_id == "emp_alice"
    assert fetched.project_id == "proj_apollo"
    assert fetched.start_date == date(2024, 1, 1)
    assert fetched.end_date == date(2024, 1, 31)
    assert fetched.allocated_hours == 20
    assert fetched.role == "Developer"
    assert fetched.hourly_rate == 90
    assert fetched.notes == "Backend"
    assert fetched.status == AllocationStatus.TENTATIVE.value
    assert fetched.version == 1
    assert outcome.warnings == []
    assert outcome.capacity.utilization_rate == 50.0


def test_create_active(seeded_session, engine):
    outcome = engine.allocations.create(seeded_session, make_create(status=AllocationStatus.ACTIVE))
    assert outcome.allocation.status == "active"


def test_create_collects_every_field_error(seeded_session, engine):
    data = make_create(start_date=date(2024, 2, 1), end_date=date(2024, 1, 1), allocated_hours=0, role="  ")

    with pytest.raises(ValidationError) as exc_info:
        engine.allocations.create(seeded_session, data)

    fields = {e["field"] for e in exc_info.value.field_errors}
    assert fields == {"end_date", "allocated_hours", "role"}


@pytest.mark.parametrize(
    "overrides, field",
    [
        ({"allocated_hours": 1001}, "allocated_hours"),
        ({"allocated_hours": -5}, "allocated_hours"),
        ({"status": AllocationStatus.COMPLETED}, "status"),
        ({"hourly_rate": -1}, "hourly_rate"),
        ({"utilization_target": 0}, "utilization_target"),
        ({"employee_id": ""}, "employee_id"),
    ],
)
def test_create_rejects_invalid_fields(seeded_session, engine, overrides, field):
    with pytest.raises(ValidationError) as exc_info:
        engine.allocations.create(seeded_session, make_create(**overrides))
    assert field in {e["field"] for e in exc_info.value.field_errors}


@pytest.mark.parametrize("value", [float("nan"), float("inf")])
@pytest.mark.parametrize("field", ["allocated_hours", "utilization_target", "hourly_rate", "billable_rate"])
@pytest.mark.parametrize("mode", list(EnforcementMode))
def test_create_rejects_non_finite_numbers(seeded_session, engine, field, value, mode):
    data = make_create(**{"allocated_hours": 60, field: value})

    with pytest.raises(ValidationError) as exc_info:
        engine.allocations.create(seeded_session, data, mode)

    assert field in {e["field"] for e in exc_info.value.field_errors}
    assert engine.allocation_repo.find_by_employee(seeded_session, "emp_alice").total == 0


def test_create_requires_existing_active_employee_and_project(seeded_session, engine):
    with pytest.raises(NotFoundError):
        engine.allocations.create(seeded_session, make_create(employee_id="emp_nobody"))
    with pytest.raises(ValidationError):
        engine.allocations.create(seeded_session, make_create(employee_id="emp_dave"))
    with pytest.raises(NotFoundError):
        engine.allocations.create(seeded_session, make_create(project_id="proj_nothing"))
    with pytest.raises(ValidationError):
        engine.allocations.create(seeded_session, make_create(project_id="proj_closed"))


def test_create_must_fit_project_bounds(seeded_session, engine):
    with pytest.raises(ValidationError) as exc_info:
        engine.allocations.create(
            seeded_session,
            make_create(project_id="proj_short", start_date=date(2024, 2, 20), end_date=date(2024, 4, 10)),
        )
    assert {e["field"] for e in exc_info.value.field_errors} == {"start_date", "end_date"}

    # Open-ended project accepts any end date
    outcome = engine.allocations.create(
        seeded_session, make_create(project_id="proj_zeus", start_date=date(2024, 6, 1), end_date=date(2030, 1, 1))
    )
    assert outcome.allocation.end_date == date(2030, 1, 1)


def test_two_disjoint_allocations_are_accepted(seeded_session, engine):
    engine.allocations.create(seeded_session, make_create())
    second = engine.allocations.create(
        seeded_session, make_create(start_date=date(2024, 2, 1), end_date=date(2024, 2, 28))
    )

    assert second.conflicts.has_conflicts is False
    assert engine.allocation_repo.find_by_employee(seeded_session, "emp_alice").total == 2


def test_conflict_rejected_in_checked_mode(seeded_session, engine):
    first = engine.allocations.create(seeded_session, make_create())

    with pytest.raises(ConflictError) as exc_info:
        engine.allocations.create(
            seeded_session, make_create(project_id="proj_zeus", start_date=date(2024, 1, 15), end_date=date(2024, 2, 15))
        )

    report = exc_info.value.report
    assert report.conflicts[0].allocation_id == first.allocation.id
    assert report.suggested_start_date == date(2024, 2, 1)
    assert exc_info.value.to_dict()["error"] == "conflict"
    assert engine.allocation_repo.find_by_employee(seeded_session, "emp_alice").total == 1


def test_conflict_rejected_in_strict_mode(seeded_session, engine):
    engine.allocations.create(seeded_session, make_create())

    with pytest.raises(ConflictError):
        engine.allocations.create(
            seeded_session,
            make_create(project_id="proj_zeus", start_date=date(2024, 1, 15), end_date=date(2024, 2, 15)),
            EnforcementMode.STRICT,
        )


def test_force_persists_and_returns_warnings(seeded_session, engine):
    engine.allocations.create(seeded_session, make_create(allocated_hours=30))

    outcome = engine.allocations.create(
        seeded_session,
        make_create(project_id="proj_zeus", start_date=date(2024, 1, 8), end_date=date(2024, 1, 21)),
        EnforcementMode.FORCE,
    )

    assert outcome.allocation.id
    assert outcome.conflicts.has_conflicts is True
    assert outcome.capacity.utilization_rate == 125.0
    assert any(w.startswith("Over-allocation") for w in outcome.warnings)
    assert engine.allocation_repo.find_by_employee(seeded_session, "emp_alice").total == 2


def test_capacity_overage_is_a_warning_unless_strict(seeded_session, engine):
    with pytest.raises(CapacityExceededError) as exc_info:
        engine.allocations.create(seeded_session, make_create(allocated_hours=50), EnforcementMode.STRICT)
    assert exc_info.value.result.utilization_rate == 125.0

    outcome = engine.allocations.create(seeded_session, make_create(allocated_hours=50))
    assert outcome.capacity.is_valid is False
    assert any(w.startswith("Over-allocation") for w in outcome.warnings)


# --- Lifecycle ---

@pytest.mark.parametrize(
    "current, target, allowed",
    [
        (AllocationStatus.TENTATIVE, AllocationStatus.ACTIVE, True),
        (AllocationStatus.TENTATIVE, AllocationStatus.CANCELLED, True),
        (AllocationStatus.TENTATIVE, AllocationStatus.COMPLETED, False),
        (AllocationStatus.ACTIVE, AllocationStatus.COMPLETED, True),
        (AllocationStatus.ACTIVE, AllocationStatus.CANCELLED, True),
        (AllocationStatus.ACTIVE, AllocationStatus.TENTATIVE, False),
        (AllocationStatus.COMPLETED, AllocationStatus.ACTIVE, False),
        (AllocationStatus.COMPLETED, AllocationStatus.CANCELLED, False),
        (AllocationStatus.CANCELLED, AllocationStatus.ACTIVE, False),
        (AllocationStatus.CANCELLED, AllocationStatus.TENTATIVE, False),
    ],
)
def test_transition_table(current, target, allowed):
    assert can_transition(current, target) is allowed


def test_confirm_then_complete(seeded_session, engine):
    allocation = engine.allocations.create(seeded_session, make_create()).allocation

    confirmed = engine.allocations.confirm(seeded_session, allocation.id)
    assert confirmed.status == "active"
    version = confirmed.version

    # Confirming twice changes nothing
    again = engine.allocations.confirm(seeded_session, allocation.id)
    assert again.status == "active"
    assert again.version == version

    completed = engine.allocations.complete(seeded_session, allocation.id, actual_hours=72.5)
    assert completed.status == "completed"
    assert completed.actual_hours == 72.5


def test_complete_requires_active(seeded_session, engine):
    allocation = engine.allocations.create(seeded_session, make_create()).allocation

    with pytest.raises(StateTransitionError) as exc_info:
        engine.allocations.complete(seeded_session, allocation.id)

    assert exc_info.value.current == "tentative"
    assert exc_info.value.target == "completed"


def test_terminal_states_are_final(seeded_session, engine):
    allocation = engine.allocations.create(seeded_session, make_create()).allocation
    cancelled = engine.allocations.cancel(seeded_session, allocation.id)
    assert cancelled.status == "cancelled"

    with pytest.raises(StateTransitionError):
        engine.allocations.confirm(seeded_session, allocation.id)
    with pytest.raises(StateTransitionError):
        engine.allocations.cancel(seeded_session, allocation.id)
    with pytest.raises(StateTransitionError):
        engine.allocations.complete(seeded_session, allocation.id)


def test_cancelled_allocation_frees_the_dates(seeded_session, engine):
    allocation = engine.allocations.create(seeded_session, make_create()).allocation
    engine.allocations.cancel(seeded_session, allocation.id)

    outcome = engine.allocations.create(seeded_session, make_create(project_id="proj_zeus"))

    assert outcome.conflicts.has_conflicts is False


def test_complete_rejects_negative_actual_hours(seeded_session, engine):
    allocation = engine.allocations.create(seeded_session, make_create(status=AllocationStatus.ACTIVE)).allocation

    with pytest.raises(ValidationError):
        engine.allocations.complete(seeded_session, allocation.id, actual_hours=-1)


@pytest.mark.parametrize("actual_hours", [1001, float("nan"), float("inf")])
def test_complete_rejects_out_of_range_actual_hours(seeded_session, engine, actual_hours):
    allocation = engine.allocations.create(seeded_session, make_create(status=AllocationStatus.ACTIVE)).allocation

    with pytest.raises(ValidationError):
        engine.allocations.complete(seeded_session, allocation.id, actual_hours=actual_hours)
    assert engine.allocations.get(seeded_session, allocation.id).status == "active"


# --- Update ---

def test_update_hours_rechecks_without_self_conflict(seeded_session, engine):
    allocation = engine.allocations.create(seeded_session, make_create()).allocation

    outcome = engine.allocations.update(seeded_session, allocation.id, AllocationUpdate(allocated_hours=35))

    assert outcome.allocation.allocated_hours == 35
    assert outcome.allocation.version == 2
    assert outcome.conflicts.has_conflicts is False
    assert outcome.capacity.utilization_rate == 87.5
    assert outcome.warnings[0].startswith("High utilization")


def test_update_dates_into_another_allocation_conflicts(seeded_session, engine):
    engine.allocations.create(seeded_session, make_create())
    second = engine.allocations.create(
        seeded_session, make_create(start_date=date(2024, 2, 1), end_date=date(2024, 2, 28))
    ).allocation

    with pytest.raises(ConflictError):
        engine.allocations.update(seeded_session, second.id, AllocationUpdate(start_date=date(2024, 1, 20)))

    forced = engine.allocations.update(
        seeded_session, second.id, AllocationUpdate(start_date=date(2024, 1, 20)), EnforcementMode.FORCE
    )
    assert forced.allocation.start_date == date(2024, 1, 20)


def test_update_validates_merged_dates(seeded_session, engine):
    allocation = engine.allocations.create(seeded_session, make_create()).allocation

    with pytest.raises(ValidationError):
        engine.allocations.update(seeded_session, allocation.id, AllocationUpdate(end_date=date(2023, 12, 1)))


@pytest.mark.parametrize(
    "changes, field",
    [
        ({"allocated_hours": float("nan")}, "allocated_hours"),
        ({"utilization_target": float("nan")}, "utilization_target"),
        ({"hourly_rate": float("inf")}, "hourly_rate"),
        ({"billable_rate": float("nan")}, "billable_rate"),
        ({"billable_rate": -3}, "billable_rate"),
        ({"actual_hours": float("nan")}, "actual_hours"),
        ({"actual_hours": 1001}, "actual_hours"),
        ({"actual_hours": -1}, "actual_hours"),
    ],
)
def test_update_rejects_invalid_numbers(seeded_session, engine, changes, field):
    allocation = engine.allocations.create(seeded_session, make_create()).allocation

    with pytest.raises(ValidationError) as exc_info:
        engine.allocations.update(seeded_session, allocation.id, AllocationUpdate(**changes), EnforcementMode.STRICT)

    assert field in {e["field"] for e in exc_info.value.field_errors}
    unchanged = engine.allocations.get(seeded_session, allocation.id)
    assert unchanged.allocated_hours == 20
    assert unchanged.version == 1


def test_update_accepts_actual_hours_within_bounds(seeded_session, engine):
    allocation = engine.allocations.create(seeded_session, make_create()).allocation

    outcome = engine.allocations.update(seeded_session, allocation.id, AllocationUpdate(actual_hours=1000))

    assert outcome.allocation.actual_hours == 1000


def test_update_status_follows_transition_table(seeded_session, engine):
    allocation = engine.allocations.create(seeded_session, make_create(status=AllocationStatus.ACTIVE)).allocation

    with pytest.raises(StateTransitionError):
        engine.allocations.update(seeded_session, allocation.id, AllocationUpdate(status=AllocationStatus.TENTATIVE))

    outcome = engine.allocations.update(
        seeded_session, allocation.id, AllocationUpdate(status=AllocationStatus.COMPLETED, actual_hours=80)
    )
    assert outcome.allocation.status == "completed"
    assert outcome.allocation.actual_hours == 80


def test_terminal_schedule_is_frozen_but_notes_are_not(seeded_session, engine):
    allocation = engine.allocations.create(seeded_session, make_create()).allocation
    engine.allocations.cancel(seeded_session, allocation.id)

    with pytest.raises(StateTransitionError):
        engine.allocations.update(seeded_session, allocation.id, AllocationUpdate(allocated_hours=10))

    outcome = engine.allocations.update(seeded_session, allocation.id, AllocationUpdate(notes="Budget cut"))
    assert outcome.allocation.notes == "Budget cut"


def test_update_missing_allocation(seeded_session, engine):
    with pytest.raises(NotFoundError):
        engine.allocations.update(seeded_session, "alloc_missing", AllocationUpdate(notes="x"))


# --- Delete and listing ---

def test_delete_is_soft(seeded_session, engine):
    allocation = engine.allocations.create(seeded_session, make_create()).allocation

    removed = engine.allocations.delete(seeded_session, allocation.id)

    assert removed.deleted_at is not None
    with pytest.raises(NotFoundError):
        engine.allocations.get(seeded_session, allocation.id)
    with pytest.raises(NotFoundError):
        engine.allocations.delete(seeded_session, allocation.id)

    outcome = engine.allocations.create(seeded_session, make_create(project_id="proj_zeus"))
    assert outcome.conflicts.has_conflicts is False


def test_list_for_project_and_employee(seeded_session, engine):
    engine.allocations.create(seeded_session, make_create())
    engine.allocations.create(seeded_session, make_create(employee_id="emp_bob"))
    engine.allocations.create(seeded_session, make_create(employee_id="emp_carol", project_id="proj_zeus"))

    apollo = engine.allocations.list_for_project(seeded_session, "proj_apollo", limit=1)
    assert apollo.total == 2
    assert apollo.total_pages == 2
    assert len(apollo.items) == 1

    carol = engine.allocations.list_for_employee(seeded_session, "emp_carol")
    assert [a.project_id for a in carol.items] == ["proj_zeus"]

    with pytest.raises(NotFoundError):
        engine.allocations.list_for_project(seeded_session, "proj_nothing")
    with pytest.raises(NotFoundError):
        engine.allocations.list_for_employee(seeded_session, "emp_nobody")


# --- Isolated from storage ---

@pytest.fixture
def mocked_service():
    allocation_repo = MagicMock(spec=AllocationRepository)
    employee_repo = MagicMock(spec=EmployeeRepository)
    project_repo = MagicMock(spec=ProjectRepository)
    validator = MagicMock(spec=CapacityValidator)

    employee_repo.get.return_value = EmployeeModel(id="emp_x", first_name="Xena", last_name="Young", is_active=True)
    project_repo.get.return_value = ProjectModel(
        id="proj_x", name="X", start_date=date(2024, 1, 1), end_date=None, is_active=True
    )
    allocation_repo.create.side_effect = lambda session, entity: entity

    service = AllocationService(allocation_repo, employee_repo, project_repo, validator)
    return service, allocation_repo, validator


def _conflicting_result() -> CapacityValidationResult:
    report = ConflictReport(
        has_conflicts=True,
        conflicts=[ConflictEntry("alloc_1", "proj_x", "X", date(2024, 1, 1), date(2024, 1, 31), 30, 31)],
        suggested_start_date=date(2024, 2, 1),
    )
    return CapacityValidationResult(
        is_valid=False,
        warnings=["1 scheduling conflict(s) detected"],
        max_capacity_hours=40,
        current_allocated_hours=30,
        candidate_hours=20,
        utilization_rate=125.0,
        conflict_count=1,
        conflicts=report,
    )


def test_lock_is_taken_before_checks_and_write(mocked_service):
    service, allocation_repo, validator = mocked_service
    order = []
    allocation_repo.lock_employee.side_effect = lambda *args, **kwargs: order.append("lock")
    validator.validate_capacity.side_effect = lambda *args, **kwargs: (
        order.append("validate") or CapacityValidationResult(is_valid=True, conflicts=ConflictReport(has_conflicts=False))
    )
    allocation_repo.create.side_effect = lambda session, entity: order.append("create") or entity

    service.create(MagicMock(), make_create(employee_id="emp_x", project_id="proj_x"))

    assert order == ["lock", "validate", "create"]


def test_force_never_raises(mocked_service):
    service, allocation_repo, validator = mocked_service
    validator.validate_capacity.return_value = _conflicting_result()

    outcome = service.create(MagicMock(), make_create(employee_id="emp_x", project_id="proj_x"), EnforcementMode.FORCE)

    allocation_repo.create.assert_called_once()
    assert outcome.conflicts.has_conflicts is True
    assert outcome.warnings == ["1 scheduling conflict(s) detected"]


def test_checked_raises_before_any_write(mocked_service):
    service, allocation_repo, validator = mocked_service
    validator.validate_capacity.return_value = _conflicting_result()

    with pytest.raises(ConflictError):
        service.create(MagicMock(), make_create(employee_id="emp_x", project_id="proj_x"))

    allocation_repo.create.assert_not_called()
