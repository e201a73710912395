from datetime import date

import pytest
from sqlalchemy.exc import SQLAlchemyError

from staffplan.errors import StorageError
from staffplan.storage.models import AllocationModel, AllocationStatus
from staffplan.storage.repositories import (
    AllocationFilters,
    AllocationRepository,
    EmployeeRepository,
    ProjectRepository,
)
from staffplan.storage.repositories.base import Page, storage_errors


def test_allocation_repository_crud(seeded_session):
    repo = AllocationRepository()

    allocation = AllocationModel(
        id="alloc_001",
        employee_id="emp_alice",
        project_id="proj_apollo",
        start_date=date(2024, 1, 1),
        end_date=date(2024, 1, 31),
        allocated_hours=20,
        role="Developer",
    )
    repo.create(seeded_session, allocation)

    fetched = repo.get(seeded_session, "alloc_001")
    assert fetched.status == "tentative"
    assert fetched.version == 1
    assert fetched.project.name == "Apollo"

    # Update
    repo.update(seeded_session, "alloc_001", {"allocated_hours": 25, "status": AllocationStatus.ACTIVE, "id": "ignored"})
    updated = repo.get(seeded_session, "alloc_001")
    assert updated.allocated_hours == 25
    assert updated.status == "active"
    assert updated.id == "alloc_001"
    assert updated.version == 2

    # Soft delete
    removed = repo.delete(seeded_session, "alloc_001")
    assert removed.deleted_at is not None
    assert removed.version == 3
    assert repo.get(seeded_session, "alloc_001") is None
    assert repo.update(seeded_session, "alloc_001", {"notes": "x"}) is None
    assert repo.delete(seeded_session, "alloc_001") is None
    assert seeded_session.get(AllocationModel, "alloc_001") is not None


def test_find_live_by_employee(seeded_session, insert_allocation):
    repo = AllocationRepository()
    january = insert_allocation(start_date=date(2024, 1, 1), end_date=date(2024, 1, 31))
    march = insert_allocation(start_date=date(2024, 3, 1), end_date=date(2024, 3, 31))
    insert_allocation(status="cancelled")
    insert_allocation(employee_id="emp_bob")

    everything = repo.find_live_by_employee(seeded_session, "emp_alice")
    assert [a.id for a in everything] == [january.id, march.id]

    in_range = repo.find_live_by_employee(seeded_session, "emp_alice", date(2024, 1, 31), date(2024, 2, 15))
    assert [a.id for a in in_range] == [january.id]

    excluded = repo.find_live_by_employee(seeded_session, "emp_alice", exclude_id=january.id)
    assert [a.id for a in excluded] == [march.id]


def test_find_live_in_range(seeded_session, insert_allocation):
    repo = AllocationRepository()
    insert_allocation()
    insert_allocation(employee_id="emp_bob")
    insert_allocation(employee_id="emp_carol", start_date=date(2024, 5, 1), end_date=date(2024, 5, 31))

    assert len(repo.find_live_in_range(seeded_session, date(2024, 1, 1), date(2024, 1, 31))) == 2
    assert len(repo.find_live_in_range(seeded_session)) == 3
    assert len(repo.find_live_in_range(seeded_session, employee_ids=["emp_bob"])) == 1
    assert repo.find_live_in_range(seeded_session, employee_ids=[]) == []


def test_find_all_filters_and_paginates(seeded_session, insert_allocation):
    repo = AllocationRepository()
    for month in range(1, 6):
        insert_allocation(
            project_id="proj_zeus",
            start_date=date(2024, month, 1),
            end_date=date(2024, month, 20),
            status="active" if month % 2 else "completed",
        )

    page = repo.find_all(seeded_session, AllocationFilters(project_id="proj_zeus"), page=2, limit=2)
    assert page.total == 5
    assert page.total_pages == 3
    assert len(page.items) == 2
    # Newest start first
    assert page.items[0].start_date == date(2024, 3, 1)

    completed = repo.find_all(seeded_session, AllocationFilters(statuses=[AllocationStatus.COMPLETED]))
    assert completed.total == 2

    live = repo.find_all(seeded_session, AllocationFilters(live_only=True))
    assert live.total == 3

    spring = repo.find_all(
        seeded_session,
        AllocationFilters(start_date_from=date(2024, 3, 1), end_date_to=date(2024, 4, 30)),
    )
    assert spring.total == 2

    by_project = repo.find_by_project(seeded_session, "proj_apollo")
    assert by_project.total == 0


def test_scoped_finders_leave_caller_filters_untouched(seeded_session, insert_allocation):
    repo = AllocationRepository()
    insert_allocation()
    insert_allocation(employee_id="emp_bob", project_id="proj_zeus")
    filters = AllocationFilters(live_only=True)

    assert repo.find_by_project(seeded_session, "proj_apollo", filters).total == 1
    assert repo.find_by_employee(seeded_session, "emp_bob", filters).total == 1

    assert filters.project_id is None
    assert filters.employee_id is None
    assert repo.find_all(seeded_session, filters).total == 2


def test_lock_employee_is_a_no_op_on_sqlite(seeded_session):
    AllocationRepository().lock_employee(seeded_session, "emp_alice")


def test_employee_repository(seeded_session):
    repo = EmployeeRepository()

    assert repo.get(seeded_session, "emp_alice").full_name == "Alice Anders"
    assert [e.id for e in repo.list_active(seeded_session)] == ["emp_alice", "emp_bob", "emp_carol"]
    assert [e.id for e in repo.list_active(seeded_session, department_id="dept_eng")] == ["emp_alice", "emp_bob"]
    assert [e.id for e in repo.list_active(seeded_session, employee_ids=["emp_carol", "emp_dave"])] == ["emp_carol"]
    assert repo.get_department(seeded_session, "dept_eng").name == "Engineering"
    assert [d.name for d in repo.list_departments(seeded_session)] == ["Engineering", "Operations"]


def test_project_repository(seeded_session):
    repo = ProjectRepository()

    assert repo.get(seeded_session, "proj_zeus").end_date is None
    assert repo.get(seeded_session, "proj_nothing") is None


def test_page_total_pages():
    assert Page(items=[], total=0, limit=10).total_pages == 0
    assert Page(items=[], total=11, limit=10).total_pages == 2


def test_storage_errors_wraps_sqlalchemy_failures():
    with pytest.raises(StorageError) as exc_info:
        with storage_errors("insert allocation"):
            raise SQLAlchemyError("disk full")

    assert exc_info.value.details == {"operation": "insert allocation"}
    assert isinstance(exc_info.value.__cause__, SQLAlchemyError)
