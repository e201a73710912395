"""
Pytest configuration and shared fixtures.
"""

import os
import sys
from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

sys.path.append(os.path.join(os.getcwd(), "src"))

from staffplan.engine import build_engine  # noqa: E402
from staffplan.engine.policy import CapacityPolicy  # noqa: E402
from staffplan.storage.models import (  # noqa: E402
    AllocationModel,
    Base,
    DepartmentModel,
    EmployeeModel,
    ProjectModel,
)


@pytest.fixture(scope="session", autouse=True)
def setup_test_environment() -> None:
    """Set up test environment variables."""
    os.environ.setdefault("APP_ENV", "test")
    os.environ.setdefault("DEBUG", "true")


# Use in-memory SQLite for unit testing without external DB
@pytest.fixture
def session():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    Session = sessionmaker(bind=engine, expire_on_commit=False)
    session = Session()
    yield session
    session.close()
    engine.dispose()


def seed_directory(session) -> None:
    """Two departments, four employees (one inactive), four projects (one inactive)."""
    session.add_all([
        DepartmentModel(id="dept_eng", name="Engineering"),
        DepartmentModel(id="dept_ops", name="Operations"),
    ])
    session.add_all([
        EmployeeModel(
            id="emp_alice", first_name="Alice", last_name="Anders", email="alice@example.com",
            department_id="dept_eng", weekly_capacity_hours=40, is_active=True,
        ),
        EmployeeModel(
            id="emp_bob", first_name="Bob", last_name="Brown", email="bob@example.com",
            department_id="dept_eng", weekly_capacity_hours=None, is_active=True,
        ),
        EmployeeModel(
            id="emp_carol", first_name="Carol", last_name="Chen", email="carol@example.com",
            department_id=None, weekly_capacity_hours=32, is_active=True,
        ),
        EmployeeModel(
            id="emp_dave", first_name="Dave", last_name="Dunn", email="dave@example.com",
            department_id="dept_ops", weekly_capacity_hours=40, is_active=False,
        ),
    ])
    session.add_all([
        ProjectModel(
            id="proj_apollo", name="Apollo", start_date=date(2024, 1, 1),
            end_date=date(2024, 12, 31), is_active=True,
        ),
        ProjectModel(id="proj_zeus", name="Zeus", start_date=date(2024, 1, 1), end_date=None, is_active=True),
        ProjectModel(
            id="proj_short", name="Short Sprint", start_date=date(2024, 3, 1),
            end_date=date(2024, 3, 31), is_active=True,
        ),
        ProjectModel(
            id="proj_closed", name="Closed", start_date=date(2023, 1, 1),
            end_date=date(2023, 12, 31), is_active=False,
        ),
    ])
    session.flush()


@pytest.fixture
def seeded_session(session):
    seed_directory(session)
    return session


@pytest.fixture
def policy() -> CapacityPolicy:
    return CapacityPolicy()


@pytest.fixture
def engine(policy):
    return build_engine(policy)


@pytest.fixture
def insert_allocation(seeded_session):
    """
    Write an allocation straight through the session, bypassing every check.

    Lets tests build overlapping or over-allocated states on purpose.
    """
    counter = {"n": 0}

    def _insert(
        employee_id: str = "emp_alice",
        project_id: str = "proj_apollo",
        start_date: date = date(2024, 1, 1),
        end_date: date = date(2024, 1, 31),
        allocated_hours: float = 20.0,
        status: str = "active",
        allocation_id: str = None,
    ) -> AllocationModel:
        counter["n"] += 1
        allocation = AllocationModel(
            id=allocation_id or f"alloc_{counter['n']}",
            employee_id=employee_id,
            project_id=project_id,
            start_date=start_date,
            end_date=end_date,
            allocated_hours=allocated_hours,
            role="Developer",
            status=status,
            version=1,
        )
        seeded_session.add(allocation)
        seeded_session.flush()
        return allocation

    return _insert


@pytest.fixture
def seeder():
    """seed_directory for tests that manage their own session scope."""
    return seed_directory
