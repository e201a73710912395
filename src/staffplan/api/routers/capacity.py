"""
Capacity endpoints: conflict checks, validation and the read-side reports.

Engine results are dataclasses; FastAPI encodes them (dates as ISO strings,
enums as values) without a separate response model.
"""
from datetime import date
from typing import Optional

from fastapi import APIRouter, Query

from staffplan.api import schemas
from staffplan.api.dependencies import EngineDep, SessionDep


router = APIRouter()


@router.post("/conflicts")
def check_conflicts(request: schemas.ConflictCheckRequest, engine: EngineDep, session: SessionDep):
    """Overlapping live allocations for a candidate date range. Read-only."""
    return engine.conflicts.check_conflicts(
        session,
        request.employee_id,
        request.start_date,
        request.end_date,
        request.exclude_allocation_id,
    )


@router.post("/validate")
def validate_capacity(request: schemas.CapacityValidateRequest, engine: EngineDep, session: SessionDep):
    """Utilization the employee would reach with the candidate hours. Read-only."""
    return engine.validator.validate_capacity(
        session,
        request.employee_id,
        request.allocated_hours,
        request.start_date,
        request.end_date,
        exclude_allocation_id=request.exclude_allocation_id,
        utilization_target=request.utilization_target,
    )


@router.get("/over-allocations")
def over_allocations(
    engine: EngineDep,
    session: SessionDep,
    start_date: date,
    end_date: date,
    employee_id: Optional[str] = None,
):
    return engine.analyzer.analyze_range(session, start_date, end_date, employee_id)


@router.get("/over-allocations/week")
def over_allocation_week(
    engine: EngineDep,
    session: SessionDep,
    employee_id: str,
    week_start: date,
    week_end: date,
):
    """The warning for one employee and week, or null when within capacity."""
    return engine.analyzer.analyze_week(session, employee_id, week_start, week_end)


@router.get("/summary")
def utilization_summary(
    engine: EngineDep,
    session: SessionDep,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    employee_id: Optional[str] = None,
    department_id: Optional[str] = None,
):
    return engine.utilization.summary(
        session, start_date, end_date, employee_id=employee_id, department_id=department_id
    )


@router.get("/employees")
def capacity_metrics(
    engine: EngineDep,
    session: SessionDep,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    employee_id: Optional[str] = None,
    department_id: Optional[str] = None,
):
    return engine.utilization.capacity_metrics(
        session, start_date, end_date, employee_id=employee_id, department_id=department_id
    )


@router.get("/employees/{employee_id}/trend")
def employee_trend(
    employee_id: str,
    engine: EngineDep,
    session: SessionDep,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
):
    return engine.utilization.employee_trend(session, employee_id, start_date, end_date)


@router.get("/departments")
def department_summaries(
    engine: EngineDep,
    session: SessionDep,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
):
    return engine.utilization.department_summaries(session, start_date, end_date)


@router.get("/departments/{department_id}/trend")
def department_trend(
    department_id: str,
    engine: EngineDep,
    session: SessionDep,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
):
    return engine.utilization.department_trend(session, department_id, start_date, end_date)


@router.get("/heatmap")
def heatmap(
    engine: EngineDep,
    session: SessionDep,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    department_id: Optional[str] = None,
):
    return engine.utilization.heatmap(session, start_date, end_date, department_id)


@router.get("/bottlenecks")
def bottlenecks(
    engine: EngineDep,
    session: SessionDep,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    department_id: Optional[str] = None,
    min_weeks: int = Query(1, ge=1),
):
    return engine.utilization.bottlenecks(session, start_date, end_date, department_id, min_weeks)
