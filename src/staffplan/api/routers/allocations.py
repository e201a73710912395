from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Query, status

from staffplan.api import schemas
from staffplan.api.dependencies import EngineDep, SessionDep
from staffplan.engine import AllocationCreate, AllocationOutcome, AllocationUpdate, EnforcementMode
from staffplan.storage.models import AllocationStatus
from staffplan.storage.repositories import AllocationFilters, Page


router = APIRouter()


def _outcome_response(outcome: AllocationOutcome) -> schemas.AllocationOutcomeResponse:
    return schemas.AllocationOutcomeResponse(
        allocation=schemas.AllocationResponse.model_validate(outcome.allocation),
        warnings=outcome.warnings,
        conflicts=outcome.conflicts.to_dict() if outcome.conflicts else None,
        capacity=outcome.capacity.to_dict() if outcome.capacity else None,
    )


def _page_response(page: Page) -> schemas.PageResponse[schemas.AllocationResponse]:
    return schemas.PageResponse[schemas.AllocationResponse](
        items=[schemas.AllocationResponse.model_validate(a) for a in page.items],
        total=page.total,
        page=page.page,
        limit=page.limit,
        total_pages=page.total_pages,
    )


@router.post("/", response_model=schemas.AllocationOutcomeResponse, status_code=status.HTTP_201_CREATED)
def create_allocation(
    data: AllocationCreate,
    engine: EngineDep,
    session: SessionDep,
    mode: EnforcementMode = EnforcementMode.CHECKED,
):
    """
    Create an allocation.

    Overlapping live allocations return 409 unless mode=force; mode=strict
    also returns 409 when weekly capacity would be exceeded.
    """
    outcome = engine.allocations.create(session, data, mode)
    return _outcome_response(outcome)


@router.get("/", response_model=schemas.PageResponse[schemas.AllocationResponse])
def list_allocations(
    engine: EngineDep,
    session: SessionDep,
    employee_id: Optional[str] = None,
    project_id: Optional[str] = None,
    status_filter: Optional[List[AllocationStatus]] = Query(None, alias="status"),
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
):
    """
    List allocations, newest first.

    start_date/end_date select allocations intersecting that range.
    """
    filters = AllocationFilters(
        employee_id=employee_id,
        statuses=status_filter,
        date_from=start_date,
        date_to=end_date,
    )
    if project_id:
        result = engine.allocations.list_for_project(session, project_id, filters, page, limit)
    elif employee_id:
        result = engine.allocations.list_for_employee(session, employee_id, filters, page, limit)
    else:
        result = engine.allocation_repo.find_all(session, filters, page, limit)
    return _page_response(result)


@router.get("/{allocation_id}", response_model=schemas.AllocationResponse)
def get_allocation(allocation_id: str, engine: EngineDep, session: SessionDep):
    return schemas.AllocationResponse.model_validate(engine.allocations.get(session, allocation_id))


@router.patch("/{allocation_id}", response_model=schemas.AllocationOutcomeResponse)
def update_allocation(
    allocation_id: str,
    data: AllocationUpdate,
    engine: EngineDep,
    session: SessionDep,
    mode: EnforcementMode = EnforcementMode.CHECKED,
):
    outcome = engine.allocations.update(session, allocation_id, data, mode)
    return _outcome_response(outcome)


@router.delete("/{allocation_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_allocation(allocation_id: str, engine: EngineDep, session: SessionDep):
    engine.allocations.delete(session, allocation_id)
    return None


# --- Lifecycle ---

@router.post("/{allocation_id}/confirm", response_model=schemas.AllocationResponse)
def confirm_allocation(allocation_id: str, engine: EngineDep, session: SessionDep):
    return schemas.AllocationResponse.model_validate(engine.allocations.confirm(session, allocation_id))


@router.post("/{allocation_id}/complete", response_model=schemas.AllocationResponse)
def complete_allocation(
    allocation_id: str,
    engine: EngineDep,
    session: SessionDep,
    body: Optional[schemas.CompleteRequest] = None,
):
    actual_hours = body.actual_hours if body else None
    allocation = engine.allocations.complete(session, allocation_id, actual_hours)
    return schemas.AllocationResponse.model_validate(allocation)


@router.post("/{allocation_id}/cancel", response_model=schemas.AllocationResponse)
def cancel_allocation(allocation_id: str, engine: EngineDep, session: SessionDep):
    return schemas.AllocationResponse.model_validate(engine.allocations.cancel(session, allocation_id))
