from dataclasses import dataclass, replace
from datetime import date, datetime, timezone
from typing import Iterable, List, Optional, Dict, Any
import logging

from sqlalchemy import func, select, text
from sqlalchemy.orm import Session, selectinload
from sqlalchemy.sql import Select

from staffplan.storage.models import AllocationModel, AllocationStatus, LIVE_STATUSES
from .base import BaseRepository, Page, storage_errors

logger = logging.getLogger(__name__)

# Columns update() is allowed to touch
MUTABLE_FIELDS = (
    "start_date", "end_date", "allocated_hours", "actual_hours", "role",
    "hourly_rate", "billable_rate", "utilization_target", "status", "notes",
)


@dataclass
class AllocationFilters:
    """
    Query filters shared by every allocation listing.

    date_from/date_to select allocations whose interval intersects
    [date_from, date_to]; the start_*/end_* pairs bound each edge directly.
    """
    employee_id: Optional[str] = None
    project_id: Optional[str] = None
    statuses: Optional[List[AllocationStatus]] = None
    live_only: bool = False
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    start_date_from: Optional[date] = None
    start_date_to: Optional[date] = None
    end_date_from: Optional[date] = None
    end_date_to: Optional[date] = None


class AllocationRepository(BaseRepository[AllocationModel]):
    """Repository for resource allocations. Soft-deleted rows are invisible to every query."""

    def _base_query(self) -> Select:
        return (
            select(AllocationModel)
            .where(AllocationModel.deleted_at.is_(None))
            .options(selectinload(AllocationModel.project))
        )

    def _apply_filters(self, stmt: Select, filters: AllocationFilters) -> Select:
        if filters.employee_id:
            stmt = stmt.where(AllocationModel.employee_id == filters.employee_id)
        if filters.project_id:
            stmt = stmt.where(AllocationModel.project_id == filters.project_id)
        if filters.live_only:
            stmt = stmt.where(AllocationModel.status.in_([s.value for s in LIVE_STATUSES]))
        if filters.statuses:
            stmt = stmt.where(AllocationModel.status.in_([AllocationStatus(s).value for s in filters.statuses]))
        # Inclusive interval intersection
        if filters.date_to:
            stmt = stmt.where(AllocationModel.start_date <= filters.date_to)
        if filters.date_from:
            stmt = stmt.where(AllocationModel.end_date >= filters.date_from)
        if filters.start_date_from:
            stmt = stmt.where(AllocationModel.start_date >= filters.start_date_from)
        if filters.start_date_to:
            stmt = stmt.where(AllocationModel.start_date <= filters.start_date_to)
        if filters.end_date_from:
            stmt = stmt.where(AllocationModel.end_date >= filters.end_date_from)
        if filters.end_date_to:
            stmt = stmt.where(AllocationModel.end_date <= filters.end_date_to)
        return stmt

    def _paginate(
        self,
        session: Session,
        filters: AllocationFilters,
        page: int,
        limit: int,
        order_by: Iterable[Any],
    ) -> Page[AllocationModel]:
        page = max(1, page)
        limit = max(1, limit)
        count_stmt = self._apply_filters(
            select(func.count(AllocationModel.id)).where(AllocationModel.deleted_at.is_(None)),
            filters,
        )
        stmt = self._apply_filters(self._base_query(), filters)
        with storage_errors("paginate allocations"):
            total = session.scalar(count_stmt)
            rows = session.scalars(
                stmt.order_by(*order_by).limit(limit).offset((page - 1) * limit)
            ).all()
        return Page(items=list(rows), total=total or 0, page=page, limit=limit)

    # --- Single records ---

    def get(self, session: Session, id: str) -> Optional[AllocationModel]:
        with storage_errors("get allocation"):
            allocation = session.get(AllocationModel, id)
        if allocation is None or allocation.deleted_at is not None:
            return None
        return allocation

    def create(self, session: Session, entity: AllocationModel) -> AllocationModel:
        with storage_errors("insert allocation"):
            session.add(entity)
            # Flush to surface constraint violations now; the caller's scope commits
            session.flush()
        return entity

    def update(self, session: Session, id: str, updates: Dict[str, Any]) -> Optional[AllocationModel]:
        allocation = self.get(session, id)
        if not allocation:
            return None

        for name in MUTABLE_FIELDS:
            if name in updates:
                value = updates[name]
                if name == "status" and isinstance(value, AllocationStatus):
                    value = value.value
                setattr(allocation, name, value)

        allocation.version += 1
        with storage_errors("update allocation"):
            session.flush()
        return allocation

    def delete(self, session: Session, id: str) -> Optional[AllocationModel]:
        allocation = self.get(session, id)
        if not allocation:
            return None
        allocation.deleted_at = datetime.now(timezone.utc)
        allocation.version += 1
        with storage_errors("delete allocation"):
            session.flush()
        return allocation

    # --- Queries ---

    def find_live_by_employee(
        self,
        session: Session,
        employee_id: str,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        exclude_id: Optional[str] = None,
    ) -> List[AllocationModel]:
        """Live allocations of one employee, optionally only those intersecting a range."""
        stmt = self._apply_filters(
            self._base_query(),
            AllocationFilters(employee_id=employee_id, live_only=True, date_from=date_from, date_to=date_to),
        )
        if exclude_id:
            stmt = stmt.where(AllocationModel.id != exclude_id)
        with storage_errors("find live allocations"):
            return list(session.scalars(stmt.order_by(AllocationModel.start_date, AllocationModel.id)).all())

    def find_live_in_range(
        self,
        session: Session,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        employee_ids: Optional[List[str]] = None,
    ) -> List[AllocationModel]:
        """Live allocations of many employees in one round trip."""
        stmt = self._apply_filters(
            self._base_query(),
            AllocationFilters(live_only=True, date_from=date_from, date_to=date_to),
        )
        if employee_ids is not None:
            if not employee_ids:
                return []
            stmt = stmt.where(AllocationModel.employee_id.in_(employee_ids))
        with storage_errors("find live allocations in range"):
            return list(session.scalars(stmt.order_by(AllocationModel.start_date, AllocationModel.id)).all())

    def find_by_project(
        self,
        session: Session,
        project_id: str,
        filters: Optional[AllocationFilters] = None,
        page: int = 1,
        limit: int = 50,
    ) -> Page[AllocationModel]:
        filters = replace(filters or AllocationFilters(), project_id=project_id)
        return self._paginate(
            session, filters, page, limit,
            order_by=(AllocationModel.start_date.asc(), AllocationModel.created_at.desc()),
        )

    def find_by_employee(
        self,
        session: Session,
        employee_id: str,
        filters: Optional[AllocationFilters] = None,
        page: int = 1,
        limit: int = 50,
    ) -> Page[AllocationModel]:
        filters = replace(filters or AllocationFilters(), employee_id=employee_id)
        return self._paginate(
            session, filters, page, limit,
            order_by=(AllocationModel.start_date.desc(), AllocationModel.created_at.desc()),
        )

    def find_all(
        self,
        session: Session,
        filters: Optional[AllocationFilters] = None,
        page: int = 1,
        limit: int = 50,
    ) -> Page[AllocationModel]:
        return self._paginate(
            session, filters or AllocationFilters(), page, limit,
            order_by=(AllocationModel.start_date.desc(), AllocationModel.created_at.desc()),
        )

    # --- Concurrency ---

    def lock_employee(self, session: Session, employee_id: str) -> None:
        """
        Serialize writers for one employee until the transaction ends.

        PostgreSQL gets a transaction-scoped advisory lock; SQLite already
        serializes writers on the database file.
        """
        bind = session.get_bind()
        if bind.dialect.name != "postgresql":
            return
        with storage_errors("lock employee"):
            session.execute(
                text("SELECT pg_advisory_xact_lock(hashtext(:key))"),
                {"key": f"allocation:{employee_id}"},
            )
        logger.debug(f"Advisory lock acquired for employee {employee_id}")
