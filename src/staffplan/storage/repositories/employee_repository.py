from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from staffplan.storage.models import DepartmentModel, EmployeeModel
from .base import storage_errors


class EmployeeRepository:
    """Read access to the employee directory and its departments."""

    def get(self, session: Session, employee_id: str) -> Optional[EmployeeModel]:
        with storage_errors("get employee"):
            return session.get(EmployeeModel, employee_id)

    def list_active(
        self,
        session: Session,
        department_id: Optional[str] = None,
        employee_ids: Optional[List[str]] = None,
    ) -> List[EmployeeModel]:
        stmt = (
            select(EmployeeModel)
            .where(EmployeeModel.is_active.is_(True))
            .options(selectinload(EmployeeModel.department))
        )
        if department_id:
            stmt = stmt.where(EmployeeModel.department_id == department_id)
        if employee_ids is not None:
            stmt = stmt.where(EmployeeModel.id.in_(employee_ids))
        with storage_errors("list employees"):
            return list(session.scalars(stmt.order_by(EmployeeModel.last_name, EmployeeModel.id)).all())

    def get_department(self, session: Session, department_id: str) -> Optional[DepartmentModel]:
        with storage_errors("get department"):
            return session.get(DepartmentModel, department_id)

    def list_departments(self, session: Session) -> List[DepartmentModel]:
        with storage_errors("list departments"):
            return list(session.scalars(select(DepartmentModel).order_by(DepartmentModel.name)).all())
