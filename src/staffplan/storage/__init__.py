"""staffplan Storage Layer - SQLAlchemy models, database adapter and repositories."""

from .database import StorageAdapter, DatabaseAdapter, DatabaseConfig
from .models import (
    AllocationModel,
    AllocationStatus,
    Base,
    DepartmentModel,
    EmployeeModel,
    ProjectModel,
)

__all__ = [
    "StorageAdapter",
    "DatabaseAdapter",
    "DatabaseConfig",
    "Base",
    "AllocationModel",
    "AllocationStatus",
    "DepartmentModel",
    "EmployeeModel",
    "ProjectModel",
]
