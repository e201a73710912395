from .base import BaseRepository, Page
from .allocation_repository import AllocationFilters, AllocationRepository
from .employee_repository import EmployeeRepository
from .project_repository import ProjectRepository

__all__ = [
    "BaseRepository",
    "Page",
    "AllocationFilters",
    "AllocationRepository",
    "EmployeeRepository",
    "ProjectRepository",
]
