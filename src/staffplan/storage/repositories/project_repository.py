from typing import Optional

from sqlalchemy.orm import Session

from staffplan.storage.models import ProjectModel
from .base import storage_errors


class ProjectRepository:
    """Read access to projects; the engine only needs their date bounds."""

    def get(self, session: Session, project_id: str) -> Optional[ProjectModel]:
        with storage_errors("get project"):
            return session.get(ProjectModel, project_id)

