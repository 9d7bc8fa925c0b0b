"""
ProjectService -- project registration and lookup.

Responsibility:
    Creates the project row that anchors WBS nodes, budget versions and
    certifications, generating its seal salt.  Flush only; the caller
    commits.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from costcontrol_kernel.exceptions import NotFoundError, ValidationError
from costcontrol_kernel.logging_config import get_logger
from costcontrol_kernel.models.project import Project
from costcontrol_kernel.services.base import BaseService
from costcontrol_kernel.utils.hashing import generate_salt

logger = get_logger("services.project")


class ProjectService(BaseService[Project]):
    """Create and fetch projects."""

    def __init__(self, session: Session):
        super().__init__(session)

    def create_project(self, code: str, name: str, actor_id: UUID) -> Project:
        code = (code or "").strip()
        if not code:
            raise ValidationError("code", code, "project code is required")
        if not (name or "").strip():
            raise ValidationError("name", name, "project name is required")
        existing = self.session.execute(
            select(Project.id).where(Project.code == code)
        ).scalar_one_or_none()
        if existing is not None:
            raise ValidationError("code", code, "project code already exists")

        project = Project(
            code=code,
            name=name.strip(),
            seal_salt=generate_salt(),
            is_active=True,
            created_by_id=actor_id,
        )
        self.session.add(project)
        self.session.flush()
        logger.info(
            "project_created",
            extra={"project_id": str(project.id), "project_code": code},
        )
        return project

    def get_project(self, project_id: UUID, for_update: bool = False) -> Project:
        stmt = select(Project).where(Project.id == project_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        project = self.session.execute(stmt).scalar_one_or_none()
        if project is None:
            raise NotFoundError("Project", str(project_id))
        return project
