"""
Project -- the owner of WBS trees, budget versions and certifications.

Responsibility:
    Anchors every budget and certification row to a project and carries
    the two project-level facts the core needs:

    * ``seal_salt`` -- the first link of the certification seal chain.
      Generated once at creation; never changes.
    * ``baseline_version_id`` -- the "current baseline" pointer.  This is
      a plain pointer, independent of any version's status.  Repointing
      is idempotent and never touches version rows.

Architecture position:
    Kernel > Models.  Imported by module ORM files for foreign keys.
"""

from uuid import UUID

from sqlalchemy import Boolean, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from costcontrol_kernel.db.base import TrackedBase


class Project(TrackedBase):
    """A construction project."""

    __tablename__ = "projects"

    __table_args__ = (
        Index("idx_project_active", "is_active"),
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    seal_salt: Mapped[str] = mapped_column(String(64), nullable=False)

    # No FK: versions reference projects, and the pointer is repointable
    baseline_version_id: Mapped[UUID | None] = mapped_column(nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<Project {self.code}>"
