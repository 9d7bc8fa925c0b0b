"""
SQLAlchemy ORM persistence model for the WBS module.

Responsibility
--------------
Persist WBS nodes as an adjacency list (``parent_id``) scoped to a
project.  Traversal never follows ORM relationships; services load the
project's rows and hand them to ``costcontrol_engines.wbs_tree.WbsTree``.

Invariants enforced
-------------------
* ``(project_id, code)`` is unique.
* ``category`` stored as String(20) using ``WbsCategory`` values.
* Budget lines reference nodes with a plain FK (no cascade), so the
  database refuses to delete a referenced node.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from costcontrol_kernel.db.base import TrackedBase


class WbsNodeModel(TrackedBase):
    """
    A node of a project's work-breakdown structure.

    Maps to the ``WbsNode`` DTO in ``costcontrol_modules.wbs.models``.
    """

    __tablename__ = "wbs_nodes"

    __table_args__ = (
        UniqueConstraint("project_id", "code", name="uq_wbs_node_project_code"),
        Index("idx_wbs_node_project", "project_id"),
        Index("idx_wbs_node_parent", "parent_id"),
    )

    project_id: Mapped[UUID] = mapped_column(ForeignKey("projects.id"), nullable=False)
    parent_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("wbs_nodes.id"), nullable=True
    )
    code: Mapped[str] = mapped_column(String(100), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    category: Mapped[str] = mapped_column(String(20), nullable=False)
    unit: Mapped[str | None] = mapped_column(String(20), nullable=True)
    quantity: Mapped[Decimal | None] = mapped_column(nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def to_dto(self):
        from costcontrol_engines.wbs_tree import WbsCategory
        from costcontrol_modules.wbs.models import WbsNode

        return WbsNode(
            id=self.id,
            project_id=self.project_id,
            code=self.code,
            name=self.name,
            category=WbsCategory(self.category),
            parent_id=self.parent_id,
            unit=self.unit,
            quantity=self.quantity,
            sort_order=self.sort_order,
            is_active=self.is_active,
        )

    def to_ref(self):
        """Arena entry for ``WbsTree``."""
        from costcontrol_engines.wbs_tree import WbsCategory, WbsNodeRef

        return WbsNodeRef(
            id=self.id,
            parent_id=self.parent_id,
            code=self.code,
            name=self.name,
            category=WbsCategory(self.category),
            sort_order=self.sort_order,
            is_active=self.is_active,
            unit=self.unit,
            quantity=self.quantity,
        )

    def __repr__(self) -> str:
        return f"<WbsNodeModel {self.code} {self.name} [{self.category}]>"
