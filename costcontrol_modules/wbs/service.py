"""
WBS Module Service (``costcontrol_modules.wbs.service``).

Responsibility
--------------
Authoring operations on a project's work-breakdown structure: create,
rename and re-quantify, move (with subtree recoding), reorder, recursive
soft deactivation and guarded hard delete.

Architecture position
---------------------
**Modules layer**.  ``WbsService`` is the sole write entry point for WBS
nodes.  Structural questions (depth, cycles, subtree membership, new
codes) are answered by ``costcontrol_engines.wbs_tree.WbsTree`` built from
the project's rows; this service only loads and persists.

Invariants enforced
-------------------
* Each public method owns the transaction boundary (``commit`` on
  success, ``rollback`` and re-raise on failure).
* Parent -> child categories follow ``ALLOWED_CHILDREN``; BUDGET_ITEM
  nodes never get children.
* Depth never exceeds ``CostControlConfig.wbs_max_depth``.
* Codes are unique per project.  New sequence numbers skip every sibling
  code ever used, including inactive siblings.
* A move that would put a node under its own subtree is refused.

Failure modes
-------------
* ``ValidationError`` -- bad category, depth, quantity, parent in another
  project, cycle.
* ``NotFoundError`` -- unknown project, node or parent.
* ``WbsNodeReferencedError`` -- hard delete of a subtree used by budget
  lines.

Audit relevance
---------------
Every change logs a structured event (``wbs_node_created``,
``wbs_node_moved``...) with node id and code.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from costcontrol_config import CostControlConfig, get_active_config
from costcontrol_engines.wbs_tree import (
    ALLOWED_CHILDREN,
    WbsCategory,
    WbsTree,
    generate_code,
    next_sequence,
)
from costcontrol_kernel.db.types import ZERO, as_decimal
from costcontrol_kernel.exceptions import (
    NotFoundError,
    ValidationError,
    WbsNodeReferencedError,
)
from costcontrol_kernel.logging_config import get_logger
from costcontrol_kernel.services.project_service import ProjectService
from costcontrol_modules.budget.orm import BudgetLineModel
from costcontrol_modules.wbs.models import WbsNode
from costcontrol_modules.wbs.orm import WbsNodeModel

logger = get_logger("modules.wbs.service")


def _coerce_category(value: WbsCategory | str) -> WbsCategory:
    try:
        return WbsCategory(value)
    except ValueError as exc:
        raise ValidationError("category", value, "unknown WBS category") from exc


def _coerce_quantity(value: Decimal | int | str | None) -> Decimal | None:
    if value is None:
        return None
    qty = as_decimal(value)
    if not qty.is_finite() or qty < ZERO:
        raise ValidationError("quantity", value, "quantity cannot be negative")
    return qty


class WbsService:
    """
    Write operations on WBS nodes.

    Contract
    --------
    * Every public method returns frozen DTOs (or counts), never ORM rows.
    * Config is injectable; defaults to ``get_active_config()``.
    """

    def __init__(self, session: Session, config: CostControlConfig | None = None):
        self._session = session
        self._config = config or get_active_config()
        self._projects = ProjectService(session)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _get_node(self, node_id: UUID) -> WbsNodeModel:
        node = self._session.get(WbsNodeModel, node_id)
        if node is None:
            raise NotFoundError("WbsNode", str(node_id))
        return node

    def _project_rows(self, project_id: UUID) -> list[WbsNodeModel]:
        return list(
            self._session.execute(
                select(WbsNodeModel).where(WbsNodeModel.project_id == project_id)
            ).scalars()
        )

    def _tree(self, rows: list[WbsNodeModel]) -> WbsTree:
        return WbsTree(row.to_ref() for row in rows)

    def _check_child_category(
        self, parent: WbsNodeModel | None, category: WbsCategory
    ) -> None:
        parent_category = WbsCategory(parent.category) if parent is not None else None
        if category not in ALLOWED_CHILDREN[parent_category]:
            where = f"under a {parent_category.value}" if parent_category else "at the root"
            raise ValidationError(
                "category", category.value, f"a {category.value} cannot be placed {where}"
            )

    def _next_code(
        self, rows: list[WbsNodeModel], parent: WbsNodeModel | None
    ) -> tuple[str, int]:
        parent_id = parent.id if parent is not None else None
        sequence = next_sequence(r.code for r in rows if r.parent_id == parent_id)
        return generate_code(parent.code if parent is not None else None, sequence), sequence

    # =========================================================================
    # Create / update
    # =========================================================================

    def create_node(
        self,
        project_id: UUID,
        name: str,
        category: WbsCategory | str,
        actor_id: UUID,
        parent_id: UUID | None = None,
        unit: str | None = None,
        quantity: Decimal | None = None,
        sort_order: int | None = None,
    ) -> WbsNode:
        """Create a node under ``parent_id`` (or at the root) with the next code."""
        try:
            self._projects.get_project(project_id)
            kind = _coerce_category(category)
            if not (name or "").strip():
                raise ValidationError("name", name, "node name is required")
            qty = _coerce_quantity(quantity)

            parent = None
            if parent_id is not None:
                parent = self._get_node(parent_id)
                if parent.project_id != project_id:
                    raise ValidationError(
                        "parent_id", parent_id, "parent belongs to another project"
                    )
                if not parent.is_active:
                    raise ValidationError("parent_id", parent_id, "parent node is inactive")
            self._check_child_category(parent, kind)

            rows = self._project_rows(project_id)
            depth = self._tree(rows).depth(parent.id) + 1 if parent is not None else 1
            if depth > self._config.wbs_max_depth:
                raise ValidationError(
                    "parent_id",
                    parent_id,
                    f"node would sit at depth {depth}; maximum is {self._config.wbs_max_depth}",
                )

            code, sequence = self._next_code(rows, parent)
            node = WbsNodeModel(
                project_id=project_id,
                parent_id=parent_id,
                code=code,
                name=name.strip(),
                category=kind.value,
                unit=unit,
                quantity=qty,
                sort_order=sequence if sort_order is None else sort_order,
                is_active=True,
                created_by_id=actor_id,
            )
            self._session.add(node)
            self._session.flush()
            dto = node.to_dto()
            self._session.commit()
            logger.info("wbs_node_created", extra={
                "project_id": str(project_id),
                "node_id": str(dto.id),
                "code": code,
                "category": kind.value,
            })
            return dto
        except Exception:
            self._session.rollback()
            raise

    def update_node(
        self,
        node_id: UUID,
        actor_id: UUID,
        name: str | None = None,
        unit: str | None = None,
        quantity: Decimal | None = None,
    ) -> WbsNode:
        """Rename or re-quantify a node.  ``None`` leaves a field unchanged."""
        try:
            node = self._get_node(node_id)
            if name is not None:
                if not name.strip():
                    raise ValidationError("name", name, "node name is required")
                node.name = name.strip()
            if unit is not None:
                node.unit = unit
            if quantity is not None:
                node.quantity = _coerce_quantity(quantity)
            node.updated_by_id = actor_id
            self._session.flush()
            dto = node.to_dto()
            self._session.commit()
            logger.info("wbs_node_updated", extra={"node_id": str(node_id), "code": dto.code})
            return dto
        except Exception:
            self._session.rollback()
            raise

    # =========================================================================
    # Structure
    # =========================================================================

    def move_node(
        self,
        node_id: UUID,
        new_parent_id: UUID | None,
        actor_id: UUID,
    ) -> WbsNode:
        """
        Re-parent a node and recode its whole subtree.

        The moved node takes the next free code under its new parent; its
        descendants are renumbered 1..n in sibling order beneath it.
        """
        try:
            node = self._get_node(node_id)
            if node.parent_id == new_parent_id:
                return node.to_dto()

            rows = self._project_rows(node.project_id)
            tree = self._tree(rows)
            if tree.would_create_cycle(node_id, new_parent_id):
                raise ValidationError(
                    "new_parent_id", new_parent_id, "cannot move a node beneath itself"
                )

            parent = None
            if new_parent_id is not None:
                parent = self._get_node(new_parent_id)
                if parent.project_id != node.project_id:
                    raise ValidationError(
                        "new_parent_id", new_parent_id, "parent belongs to another project"
                    )
            self._check_child_category(parent, WbsCategory(node.category))

            new_depth = tree.depth(parent.id) + 1 if parent is not None else 1
            deepest = new_depth + tree.subtree_height(node_id) - 1
            if deepest > self._config.wbs_max_depth:
                raise ValidationError(
                    "new_parent_id",
                    new_parent_id,
                    f"subtree would reach depth {deepest}; maximum is "
                    f"{self._config.wbs_max_depth}",
                )

            old_code = node.code
            new_code, _ = self._next_code(rows, parent)
            codes = tree.recode_subtree(node_id, new_code)
            by_id = {row.id: row for row in rows}
            for moved_id, code in codes.items():
                moved = by_id[moved_id]
                moved.code = code
                moved.updated_by_id = actor_id
            node.parent_id = new_parent_id
            self._session.flush()
            dto = node.to_dto()
            self._session.commit()
            logger.info("wbs_node_moved", extra={
                "node_id": str(node_id),
                "old_code": old_code,
                "new_code": new_code,
                "recoded_count": len(codes),
            })
            return dto
        except Exception:
            self._session.rollback()
            raise

    def reorder_node(self, node_id: UUID, sort_order: int, actor_id: UUID) -> WbsNode:
        """Change a node's position among its siblings.  Codes are unchanged."""
        try:
            node = self._get_node(node_id)
            node.sort_order = int(sort_order)
            node.updated_by_id = actor_id
            self._session.flush()
            dto = node.to_dto()
            self._session.commit()
            logger.info("wbs_node_reordered", extra={
                "node_id": str(node_id), "sort_order": dto.sort_order,
            })
            return dto
        except Exception:
            self._session.rollback()
            raise

    def deactivate_node(self, node_id: UUID, actor_id: UUID) -> int:
        """
        Soft-deactivate a node and all of its descendants.

        Returns:
            Number of nodes that were active and are now inactive.
        """
        try:
            node = self._get_node(node_id)
            rows = self._project_rows(node.project_id)
            subtree = set(self._tree(rows).subtree_ids(node_id))
            changed = 0
            for row in rows:
                if row.id in subtree and row.is_active:
                    row.is_active = False
                    row.updated_by_id = actor_id
                    changed += 1
            self._session.flush()
            self._session.commit()
            logger.info("wbs_node_deactivated", extra={
                "node_id": str(node_id), "deactivated_count": changed,
            })
            return changed
        except Exception:
            self._session.rollback()
            raise

    def delete_node(self, node_id: UUID, actor_id: UUID) -> int:
        """
        Hard-delete a node and its subtree when no budget line uses any of it.

        Returns:
            Number of rows deleted.

        Raises:
            WbsNodeReferencedError: lines reference the subtree; deactivate instead.
        """
        try:
            node = self._get_node(node_id)
            rows = self._project_rows(node.project_id)
            ordered = self._tree(rows).subtree_ids(node_id)
            referenced = self._session.execute(
                select(func.count(BudgetLineModel.id)).where(
                    BudgetLineModel.wbs_node_id.in_(ordered)
                )
            ).scalar_one()
            if referenced:
                raise WbsNodeReferencedError(str(node_id), referenced)

            by_id = {row.id: row for row in rows}
            # Children before parents so the self-FK is never dangling
            for doomed in reversed(ordered):
                self._session.delete(by_id[doomed])
                self._session.flush()
            self._session.commit()
            logger.info("wbs_node_deleted", extra={
                "node_id": str(node_id),
                "deleted_count": len(ordered),
                "actor_id": str(actor_id),
            })
            return len(ordered)
        except Exception:
            self._session.rollback()
            raise


