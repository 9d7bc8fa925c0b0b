"""
WbsSelector -- read-only queries over a project's WBS.
"""

from uuid import UUID

from sqlalchemy import select

from costcontrol_engines.wbs_tree import WbsTree, WbsTreeNode
from costcontrol_kernel.exceptions import NotFoundError
from costcontrol_kernel.selectors.base import BaseSelector
from costcontrol_modules.wbs.models import WbsNode, WbsTreeEntry
from costcontrol_modules.wbs.orm import WbsNodeModel


class WbsSelector(BaseSelector):
    """Nested and flat views of WBS nodes."""

    def get_node(self, node_id: UUID) -> WbsNode:
        node = self.session.get(WbsNodeModel, node_id)
        if node is None:
            raise NotFoundError("WbsNode", str(node_id))
        return node.to_dto()

    def list_nodes(self, project_id: UUID, include_inactive: bool = False) -> list[WbsNode]:
        """Flat list in code order."""
        stmt = select(WbsNodeModel).where(WbsNodeModel.project_id == project_id)
        if not include_inactive:
            stmt = stmt.where(WbsNodeModel.is_active.is_(True))
        rows = [r.to_dto() for r in self.session.execute(stmt).scalars()]
        return sorted(rows, key=lambda n: tuple(int(p) for p in n.code.split(".")))

    def list_tree(self, project_id: UUID, include_inactive: bool = False) -> list[WbsTreeEntry]:
        """Roots with nested children, siblings ordered by (sort_order, code)."""
        rows = list(
            self.session.execute(
                select(WbsNodeModel).where(WbsNodeModel.project_id == project_id)
            ).scalars()
        )
        dtos = {row.id: row.to_dto() for row in rows}
        tree = WbsTree(row.to_ref() for row in rows)

        def convert(entry: WbsTreeNode, depth: int) -> WbsTreeEntry:
            return WbsTreeEntry(
                node=dtos[entry.node.id],
                depth=depth,
                children=tuple(convert(c, depth + 1) for c in entry.children),
            )

        return [convert(root, 1) for root in tree.nested(include_inactive=include_inactive)]

    def budget_item_ids(self, project_id: UUID) -> list[UUID]:
        """Active BUDGET_ITEM nodes in code order."""
        return [n.id for n in self.list_nodes(project_id) if n.is_budget_item]
