"""
WBS Domain Models (``costcontrol_modules.wbs.models``).

Responsibility
--------------
Frozen dataclass value objects returned by the WBS service and selector.

Architecture position
---------------------
**Modules layer** -- pure data definitions with ZERO I/O.

Invariants enforced
-------------------
* All models are ``frozen=True``.
* Quantities are ``Decimal`` -- NEVER ``float``.
"""

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from costcontrol_engines.wbs_tree import WbsCategory


@dataclass(frozen=True)
class WbsNode:
    """One WBS node as stored."""
    id: UUID
    project_id: UUID
    code: str
    name: str
    category: WbsCategory
    parent_id: UUID | None = None
    unit: str | None = None
    quantity: Decimal | None = None
    sort_order: int = 0
    is_active: bool = True

    @property
    def is_budget_item(self) -> bool:
        return self.category is WbsCategory.BUDGET_ITEM


@dataclass(frozen=True)
class WbsTreeEntry:
    """A node with its children, for nested listings."""
    node: WbsNode
    depth: int
    children: tuple["WbsTreeEntry", ...] = ()
