"""
costcontrol_engines.wbs_tree -- Arena-backed WBS traversal, coding and rollups.

Responsibility:
    Hold a project's WBS nodes as an arena indexed by id, with a
    children index built once per instance.  Every traversal (subtree,
    ancestors, depth, rollup, nested listing, recoding after a move) walks
    that index; nothing follows live ORM relationships.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The WBS service and the
    budget selector build a ``WbsTree`` from rows they already loaded.

Invariants enforced:
    - Traversals are iterative and keep a visited set, so malformed input
      with a parent cycle terminates instead of recursing forever.
    - Codes are dotted sequences: a root is ``"n"``, a child of ``"1.2"``
      is ``"1.2.n"``.
    - Sibling order is (sort_order, code).

Failure modes:
    - KeyError for an id that is not in the arena.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import TypeVar
from uuid import UUID

T = TypeVar("T")


class WbsCategory(str, Enum):
    """WBS node kinds.  Only BUDGET_ITEM nodes carry budget lines."""

    PHASE = "phase"
    TASK = "task"
    BUDGET_ITEM = "budget_item"


# parent category (None = root) -> categories allowed beneath it
ALLOWED_CHILDREN: dict[WbsCategory | None, frozenset[WbsCategory]] = {
    None: frozenset({WbsCategory.PHASE, WbsCategory.TASK}),
    WbsCategory.PHASE: frozenset({WbsCategory.TASK, WbsCategory.BUDGET_ITEM}),
    WbsCategory.TASK: frozenset({WbsCategory.TASK, WbsCategory.BUDGET_ITEM}),
    WbsCategory.BUDGET_ITEM: frozenset(),
}


@dataclass(frozen=True)
class WbsNodeRef:
    """Arena entry: the structural fields of one WBS node."""

    id: UUID
    parent_id: UUID | None
    code: str
    name: str
    category: WbsCategory
    sort_order: int = 0
    is_active: bool = True
    unit: str | None = None
    quantity: Decimal | None = None


@dataclass(frozen=True)
class WbsTreeNode:
    """A node with its children, for nested listings."""

    node: WbsNodeRef
    children: tuple[WbsTreeNode, ...]


def generate_code(parent_code: str | None, sequence: int) -> str:
    """``"3"`` for a root, ``"1.2.3"`` under ``"1.2"``."""
    if sequence < 1:
        raise ValueError("WBS sequence numbers start at 1")
    return f"{parent_code}.{sequence}" if parent_code else str(sequence)


def last_segment(code: str) -> int:
    """Trailing sequence number of a dotted code (0 if not numeric)."""
    tail = code.rsplit(".", 1)[-1]
    return int(tail) if tail.isdigit() else 0


def next_sequence(sibling_codes: Iterable[str]) -> int:
    """One past the highest trailing segment among siblings (active or not)."""
    return max((last_segment(c) for c in sibling_codes), default=0) + 1


class WbsTree:
    """
    Immutable view over one project's WBS nodes.

    Contract:
        Built from any iterable of ``WbsNodeRef``.  Parents missing from
        the input are treated as absent (their children become roots).
    """

    def __init__(self, nodes: Iterable[WbsNodeRef]):
        self._nodes: dict[UUID, WbsNodeRef] = {n.id: n for n in nodes}
        children: dict[UUID | None, list[WbsNodeRef]] = defaultdict(list)
        for node in self._nodes.values():
            parent = node.parent_id if node.parent_id in self._nodes else None
            children[parent].append(node)
        self._children: dict[UUID | None, tuple[WbsNodeRef, ...]] = {
            parent: tuple(sorted(kids, key=lambda n: (n.sort_order, _code_key(n.code))))
            for parent, kids in children.items()
        }

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def get(self, node_id: UUID) -> WbsNodeRef:
        return self._nodes[node_id]

    def roots(self) -> tuple[WbsNodeRef, ...]:
        return self._children.get(None, ())

    def children(self, node_id: UUID | None) -> tuple[WbsNodeRef, ...]:
        return self._children.get(node_id, ())

    def is_leaf(self, node_id: UUID) -> bool:
        return not self._children.get(node_id)

    def subtree_ids(self, node_id: UUID) -> list[UUID]:
        """``node_id`` and all descendants, pre-order."""
        if node_id not in self._nodes:
            raise KeyError(node_id)
        ordered: list[UUID] = []
        seen: set[UUID] = set()
        stack = [node_id]
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            ordered.append(current)
            stack.extend(reversed([c.id for c in self.children(current)]))
        return ordered

    def ancestors(self, node_id: UUID) -> list[WbsNodeRef]:
        """Parent first, root last."""
        result: list[WbsNodeRef] = []
        seen = {node_id}
        parent_id = self._nodes[node_id].parent_id
        while parent_id is not None and parent_id in self._nodes and parent_id not in seen:
            seen.add(parent_id)
            parent = self._nodes[parent_id]
            result.append(parent)
            parent_id = parent.parent_id
        return result

    def depth(self, node_id: UUID) -> int:
        """Root nodes have depth 1."""
        return len(self.ancestors(node_id)) + 1

    def subtree_height(self, node_id: UUID) -> int:
        """Levels in the subtree rooted at ``node_id`` (a leaf is 1)."""
        base = self.depth(node_id)
        return max(self.depth(i) for i in self.subtree_ids(node_id)) - base + 1

    def would_create_cycle(self, node_id: UUID, new_parent_id: UUID | None) -> bool:
        """True if re-parenting ``node_id`` under ``new_parent_id`` forms a loop."""
        if new_parent_id is None:
            return False
        return new_parent_id in set(self.subtree_ids(node_id))

    def rollup(
        self,
        values: Mapping[UUID, T],
        zero: T,
        add: Callable[[T, T], T] = lambda a, b: a + b,
    ) -> dict[UUID, T]:
        """
        Subtree sums for every node.

        ``values`` holds each node's own amount (missing -> ``zero``); the
        result maps every node to its own amount plus all descendants'.
        """
        totals: dict[UUID, T] = {}
        for root in self.roots():
            order = self.subtree_ids(root.id)
            for node_id in reversed(order):
                total = values.get(node_id, zero)
                for child in self.children(node_id):
                    total = add(total, totals[child.id])
                totals[node_id] = total
        return totals

    def nested(self, include_inactive: bool = False) -> tuple[WbsTreeNode, ...]:
        """Roots with nested children, in sibling order."""

        def build(node: WbsNodeRef) -> WbsTreeNode:
            kids = tuple(
                build(c)
                for c in self.children(node.id)
                if include_inactive or c.is_active
            )
            return WbsTreeNode(node=node, children=kids)

        return tuple(
            build(r) for r in self.roots() if include_inactive or r.is_active
        )

    def recode_subtree(self, node_id: UUID, new_code: str) -> dict[UUID, str]:
        """
        Codes for ``node_id`` (given) and its descendants after a move.

        Children are renumbered 1..n under their parent in sibling order.
        """
        codes = {node_id: new_code}
        for current in self.subtree_ids(node_id):
            for index, child in enumerate(self.children(current), start=1):
                codes[child.id] = generate_code(codes[current], index)
        return codes


def _code_key(code: str) -> tuple[int, ...]:
    return tuple(int(p) if p.isdigit() else 0 for p in code.split("."))
