"""
Work-Breakdown-Structure Module (``costcontrol_modules.wbs``).

Responsibility
--------------
Author a project's WBS: PHASE / TASK grouping nodes and BUDGET_ITEM leaves
that carry budget lines.  Hierarchical dotted codes, moves with subtree
recoding, recursive soft deactivation and guarded hard delete.

Architecture position
---------------------
**Modules layer** -- ``WbsService`` writes, ``WbsSelector`` reads; all
traversal goes through ``costcontrol_engines.wbs_tree``.
"""

from costcontrol_modules.wbs.models import WbsNode, WbsTreeEntry

__all__ = ["WbsNode", "WbsTreeEntry"]
