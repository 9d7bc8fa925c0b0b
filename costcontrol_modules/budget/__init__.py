"""
Budget Module (``costcontrol_modules.budget``).

Responsibility
--------------
Versioned project budgets: lines priced by unit cost, APU resources or
import, ordered markups per version (with per-line overrides in advanced
mode), the draft -> baseline -> approved lifecycle, copies, and the
project baseline pointer.

Architecture position
---------------------
**Modules layer** -- ``BudgetService`` writes (owning the transaction),
``BudgetSelector`` reads; pricing lives in ``costcontrol_engines``.

Failure modes
-------------
* ``ImmutableVersionError`` on any edit beneath a non-DRAFT version.
* ``StateTransitionError`` / ``AuthorizationError`` /
  ``ConcurrencyConflictError`` from lifecycle transitions.

Audit relevance
---------------
Baselining and approval write outbox events in the same transaction and
stamp who locked the version and when.
"""

from costcontrol_modules.budget.models import (
    APUDetail,
    BudgetLine,
    BudgetResource,
    BudgetVersion,
    CostBasis,
    CostTotals,
    MarkupMode,
    VersionRollup,
    VersionStatus,
    VersionType,
    WbsRollupRow,
)
from costcontrol_modules.budget.workflows import BUDGET_VERSION_WORKFLOW

__all__ = [
    "APUDetail",
    "BudgetLine",
    "BudgetResource",
    "BudgetVersion",
    "CostBasis",
    "CostTotals",
    "MarkupMode",
    "VersionRollup",
    "VersionStatus",
    "VersionType",
    "WbsRollupRow",
    "BUDGET_VERSION_WORKFLOW",
]
