"""
Budget Domain Models (``costcontrol_modules.budget.models``).

Responsibility
--------------
Frozen dataclass value objects for the nouns of budgeting: versions,
lines, APU resources, and the rollup shapes returned by the selector.

Architecture position
---------------------
**Modules layer** -- pure data definitions with ZERO I/O.  Consumed by
``BudgetService`` / ``BudgetSelector`` and returned to callers.

Invariants enforced
-------------------
* All models are ``frozen=True`` (immutable after construction).
* All monetary fields use ``Decimal`` -- NEVER ``float``.
* Amounts are exactly the stored values; nothing here recomputes them.

Failure modes
-------------
* Construction with invalid enum values raises ``ValueError``.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from costcontrol_engines.apu import APUResult, ResourceType
from costcontrol_engines.markup import MarkupRates


class VersionStatus(str, Enum):
    """Budget version states."""
    DRAFT = "draft"
    BASELINE = "baseline"
    APPROVED = "approved"


class VersionType(str, Enum):
    """Why a version exists."""
    INITIAL = "initial"
    REVISION = "revision"
    CHANGE_ORDER = "change_order"


class MarkupMode(str, Enum):
    """SIMPLE: version globals only.  ADVANCED: per-line overrides allowed."""
    SIMPLE = "simple"
    ADVANCED = "advanced"


class CostBasis(str, Enum):
    """Where a line's direct cost comes from."""
    APU = "apu"
    UNIT_COST = "unit_cost"
    IMPORTED = "imported"


BILLABLE_STATUSES = (VersionStatus.BASELINE, VersionStatus.APPROVED)


@dataclass(frozen=True)
class BudgetVersion:
    """A budget version header."""
    id: UUID
    project_id: UUID
    version_code: str
    version_type: VersionType
    status: VersionStatus
    markup_mode: MarkupMode
    global_rates: MarkupRates
    notes: str | None = None
    copied_from_version_id: UUID | None = None
    baselined_at: datetime | None = None
    baselined_by_id: UUID | None = None
    approved_at: datetime | None = None
    approved_by_id: UUID | None = None

    @property
    def is_locked(self) -> bool:
        return self.status is not VersionStatus.DRAFT

    @property
    def is_billable(self) -> bool:
        return self.status in BILLABLE_STATUSES


@dataclass(frozen=True)
class BudgetResource:
    """One APU resource row of a budget line."""
    id: UUID
    line_id: UUID
    resource_type: ResourceType
    description: str
    unit: str | None
    quantity_per_unit: Decimal
    unit_cost: Decimal
    total_cost: Decimal
    sort_order: int = 0


@dataclass(frozen=True)
class BudgetLine:
    """A priced line of a budget version, with its stored markup breakdown."""
    id: UUID
    version_id: UUID
    wbs_node_id: UUID
    description: str
    unit: str | None
    quantity: Decimal
    cost_basis: CostBasis
    direct_unit_cost: Decimal
    direct_cost_total: Decimal
    overhead_amount: Decimal
    financial_amount: Decimal
    profit_amount: Decimal
    tax_amount: Decimal
    sale_price_total: Decimal
    overhead_pct: Decimal | None = None
    financial_pct: Decimal | None = None
    profit_pct: Decimal | None = None
    tax_pct: Decimal | None = None
    sort_order: int = 0
    resources: tuple[BudgetResource, ...] = ()

    @property
    def has_overrides(self) -> bool:
        return any(
            p is not None
            for p in (self.overhead_pct, self.financial_pct, self.profit_pct, self.tax_pct)
        )


@dataclass(frozen=True)
class CostTotals:
    """Sums of stored line columns."""
    direct_cost: Decimal
    overhead: Decimal
    financial: Decimal
    profit: Decimal
    tax: Decimal
    sale: Decimal


@dataclass(frozen=True)
class VersionRollup:
    """Version-level totals."""
    version_id: UUID
    version_code: str
    status: VersionStatus
    line_count: int
    totals: CostTotals


@dataclass(frozen=True)
class WbsRollupRow:
    """Subtree totals for one WBS node of a version."""
    wbs_node_id: UUID
    code: str
    name: str
    depth: int
    line_count: int
    totals: CostTotals


@dataclass(frozen=True)
class APUDetail:
    """A line's resources with the analysis the APU engine produces."""
    line: BudgetLine
    analysis: APUResult
    extended_direct_cost: Decimal
