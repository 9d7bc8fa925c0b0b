"""
Cost-control engines -- pure calculators with zero I/O.

- markup: ordered overhead/financial/profit/tax chain, per unit and extended
- apu: unit price analysis from weighted resource consumptions
- wbs_tree: arena-backed WBS traversal, coding and subtree rollups
- progress_billing: cumulative certification line figures
- seal: certification integrity seal

Every engine entry point is wrapped with ``@traced_engine`` and emits a
``COSTCONTROL_ENGINE_TRACE`` record.
"""

from costcontrol_engines.apu import (
    APUCalculator,
    APUResult,
    ResourceConsumption,
    ResourceLine,
    ResourceType,
)
from costcontrol_engines.markup import (
    MarkupBreakdown,
    MarkupCalculator,
    MarkupRates,
    validate_percentage,
)
from costcontrol_engines.progress_billing import (
    CertificationLineFigures,
    LineBaseline,
    PriorProgress,
    ProgressBillingCalculator,
    unit_price_snapshot,
)
from costcontrol_engines.seal import SealLine, compute_seal
from costcontrol_engines.wbs_tree import (
    ALLOWED_CHILDREN,
    WbsCategory,
    WbsNodeRef,
    WbsTree,
    WbsTreeNode,
    generate_code,
    next_sequence,
)

__all__ = [
    "APUCalculator",
    "APUResult",
    "ResourceConsumption",
    "ResourceLine",
    "ResourceType",
    "MarkupBreakdown",
    "MarkupCalculator",
    "MarkupRates",
    "validate_percentage",
    "CertificationLineFigures",
    "LineBaseline",
    "PriorProgress",
    "ProgressBillingCalculator",
    "unit_price_snapshot",
    "SealLine",
    "compute_seal",
    "ALLOWED_CHILDREN",
    "WbsCategory",
    "WbsNodeRef",
    "WbsTree",
    "WbsTreeNode",
    "generate_code",
    "next_sequence",
]
