"""
Certification Domain Models (``costcontrol_modules.certification.models``).

Responsibility
--------------
Frozen dataclass value objects for progress certifications and their
lines.

Architecture position
---------------------
**Modules layer** -- pure data definitions with ZERO I/O.

Invariants enforced
-------------------
* All models are ``frozen=True``.
* Quantities, percentages and amounts are ``Decimal`` -- NEVER ``float``.
* Line figures are the stored values; nothing here recomputes them.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID


class CertificationStatus(str, Enum):
    """Certification states."""
    DRAFT = "draft"
    ISSUED = "issued"
    APPROVED = "approved"
    REJECTED = "rejected"


# Certifications whose figures count as prior progress
COUNTED_STATUSES = (CertificationStatus.ISSUED, CertificationStatus.APPROVED)


@dataclass(frozen=True)
class Certification:
    """A certification header."""
    id: UUID
    project_id: UUID
    version_id: UUID
    number: int
    period_month: int
    period_year: int
    status: CertificationStatus
    integrity_seal: str | None = None
    previous_seal: str | None = None
    issued_date: datetime | None = None
    issued_by_id: UUID | None = None
    approved_by_id: UUID | None = None
    decided_at: datetime | None = None
    notes: str | None = None

    @property
    def is_sealed(self) -> bool:
        return self.integrity_seal is not None


@dataclass(frozen=True)
class CertificationLine:
    """One billed budget line with its cumulative figures."""
    id: UUID
    certification_id: UUID
    budget_line_id: UUID
    wbs_node_id: UUID
    contractual_qty_snapshot: Decimal
    unit_price_snapshot: Decimal
    prev_progress_pct: Decimal
    period_progress_pct: Decimal
    total_progress_pct: Decimal
    prev_qty: Decimal
    period_qty: Decimal
    total_qty: Decimal
    remaining_qty: Decimal
    prev_amount: Decimal
    period_amount: Decimal
    total_amount: Decimal


@dataclass(frozen=True)
class CertificationDetail:
    """Header, lines, and the sums of the stored line amounts."""
    certification: Certification
    lines: tuple[CertificationLine, ...]
    period_amount_total: Decimal
    total_amount_total: Decimal

    def line_for(self, budget_line_id: UUID) -> CertificationLine:
        for line in self.lines:
            if line.budget_line_id == budget_line_id:
                return line
        raise KeyError(budget_line_id)
