"""
costcontrol_engines.seal -- Tamper-evident seal over a certification's final figures.

Responsibility:
    Compute the integrity seal stamped when a certification is issued:
    SHA-256 over the canonical JSON of the certification id and number,
    the previous link of the project's seal chain (the prior sealed
    certification's seal, or the project salt for the first), and the
    certification lines sorted by line id with their cumulative figures.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Used at issue time and
    again, from stored rows, when a seal is re-verified.

Invariants enforced:
    - Deterministic: sorted keys, sorted lines, Decimals normalized, so
      9-place stored values hash identically to the values computed in
      memory before the flush.
    - Chained: altering any earlier certification's seal breaks every
      later link.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from costcontrol_engines.tracer import traced_engine
from costcontrol_kernel.utils.hashing import hash_payload

SEAL_VERSION = 1


@dataclass(frozen=True)
class SealLine:
    """The per-line figures covered by the seal."""

    line_id: UUID
    budget_line_id: UUID
    total_progress_pct: Decimal
    total_qty: Decimal
    period_amount: Decimal
    total_amount: Decimal


@traced_engine("seal", str(SEAL_VERSION), fingerprint_fields=("certification_id", "number"))
def compute_seal(
    *,
    certification_id: UUID,
    number: int,
    previous_seal: str,
    lines: Iterable[SealLine],
) -> str:
    """Hex SHA-256 seal for one certification."""
    ordered = sorted(lines, key=lambda line: str(line.line_id))
    payload = {
        "seal_version": SEAL_VERSION,
        "certification_id": certification_id,
        "number": number,
        "previous_seal": previous_seal,
        "lines": [
            [
                line.line_id,
                line.budget_line_id,
                line.total_progress_pct,
                line.total_qty,
                line.period_amount,
                line.total_amount,
            ]
            for line in ordered
        ],
    }
    return hash_payload(payload)
