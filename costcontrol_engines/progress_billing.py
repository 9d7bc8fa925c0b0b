"""
costcontrol_engines.progress_billing -- Cumulative progress-certification billing math.

Responsibility:
    Given a budget line's frozen snapshot (contractual quantity and unit
    sale price), the line's prior cumulative progress, and this period's
    progress percentage, compute the full certification line:
    prev/period/total for percentage, quantity and amount, plus the
    remaining quantity.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The certification
    service loads snapshots and prior progress, calls this engine, and
    persists the figures unchanged.

Invariants enforced (for every line produced):
    - total_progress_pct = prev + period, and 0 <= total <= 100.
    - total_qty = prev_qty + period_qty <= contractual_qty.
    - remaining_qty = contractual_qty - total_qty >= 0.
    - total_amount = prev_amount + period_amount.
    - period_qty = contractual x period% / 100 at stored precision.  When
      the line closes at 100%, or rounding would overshoot the contract,
      period_qty is the exact remainder instead, so quantities can never
      exceed the contract.
    - period_amount = period_qty x unit_price at stored precision.
    - period% is quantized to stored precision before any arithmetic, so
      a reloaded DRAFT recomputes to the figures it already shows.

Failure modes:
    - ValidationError (field ``period_progress_pct``) for a negative
      percentage or one that pushes the cumulative total past 100.
    - ValidationError (field ``budget_line_id``) for progress reported
      against a line that is not part of the billed version.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from decimal import Decimal, localcontext
from uuid import UUID

from costcontrol_engines.tracer import traced_engine
from costcontrol_kernel.db.types import ONE_HUNDRED, ZERO, as_decimal, to_storage
from costcontrol_kernel.exceptions import ValidationError

_PRECISION = 60


def unit_price_snapshot(sale_price_total: Decimal, quantity: Decimal) -> Decimal:
    """Sale price per unit at stored precision; 0 for a zero-quantity line."""
    if quantity <= ZERO:
        return ZERO
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        return to_storage(sale_price_total / quantity)


@dataclass(frozen=True)
class PriorProgress:
    """Cumulative state from the latest prior non-rejected certification line."""

    progress_pct: Decimal = ZERO
    qty: Decimal = ZERO
    amount: Decimal = ZERO


NO_PRIOR_PROGRESS = PriorProgress()


@dataclass(frozen=True)
class LineBaseline:
    """Frozen budget-line snapshot a certification bills against."""

    budget_line_id: UUID
    wbs_node_id: UUID
    contractual_qty: Decimal
    unit_price: Decimal


@dataclass(frozen=True)
class CertificationLineFigures:
    """All computed columns of one certification line."""

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


class ProgressBillingCalculator:
    """
    Pure certification-line calculator.

    Contract:
        No I/O, no clock.  Same inputs produce bit-identical figures.
    """

    @traced_engine(
        "progress_billing",
        "1.0",
        fingerprint_fields=("baseline", "prior", "period_progress_pct"),
    )
    def bill_line(
        self,
        *,
        baseline: LineBaseline,
        prior: PriorProgress,
        period_progress_pct: Decimal,
    ) -> CertificationLineFigures:
        pct = as_decimal(period_progress_pct)
        if not pct.is_finite() or pct < ZERO:
            raise ValidationError(
                "period_progress_pct",
                period_progress_pct,
                f"progress for budget line {baseline.budget_line_id} cannot be negative",
            )
        # Figures derive from the percentage as stored
        pct = to_storage(pct)
        total_pct = prior.progress_pct + pct
        if total_pct > ONE_HUNDRED:
            raise ValidationError(
                "period_progress_pct",
                period_progress_pct,
                f"budget line {baseline.budget_line_id} already certified at "
                f"{prior.progress_pct}%; total would reach {total_pct}%",
            )

        contractual = baseline.contractual_qty
        with localcontext() as ctx:
            ctx.prec = _PRECISION
            period_qty = to_storage(contractual * pct.scaleb(-2))
            if total_pct == ONE_HUNDRED or prior.qty + period_qty > contractual:
                period_qty = contractual - prior.qty
            total_qty = prior.qty + period_qty
            period_amount = to_storage(period_qty * baseline.unit_price)
            total_amount = prior.amount + period_amount

        return CertificationLineFigures(
            budget_line_id=baseline.budget_line_id,
            wbs_node_id=baseline.wbs_node_id,
            contractual_qty_snapshot=contractual,
            unit_price_snapshot=baseline.unit_price,
            prev_progress_pct=prior.progress_pct,
            period_progress_pct=pct,
            total_progress_pct=total_pct,
            prev_qty=prior.qty,
            period_qty=period_qty,
            total_qty=total_qty,
            remaining_qty=contractual - total_qty,
            prev_amount=prior.amount,
            period_amount=period_amount,
            total_amount=total_amount,
        )

    def bill_lines(
        self,
        baselines: Sequence[LineBaseline],
        priors: Mapping[UUID, PriorProgress],
        progress: Mapping[UUID, Decimal],
    ) -> list[CertificationLineFigures]:
        """
        One figure set per baseline line, in input order.

        Lines without reported progress bill 0% this period.
        """
        known = {b.budget_line_id for b in baselines}
        unknown = sorted(str(i) for i in progress if i not in known)
        if unknown:
            raise ValidationError(
                "budget_line_id", unknown[0], "line is not part of the billed budget version"
            )
        return [
            self.bill_line(
                baseline=b,
                prior=priors.get(b.budget_line_id, NO_PRIOR_PROGRESS),
                period_progress_pct=progress.get(b.budget_line_id, ZERO),
            )
            for b in baselines
        ]
