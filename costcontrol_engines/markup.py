"""
costcontrol_engines.markup -- Ordered percentage markups from direct cost to sale price.

Responsibility:
    Turn a direct cost and four percentages (overhead, financial, profit,
    tax) into the ordered breakdown

        overhead  = direct    x overhead%  / 100
        subtotal1 = direct    + overhead
        financial = subtotal1 x financial% / 100
        profit    = subtotal1 x profit%    / 100
        subtotal2 = subtotal1 + financial + profit
        tax       = subtotal2 x tax%       / 100
        total     = subtotal2 + tax

    Financial and profit are both taken on subtotal1 (never chained on
    each other); tax is taken on subtotal2.  The order changes the result
    and is fixed.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Consumed by the budget service (per line) and the budget selector
    (aggregation by summing the stored line columns).

Invariants enforced:
    - Decimal only.  Percentages are kept as entered (``21`` means 21%)
      and divided by 100 with ``scaleb(-2)`` at the point of use, which is
      exact.
    - Arithmetic runs in a private 60-digit context, so results never
      depend on the caller's decimal context.
    - Line totals come from scaling the per-unit breakdown by quantity
      (``MarkupBreakdown.extended``), never from re-applying percentages to
      scaled inputs.
    - For direct >= 0 and percentages in [0, 100]:
      direct <= subtotal1 <= subtotal2 <= total.

Failure modes:
    - ValidationError from ``MarkupRates.validated`` for a percentage
      outside [0, 100] or a negative direct cost.

Audit relevance:
    Line breakdowns are stored as computed; reports sum the stored values
    and never recompute markups on read.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from decimal import Decimal, localcontext

from costcontrol_engines.tracer import traced_engine
from costcontrol_kernel.db.types import ONE_HUNDRED, ZERO, as_decimal, to_storage
from costcontrol_kernel.exceptions import ValidationError
from costcontrol_kernel.logging_config import get_logger

logger = get_logger("engines.markup")

_PRECISION = 60


def _pct_of(amount: Decimal, pct: Decimal) -> Decimal:
    return amount * pct.scaleb(-2)


@dataclass(frozen=True)
class MarkupRates:
    """The four markup percentages, as entered (0..100)."""

    overhead_pct: Decimal = ZERO
    financial_pct: Decimal = ZERO
    profit_pct: Decimal = ZERO
    tax_pct: Decimal = ZERO

    @classmethod
    def validated(
        cls,
        overhead_pct: Decimal | int | str = ZERO,
        financial_pct: Decimal | int | str = ZERO,
        profit_pct: Decimal | int | str = ZERO,
        tax_pct: Decimal | int | str = ZERO,
    ) -> MarkupRates:
        """Build rates, rejecting any percentage outside [0, 100]."""
        values = {
            "overhead_pct": overhead_pct,
            "financial_pct": financial_pct,
            "profit_pct": profit_pct,
            "tax_pct": tax_pct,
        }
        checked = {name: validate_percentage(name, value) for name, value in values.items()}
        return cls(**checked)

    def resolve(self, **overrides: Decimal | None) -> MarkupRates:
        """Return these rates with any non-None override applied."""
        merged = {}
        for f in fields(self):
            override = overrides.get(f.name)
            merged[f.name] = (
                validate_percentage(f.name, override)
                if override is not None
                else getattr(self, f.name)
            )
        return MarkupRates(**merged)

    def as_dict(self) -> dict[str, Decimal]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


def validate_percentage(field: str, value: Decimal | int | str | None) -> Decimal:
    """Coerce to Decimal and require 0 <= value <= 100."""
    if value is None:
        raise ValidationError(field, value, "percentage is required")
    pct = as_decimal(value)
    if not pct.is_finite() or pct < ZERO or pct > ONE_HUNDRED:
        raise ValidationError(field, value, "percentage must be between 0 and 100")
    return pct


@dataclass(frozen=True)
class MarkupBreakdown:
    """
    Ordered markup result.

    ``subtotal1``, ``subtotal2`` and ``total_sale`` are always the sums of
    their parts, including after ``extended``.
    """

    direct_cost: Decimal
    overhead_amount: Decimal
    financial_amount: Decimal
    profit_amount: Decimal
    tax_amount: Decimal

    @property
    def subtotal1(self) -> Decimal:
        return self.direct_cost + self.overhead_amount

    @property
    def subtotal2(self) -> Decimal:
        return self.subtotal1 + self.financial_amount + self.profit_amount

    @property
    def total_sale(self) -> Decimal:
        return self.subtotal2 + self.tax_amount

    def extended(self, quantity: Decimal) -> MarkupBreakdown:
        """Scale the per-unit breakdown by quantity, each part to stored precision."""
        with localcontext() as ctx:
            ctx.prec = _PRECISION
            return MarkupBreakdown(
                direct_cost=to_storage(self.direct_cost * quantity),
                overhead_amount=to_storage(self.overhead_amount * quantity),
                financial_amount=to_storage(self.financial_amount * quantity),
                profit_amount=to_storage(self.profit_amount * quantity),
                tax_amount=to_storage(self.tax_amount * quantity),
            )


class MarkupCalculator:
    """
    Pure markup calculator.

    Contract:
        No I/O, no database access, fully deterministic.
    Guarantees:
        - ``breakdown`` is exact (no rounding) for any Decimal inputs.
        - ``line_breakdown`` rounds only the extended parts, to 9 places.
    """

    @traced_engine("markup", "1.0", fingerprint_fields=("direct_cost", "rates"))
    def breakdown(self, *, direct_cost: Decimal, rates: MarkupRates) -> MarkupBreakdown:
        """Apply the ordered markup chain to one direct cost."""
        direct = as_decimal(direct_cost)
        if direct < ZERO:
            raise ValidationError("direct_cost", direct_cost, "direct cost cannot be negative")
        with localcontext() as ctx:
            ctx.prec = _PRECISION
            overhead = _pct_of(direct, rates.overhead_pct)
            subtotal1 = direct + overhead
            financial = _pct_of(subtotal1, rates.financial_pct)
            profit = _pct_of(subtotal1, rates.profit_pct)
            subtotal2 = subtotal1 + financial + profit
            tax = _pct_of(subtotal2, rates.tax_pct)
        return MarkupBreakdown(
            direct_cost=direct,
            overhead_amount=overhead,
            financial_amount=financial,
            profit_amount=profit,
            tax_amount=tax,
        )

    @traced_engine(
        "markup", "1.0", fingerprint_fields=("unit_direct_cost", "quantity", "rates")
    )
    def line_breakdown(
        self,
        *,
        unit_direct_cost: Decimal,
        quantity: Decimal,
        rates: MarkupRates,
    ) -> tuple[MarkupBreakdown, MarkupBreakdown]:
        """
        Per-unit breakdown and its extension by quantity.

        Returns:
            (unit, extended) -- ``extended`` is what a budget line stores.
        """
        qty = as_decimal(quantity)
        if qty < ZERO:
            raise ValidationError("quantity", quantity, "quantity cannot be negative")
        unit = self.breakdown(direct_cost=unit_direct_cost, rates=rates)
        return unit, unit.extended(qty)
