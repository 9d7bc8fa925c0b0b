"""
Tests for the progress billing calculator.

The scenario mirrors a 50 m3 footing priced at 20.00 per unit with no
markups: certification #1 bills 40%, certification #2 bills 30%.
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from costcontrol_engines.progress_billing import (
    NO_PRIOR_PROGRESS,
    LineBaseline,
    PriorProgress,
    ProgressBillingCalculator,
    unit_price_snapshot,
)
from costcontrol_kernel.exceptions import ValidationError


@pytest.fixture
def calculator():
    return ProgressBillingCalculator()


@pytest.fixture
def footing():
    return LineBaseline(
        budget_line_id=uuid4(),
        wbs_node_id=uuid4(),
        contractual_qty=Decimal("50"),
        unit_price=unit_price_snapshot(Decimal("1000"), Decimal("50")),
    )


def _as_prior(figures):
    return PriorProgress(
        progress_pct=figures.total_progress_pct,
        qty=figures.total_qty,
        amount=figures.total_amount,
    )


class TestUnitPriceSnapshot:

    def test_sale_over_quantity(self):
        assert unit_price_snapshot(Decimal("1597.20"), Decimal("50")) == Decimal("31.944")

    def test_zero_quantity(self):
        assert unit_price_snapshot(Decimal("100"), Decimal("0")) == 0

    def test_stored_precision(self):
        price = unit_price_snapshot(Decimal("100"), Decimal("3"))
        assert price == Decimal("33.333333333")


class TestScenario:

    def test_first_certification(self, calculator, footing):
        first = calculator.bill_line(
            baseline=footing, prior=NO_PRIOR_PROGRESS, period_progress_pct=Decimal("40")
        )
        assert first.prev_progress_pct == 0
        assert first.total_progress_pct == Decimal("40")
        assert first.period_qty == Decimal("20")
        assert first.period_amount == Decimal("400")
        assert first.remaining_qty == Decimal("30")

    def test_second_certification(self, calculator, footing):
        first = calculator.bill_line(
            baseline=footing, prior=NO_PRIOR_PROGRESS, period_progress_pct=Decimal("40")
        )
        second = calculator.bill_line(
            baseline=footing, prior=_as_prior(first), period_progress_pct=Decimal("30")
        )
        assert second.prev_progress_pct == Decimal("40")
        assert second.total_progress_pct == Decimal("70")
        assert second.prev_qty == Decimal("20")
        assert second.period_qty == Decimal("15")
        assert second.total_qty == Decimal("35")
        assert second.remaining_qty == Decimal("15")
        assert second.prev_amount == Decimal("400")
        assert second.total_amount == Decimal("700")

    def test_zero_progress_line(self, calculator, footing):
        figures = calculator.bill_line(
            baseline=footing, prior=NO_PRIOR_PROGRESS, period_progress_pct=Decimal("0")
        )
        assert figures.period_qty == 0
        assert figures.period_amount == 0
        assert figures.remaining_qty == Decimal("50")


class TestLimits:

    def test_over_one_hundred_rejected(self, calculator, footing):
        prior = PriorProgress(progress_pct=Decimal("80"), qty=Decimal("40"), amount=Decimal("800"))
        with pytest.raises(ValidationError) as exc_info:
            calculator.bill_line(baseline=footing, prior=prior, period_progress_pct=Decimal("20.01"))
        assert "80" in str(exc_info.value)

    def test_negative_rejected(self, calculator, footing):
        with pytest.raises(ValidationError):
            calculator.bill_line(
                baseline=footing, prior=NO_PRIOR_PROGRESS, period_progress_pct=Decimal("-1")
            )

    def test_closing_period_bills_exact_remainder(self, calculator):
        baseline = LineBaseline(uuid4(), uuid4(), Decimal("3"), Decimal("10"))
        running = NO_PRIOR_PROGRESS
        for pct in (Decimal("33.333333333"), Decimal("33.333333333")):
            running = _as_prior(calculator.bill_line(baseline=baseline, prior=running, period_progress_pct=pct))
        closing = calculator.bill_line(
            baseline=baseline, prior=running, period_progress_pct=Decimal("100") - running.progress_pct
        )
        assert closing.total_progress_pct == Decimal("100")
        assert closing.total_qty == Decimal("3")
        assert closing.remaining_qty == 0

    def test_excess_precision_percentage_is_quantized_first(self, calculator):
        paint = LineBaseline(uuid4(), uuid4(), Decimal("300"), Decimal("5"))
        figures = calculator.bill_line(
            baseline=paint, prior=NO_PRIOR_PROGRESS, period_progress_pct=Decimal("33.33333333349")
        )
        assert figures.period_progress_pct == Decimal("33.333333333")
        assert figures.period_qty == Decimal("99.999999999")
        assert figures.period_amount == Decimal("499.999999995")

    def test_bill_lines_rejects_unknown_line(self, calculator, footing):
        with pytest.raises(ValidationError):
            calculator.bill_lines([footing], {}, {uuid4(): Decimal("10")})

    def test_bill_lines_defaults_to_zero(self, calculator, footing):
        [figures] = calculator.bill_lines([footing], {}, {})
        assert figures.period_progress_pct == 0


# ============================================================================
# Properties
# ============================================================================

steps = st.lists(
    st.decimals(min_value=Decimal("0"), max_value=Decimal("40"), places=2),
    min_size=1,
    max_size=6,
)


@settings(max_examples=150, deadline=None)
@given(
    qty=st.decimals(min_value=Decimal("0.001"), max_value=Decimal("100000"), places=3),
    price=st.decimals(min_value=Decimal("0"), max_value=Decimal("10000"), places=4),
    periods=steps,
)
def test_cumulative_figures_stay_consistent(qty, price, periods):
    calc = ProgressBillingCalculator()
    baseline = LineBaseline(uuid4(), uuid4(), qty, price)
    prior = NO_PRIOR_PROGRESS
    billed_amount = Decimal("0")
    for pct in periods:
        if prior.progress_pct + pct > 100:
            break
        figures = calc.bill_line(baseline=baseline, prior=prior, period_progress_pct=pct)
        assert figures.total_progress_pct == figures.prev_progress_pct + figures.period_progress_pct
        assert figures.total_qty == figures.prev_qty + figures.period_qty
        assert figures.total_amount == figures.prev_amount + figures.period_amount
        assert figures.remaining_qty == qty - figures.total_qty
        assert Decimal("0") <= figures.total_qty <= qty
        billed_amount += figures.period_amount
        assert billed_amount == figures.total_amount
        prior = _as_prior(figures)
