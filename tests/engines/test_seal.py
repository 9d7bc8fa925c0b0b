"""Tests for the certification integrity seal."""

from decimal import Decimal
from uuid import uuid4

import pytest

from costcontrol_engines.seal import SealLine, compute_seal


@pytest.fixture
def lines():
    return [
        SealLine(uuid4(), uuid4(), Decimal("40"), Decimal("20"), Decimal("400"), Decimal("400")),
        SealLine(uuid4(), uuid4(), Decimal("10"), Decimal("30"), Decimal("150"), Decimal("150")),
    ]


@pytest.fixture
def cert_id():
    return uuid4()


def test_seal_is_hex_sha256(cert_id, lines):
    seal = compute_seal(certification_id=cert_id, number=1, previous_seal="salt", lines=lines)
    assert len(seal) == 64
    int(seal, 16)


def test_deterministic_and_order_independent(cert_id, lines):
    a = compute_seal(certification_id=cert_id, number=1, previous_seal="salt", lines=lines)
    b = compute_seal(
        certification_id=cert_id, number=1, previous_seal="salt", lines=list(reversed(lines))
    )
    assert a == b


def test_trailing_zeros_do_not_change_the_seal(cert_id, lines):
    padded = [
        SealLine(
            line.line_id, line.budget_line_id,
            line.total_progress_pct.quantize(Decimal("0.000000001")),
            line.total_qty.quantize(Decimal("0.000000001")),
            line.period_amount.quantize(Decimal("0.000000001")),
            line.total_amount.quantize(Decimal("0.000000001")),
        )
        for line in lines
    ]
    assert compute_seal(
        certification_id=cert_id, number=1, previous_seal="salt", lines=lines
    ) == compute_seal(certification_id=cert_id, number=1, previous_seal="salt", lines=padded)


@pytest.mark.parametrize("field", ["total_progress_pct", "total_qty", "period_amount", "total_amount"])
def test_any_figure_change_changes_the_seal(cert_id, lines, field):
    original = compute_seal(certification_id=cert_id, number=1, previous_seal="salt", lines=lines)
    first = lines[0]
    values = {
        "total_progress_pct": first.total_progress_pct,
        "total_qty": first.total_qty,
        "period_amount": first.period_amount,
        "total_amount": first.total_amount,
    }
    values[field] += Decimal("0.01")
    tampered = [SealLine(first.line_id, first.budget_line_id, **values), lines[1]]
    assert compute_seal(
        certification_id=cert_id, number=1, previous_seal="salt", lines=tampered
    ) != original


def test_chain_link_is_covered(cert_id, lines):
    a = compute_seal(certification_id=cert_id, number=2, previous_seal="a" * 64, lines=lines)
    b = compute_seal(certification_id=cert_id, number=2, previous_seal="b" * 64, lines=lines)
    assert a != b


def test_number_is_covered(cert_id, lines):
    a = compute_seal(certification_id=cert_id, number=1, previous_seal="salt", lines=lines)
    b = compute_seal(certification_id=cert_id, number=2, previous_seal="salt", lines=lines)
    assert a != b
