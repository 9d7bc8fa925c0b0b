"""Tests for the engine invocation tracer."""

from decimal import Decimal

from costcontrol_engines.markup import MarkupRates
from costcontrol_engines.tracer import compute_input_fingerprint, traced_engine


def test_fingerprint_ignores_decimal_scale():
    a = compute_input_fingerprint(("amount",), {"amount": Decimal("20")})
    b = compute_input_fingerprint(("amount",), {"amount": Decimal("20.000")})
    assert a == b
    assert len(a) == 16


def test_fingerprint_covers_dataclasses():
    low = compute_input_fingerprint(("rates",), {"rates": MarkupRates(tax_pct=Decimal("10"))})
    high = compute_input_fingerprint(("rates",), {"rates": MarkupRates(tax_pct=Decimal("21"))})
    assert low != high


def test_decorated_call_is_traced(captured_logs):
    @traced_engine("double", "1.0", fingerprint_fields=("value",))
    def double(*, value):
        return value * 2

    assert double(value=Decimal("2")) == Decimal("4")
    [trace] = [r for r in captured_logs() if r.get("engine_name") == "double"]
    assert trace["message"] == "COSTCONTROL_ENGINE_TRACE"
    assert trace["engine_version"] == "1.0"
    assert trace["input_fingerprint"] == compute_input_fingerprint(
        ("value",), {"value": Decimal("2")}
    )
