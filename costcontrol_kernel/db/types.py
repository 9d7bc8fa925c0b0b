"""
Module: costcontrol_kernel.db.types
Responsibility: The sanctioned rounding and coercion helpers for money,
    quantities and percentages.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    engines, services/, and selectors/.  MUST NOT import from any of those.

Invariants enforced:
    - round_money() is the ONLY rounding primitive.  to_storage() is the
      single place derived values are brought to the stored precision, so
      the value a service computes is bit-identical to the value it reads
      back later.
    - No floats anywhere.  All amounts, quantities and percentages are
      Decimal.

Failure modes:
    - decimal.InvalidOperation if a value exceeds the 38-digit envelope.
"""

from decimal import ROUND_HALF_UP, Decimal

from costcontrol_kernel.db.base import STORAGE_DECIMAL_PLACES

DEFAULT_ROUNDING = ROUND_HALF_UP

ZERO = Decimal("0")
ONE_HUNDRED = Decimal("100")


def round_money(
    value: Decimal,
    decimal_places: int = 2,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a decimal value to the given number of places.

    Preconditions: value is a Decimal.
    Postconditions: Returns value quantized with the given rounding mode.
    """
    quantize_str = "0." + "0" * decimal_places if decimal_places > 0 else "1"
    return value.quantize(Decimal(quantize_str), rounding=rounding)


def to_storage(value: Decimal) -> Decimal:
    """Quantize a derived value to the stored precision (9 places)."""
    return round_money(value, STORAGE_DECIMAL_PLACES)


def as_decimal(value: Decimal | int | str) -> Decimal:
    """
    Coerce caller input to Decimal.

    Floats are refused: a binary float has already lost the exact value
    the caller meant.
    """
    if isinstance(value, float):
        raise TypeError("float values are not accepted; pass Decimal or str")
    if isinstance(value, Decimal):
        return value
    return Decimal(value)
