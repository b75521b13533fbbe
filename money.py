"""Currency rounding shared by every invoice and integrity calculation."""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

CENT = Decimal("0.01")


def round2(value: float) -> float:
    """Round half-up to cents.

    Goes through the shortest repr of the float, so 10.005 is treated as the
    decimal 10.005 (-> 10.01) rather than its binary neighbour 10.00499...
    """
    return float(Decimal(repr(float(value))).quantize(CENT, rounding=ROUND_HALF_UP))


def to_amount(value: Any, default: float = 0.0) -> float:
    """Best-effort numeric coercion for loosely typed stored amounts."""
    if value is None or isinstance(value, bool):
        return default
    try:
        return float(Decimal(str(value)))
    except (InvalidOperation, ValueError):
        return default
