"""Money rounding helpers."""

from __future__ import annotations

from decimal import ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_UP, Decimal
from typing import Any

CENT = Decimal("0.01")
ZERO = Decimal("0")

_ROUNDING_MODES = {
    "nearest": ROUND_HALF_UP,
    "up": ROUND_CEILING,
    "down": ROUND_FLOOR,
}


def to_decimal(value: Any) -> Decimal:
    """Coerce a DB or JSON numeric to Decimal without float artefacts."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_money(amount: Decimal, increment: Decimal = CENT) -> Decimal:
    """Round half-up to the given currency increment (default one cent)."""
    if increment == CENT:
        return amount.quantize(CENT, rounding=ROUND_HALF_UP)
    steps = (amount / increment).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return (steps * increment).quantize(CENT, rounding=ROUND_HALF_UP)


def round_to_increment(value: Decimal, increment: Decimal, direction: str = "nearest") -> Decimal:
    """Round a quantity to a multiple of increment in the given direction."""
    if increment <= 0:
        raise ValueError("increment must be positive")
    steps = (value / increment).quantize(Decimal("1"), rounding=_ROUNDING_MODES[direction])
    return steps * increment
