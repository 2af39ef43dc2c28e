"""Amount conversion helpers using fixed micro-unit precision."""

from __future__ import annotations

from decimal import Context, Decimal, ROUND_CEILING, ROUND_FLOOR


MICROS_PER_UNIT = 1_000_000
_UNIT_QUANT = Decimal("0.000001")

# Wide enough for any finite float quantized to six places.
_CTX = Context(prec=400)


def amount_to_micros(value: Decimal | float | int | str) -> int:
    """Convert a spend amount to micro-units, rounding up (conservative)."""
    dec = Decimal(str(value)).quantize(_UNIT_QUANT, rounding=ROUND_CEILING, context=_CTX)
    return int(_CTX.multiply(dec, MICROS_PER_UNIT))


def limit_to_micros(value: Decimal | float | int | str) -> int:
    """Convert a budget limit to micro-units, rounding down (conservative)."""
    dec = Decimal(str(value)).quantize(_UNIT_QUANT, rounding=ROUND_FLOOR, context=_CTX)
    return int(_CTX.multiply(dec, MICROS_PER_UNIT))


def micros_to_decimal(value: int) -> Decimal:
    return _CTX.divide(Decimal(value), Decimal(MICROS_PER_UNIT)).quantize(_UNIT_QUANT, context=_CTX)


def micros_to_float(value: int) -> float:
    """Convert integer micro-units to a float amount (for JSON and display)."""
    return float(micros_to_decimal(value))


def format_amount(value: int) -> str:
    """Render micro-units without trailing zeros: 10000000 -> '10', 2500000 -> '2.5'."""
    return format(micros_to_decimal(value).normalize(_CTX), "f")
