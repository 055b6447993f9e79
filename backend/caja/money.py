# Overview: Decimal quantization helpers shared by the ledger and costing code.

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP

CENT = Decimal("0.01")
RATE_QUANTUM = Decimal("0.0001")
COST_QUANTUM = Decimal("0.000001")
ZERO = Decimal("0")


def as_decimal(value) -> Decimal:
    """Floats (e.g. SQLite aggregates) go through str() to avoid binary noise."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def to_money(value) -> Decimal:
    """Round to cents, half-up."""
    return as_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def to_rate(value) -> Decimal:
    return as_decimal(value).quantize(RATE_QUANTUM, rounding=ROUND_HALF_UP)


def to_unit_cost(value) -> Decimal:
    return as_decimal(value).quantize(COST_QUANTUM, rounding=ROUND_HALF_UP)


def fmt_money(value) -> str | None:
    """Decimal string with two places, for JSON payloads."""
    if value is None:
        return None
    return str(to_money(value))
