# Overview: Business-level input checks the core re-runs after the API validation layer.

from __future__ import annotations

import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from flask import current_app

from .errors import CajaError
from .money import to_money, to_rate


CURRENCY_CODE_RE = re.compile(r"^[A-Z]{3}$")

TX_BUY = "BUY"
TX_SELL = "SELL"
TX_TYPES = (TX_BUY, TX_SELL)

DIRECTION_IN = "IN"
DIRECTION_OUT = "OUT"
DIRECTIONS = (DIRECTION_IN, DIRECTION_OUT)


class ValidationError(CajaError, ValueError):
    """400-level input problem."""
    kind = "VALIDATION"


def parse_decimal(value: Any, field: str) -> Decimal:
    """
    Coerce API input to Decimal.

    Floats go through str() so 3.5 becomes Decimal("3.5"), not its binary
    expansion. Booleans, NaN and infinities are rejected.
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float)):
        result = Decimal(str(value))
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be a number")
        try:
            result = Decimal(stripped)
        except InvalidOperation:
            raise ValidationError(f"{field} must be a number")
    else:
        raise ValidationError(f"{field} must be a number")

    if not result.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    return result


def validate_positive_amount(value: Any, field: str = "amount") -> Decimal:
    """Amounts are kept in cents; a positive value below half a cent is refused too."""
    raw = parse_decimal(value, field)
    if raw <= 0:
        raise ValidationError(f"{field} must be greater than zero")
    amount = to_money(raw)
    if amount <= 0:
        raise ValidationError(f"{field} {raw} rounds to zero at two decimals")
    return amount


def validate_non_negative_amount(value: Any, field: str = "amount") -> Decimal:
    amount = to_money(parse_decimal(value, field))
    if amount < 0:
        raise ValidationError(f"{field} cannot be negative")
    return amount


def validate_positive_rate(value: Any, field: str = "rate") -> Decimal:
    rate = to_rate(parse_decimal(value, field))
    if rate <= 0:
        raise ValidationError(f"{field} must be greater than zero")
    return rate


def validate_reference_rate(value: Any, field: str) -> Decimal:
    """Reference rates and base costs must sit inside the configured trading range."""
    rate = validate_positive_rate(value, field)
    low = current_app.config["RATE_MIN"]
    high = current_app.config["RATE_MAX"]
    if rate < low or rate > high:
        raise ValidationError(f"{field} must be between {low} and {high}")
    return rate


def normalize_currency_code(code: Any) -> str:
    if not isinstance(code, str):
        raise ValidationError("currency code must be a string")
    normalized = code.strip().upper()
    if not CURRENCY_CODE_RE.match(normalized):
        raise ValidationError(f"invalid currency code '{code}' (expected 3 letters)")
    return normalized


def validate_tx_type(value: Any) -> str:
    tx_type = str(value or "").strip().upper()
    if tx_type not in TX_TYPES:
        raise ValidationError(f"type must be one of {', '.join(TX_TYPES)}")
    return tx_type


def validate_direction(value: Any) -> str:
    direction = str(value or "").strip().upper()
    if direction not in DIRECTIONS:
        raise ValidationError(f"direction must be one of {', '.join(DIRECTIONS)}")
    return direction


def parse_date(value: Any, field: str) -> date:
    """Accept a date, a datetime (its date part) or a 'YYYY-MM-DD' string."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return datetime.strptime(value.strip(), "%Y-%m-%d").date()
        except ValueError:
            pass
    raise ValidationError(f"{field} must be a date in YYYY-MM-DD format")
