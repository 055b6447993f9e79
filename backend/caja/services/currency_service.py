# Overview: Service-layer operations for the currency registry; reference rates and fallback valuation.

"""
Currency Registry

WHY: Static reference data consumed by the transaction engine: rate sanity
checks compare applied rates against these references, and sells that
inventory cannot cover are valued at the fallback unit cost.

DESIGN PRINCIPLES:
- The home currency is an explicit flag, never a magic id
- Reference rates stay inside the configured trading range
- Currencies referenced by any ledger row are never deleted
- The reference-rate feed is pull-only; failures keep the last-known rates
"""

from __future__ import annotations

from decimal import Decimal

from flask import current_app
from sqlalchemy import func

from ..errors import CurrencyInUseError, CurrencyNotFoundError, HomeCurrencyMissingError
from ..extensions import db
from ..models import Currency, ExchangeTransaction, InventoryLot, TillBalance, TillMovement
from ..validation import (
    TX_BUY,
    ValidationError,
    normalize_currency_code,
    validate_reference_rate,
)
from caja.time_utils import utcnow


FALLBACK_BUY_RATE = "BUY_RATE"
FALLBACK_BASE_COST = "BASE_COST"


# =============================================================================
# LOOKUPS
# =============================================================================

def get_currency(code: str, *, lock: bool = False) -> Currency:
    """Get a currency by code, raising CurrencyNotFoundError if unknown."""
    normalized = normalize_currency_code(code)
    query = db.session.query(Currency).filter_by(code=normalized)
    if lock:
        query = query.with_for_update()
    currency = query.first()
    if currency is None:
        raise CurrencyNotFoundError(f"Currency {normalized} not found")
    return currency


def list_currencies() -> list[Currency]:
    return db.session.query(Currency).order_by(Currency.code).all()


def get_home_currency() -> Currency:
    """
    Resolve the home currency.

    The row flagged is_home wins; otherwise the configured HOME_CURRENCY_CODE.
    """
    currency = db.session.query(Currency).filter_by(is_home=True).first()
    if currency is not None:
        return currency

    code = current_app.config["HOME_CURRENCY_CODE"]
    currency = db.session.query(Currency).filter_by(code=code).first()
    if currency is None:
        raise HomeCurrencyMissingError(f"Home currency {code} is not registered")
    return currency


def reference_rate(currency: Currency, tx_type: str) -> Decimal:
    """The business buys foreign currency at buy_rate and sells it at sell_rate."""
    return Decimal(currency.buy_rate if tx_type == TX_BUY else currency.sell_rate)


def fallback_unit_cost(currency: Currency) -> Decimal:
    """
    Unit cost used for sell amounts the inventory cannot cover.

    FALLBACK_COST_SOURCE=BASE_COST prefers the configured base cost and
    still falls back to the buy rate when none is set.
    """
    source = current_app.config["FALLBACK_COST_SOURCE"]
    if source == FALLBACK_BASE_COST and currency.base_cost is not None:
        return Decimal(currency.base_cost)
    return Decimal(currency.buy_rate)


# =============================================================================
# ADMIN OPERATIONS
# =============================================================================

def create_currency(
    code: str,
    name: str,
    buy_rate,
    sell_rate,
    base_cost=None,
    *,
    is_home: bool = False,
) -> Currency:
    """
    Register a new currency.

    Raises:
        ValidationError: duplicate code, bad rates, or a second home currency
    """
    normalized = normalize_currency_code(code)
    name = (name or "").strip()
    if len(name) < 3:
        raise ValidationError("name must be at least 3 characters")

    buy = validate_reference_rate(buy_rate, "buy_rate")
    sell = validate_reference_rate(sell_rate, "sell_rate")
    cost = validate_reference_rate(base_cost, "base_cost") if base_cost is not None else None

    if db.session.query(Currency).filter_by(code=normalized).first():
        raise ValidationError(f"Currency {normalized} already exists")

    if is_home and db.session.query(Currency).filter_by(is_home=True).first():
        raise ValidationError("A home currency is already registered")

    currency = Currency(
        code=normalized,
        name=name,
        buy_rate=buy,
        sell_rate=sell,
        base_cost=cost,
        is_home=is_home,
        rates_updated_at=utcnow(),
    )
    db.session.add(currency)
    db.session.commit()

    current_app.logger.info("Currency created: %s buy=%s sell=%s base_cost=%s", normalized, buy, sell, cost)
    return currency


def update_rates(code: str, buy_rate, sell_rate, base_cost=None) -> Currency:
    """Replace reference rates; base_cost is only touched when given."""
    buy = validate_reference_rate(buy_rate, "buy_rate")
    sell = validate_reference_rate(sell_rate, "sell_rate")
    cost = validate_reference_rate(base_cost, "base_cost") if base_cost is not None else None

    currency = get_currency(code, lock=True)
    currency.buy_rate = buy
    currency.sell_rate = sell
    if cost is not None:
        currency.base_cost = cost
    currency.rates_updated_at = utcnow()
    db.session.commit()

    current_app.logger.info("Currency rates updated: %s buy=%s sell=%s", currency.code, buy, sell)
    return currency


def _reference_count(currency_id: int) -> int:
    total = 0
    for model in (ExchangeTransaction, InventoryLot, TillBalance, TillMovement):
        total += db.session.query(func.count(model.id)).filter(model.currency_id == currency_id).scalar() or 0
    return total


def delete_currency(code: str) -> None:
    """
    Delete a currency nothing references.

    Raises:
        CurrencyInUseError: home currency, or referenced by transactions,
            lots, balances or movements
    """
    currency = get_currency(code, lock=True)

    if currency.is_home:
        raise CurrencyInUseError(f"Home currency {currency.code} cannot be deleted")

    if _reference_count(currency.id):
        raise CurrencyInUseError(f"Currency {currency.code} is referenced by ledger records")

    db.session.delete(currency)
    db.session.commit()
    current_app.logger.info("Currency deleted: %s", currency.code)


# =============================================================================
# REFERENCE-RATE FEED
# =============================================================================

def refresh_rates(feed) -> dict[str, str]:
    """
    Pull current reference rates from an external feed.

    feed.get_rates(code) returns (buy_rate, sell_rate) or None. A failing or
    missing quote keeps the last-known rates; the feed never blocks a
    transaction because nothing in the transaction path calls it.

    Returns:
        code -> "updated" | "kept"
    """
    outcome: dict[str, str] = {}
    for currency in list_currencies():
        if currency.is_home:
            continue
        try:
            quote = feed.get_rates(currency.code)
            if quote is None:
                raise LookupError("no quote")
            buy, sell = quote
            buy = validate_reference_rate(buy, "buy_rate")
            sell = validate_reference_rate(sell, "sell_rate")
        except Exception as exc:
            current_app.logger.warning(
                "Rate feed failed for %s, keeping last-known rates: %s", currency.code, exc
            )
            outcome[currency.code] = "kept"
            continue

        currency.buy_rate = buy
        currency.sell_rate = sell
        currency.rates_updated_at = utcnow()
        outcome[currency.code] = "updated"

    db.session.commit()
    return outcome
