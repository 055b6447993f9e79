# Overview: Service-layer operations for exchange transactions; the BUY/SELL engine.

"""
Transaction Engine

WHY: A BUY or SELL touches four things at once: the lot inventory, two
balances, the movement log and the till's accumulated profit. They must all
change together or not at all.

FLOW (record_transaction):
1. Shape checks, no lock held: type, amount, rate, commission, known currency
2. Lock the till (run_in_till_scope); it must be OPEN before anything else
   about the request is judged
   - currency is foreign
   - claimed home total matches round(amount * rate, 2)
3. Rate sanity against the registry reference for this direction
4. Customer required above the large-transaction threshold
5. BUY: new lot at unit_cost = rate; home -total (hard block), foreign +amount
6. SELL: FIFO consumption, uncovered remainder valued at the fallback cost;
   home +total, foreign -amount (negative allowed with a warning);
   profit added to the till
7. Movements for both legs, plus a profit/loss memo for SELL
8. Transaction row persisted; the unit commits once

Duplicate submissions create duplicate transactions (receipts are not
idempotent).
"""

from __future__ import annotations

from decimal import Decimal

from flask import current_app

from ..errors import (
    CustomerRequiredError,
    InconsistentTotalError,
    RateOutOfRangeError,
    TransactionNotFoundError,
)
from ..extensions import db
from ..models import Currency, ExchangeTransaction, Till, TX_STATUS_COMPLETED
from ..money import ZERO, to_money, to_unit_cost
from ..validation import (
    DIRECTION_IN,
    DIRECTION_OUT,
    TX_BUY,
    TX_SELL,
    ValidationError,
    parse_decimal,
    validate_non_negative_amount,
    validate_positive_amount,
    validate_positive_rate,
    validate_tx_type,
)
from caja.time_utils import utcnow
from . import balance_service, currency_service, inventory_service, till_service
from .concurrency import run_in_till_scope


def compute_home_total(amount: Decimal, rate: Decimal) -> Decimal:
    """home_total = round(amount * rate, 2), half-up."""
    return to_money(Decimal(amount) * Decimal(rate))


def _check_claimed_total(computed: Decimal, claimed) -> None:
    claimed_total = parse_decimal(claimed, "home_total")
    tolerance = current_app.config["TOTAL_TOLERANCE"]
    if abs(computed - claimed_total) > tolerance:
        raise InconsistentTotalError(
            f"Inconsistent home total {claimed_total}; computed {computed}"
        )


def _check_rate(currency: Currency, tx_type: str, rate: Decimal) -> None:
    reference = currency_service.reference_rate(currency, tx_type)
    tolerance = current_app.config["RATE_TOLERANCE"]
    if abs(rate - reference) > tolerance:
        current_app.logger.warning(
            "Rate out of range for %s %s: %s vs reference %s", tx_type, currency.code, rate, reference
        )
        raise RateOutOfRangeError(
            f"Rate {rate} out of range for {tx_type} {currency.code}; suggested {reference}"
        )


def _check_customer(home_total: Decimal, customer_id: int | None) -> None:
    threshold = current_app.config["LARGE_TRANSACTION_THRESHOLD"]
    if home_total > threshold and customer_id is None:
        raise CustomerRequiredError(
            f"Customer required for transactions above {to_money(threshold)}"
        )


def _describe(tx: ExchangeTransaction, currency: Currency, leg: str) -> str:
    return f"{leg}: {tx.type} {currency.code} (tx #{tx.id})"


# =============================================================================
# RECORDING
# =============================================================================

def record_transaction(
    operator_id: int,
    tx_type: str,
    currency_code: str,
    amount,
    rate,
    home_total,
    *,
    customer_id: int | None = None,
    commission=0,
    till_id: int | None = None,
) -> ExchangeTransaction:
    """
    Record a BUY or SELL against the operator's till.

    Args:
        operator_id: Cashier recording the transaction
        tx_type: "BUY" (business receives foreign currency) or "SELL"
        currency_code: Foreign currency code
        amount: Foreign-currency units
        rate: Applied rate, home units per foreign unit
        home_total: Home total claimed by the caller
        customer_id: Required above LARGE_TRANSACTION_THRESHOLD
        commission: Informational, non-negative
        till_id: Specific till; defaults to the operator's open till

    Raises:
        ValidationError: malformed input, before any lock
        CurrencyNotFoundError: unknown currency, before any lock
        NoOpenTillError, TillNotFoundError, TillClosedError
        ValidationError: home currency given (till checked first)
        InconsistentTotalError: claimed total off (till checked first)
        RateOutOfRangeError, CustomerRequiredError
        InsufficientFundsError: BUY without enough home currency
        TillBusyError, TillConflictError
    """
    tx_type = validate_tx_type(tx_type)
    amount = validate_positive_amount(amount)
    rate = validate_positive_rate(rate)
    commission = validate_non_negative_amount(commission, "commission")

    currency = currency_service.get_currency(currency_code)
    currency_id = currency.id
    computed_total = compute_home_total(amount, rate)

    current_app.logger.info(
        "Recording %s %s %s @ %s (total %s) for operator %s",
        tx_type, amount, currency.code, rate, computed_total, operator_id,
    )

    def _record(till: Till) -> ExchangeTransaction:
        foreign = db.session.get(Currency, currency_id)
        home_currency = currency_service.get_home_currency()
        if foreign.id == home_currency.id:
            raise ValidationError(
                f"Cannot {tx_type} the home currency {home_currency.code}; use a till adjustment"
            )
        _check_claimed_total(computed_total, home_total)
        _check_rate(foreign, tx_type, rate)
        _check_customer(computed_total, customer_id)

        if tx_type == TX_BUY:
            return _record_buy(till, foreign, home_currency, operator_id, amount, rate,
                               computed_total, commission, customer_id)
        return _record_sell(till, foreign, home_currency, operator_id, amount, rate,
                            computed_total, commission, customer_id)

    tx = run_in_till_scope(_record, till_id=till_id, operator_id=operator_id)
    current_app.logger.info(
        "Transaction %s recorded in till %s (profit %s)", tx.id, tx.till_id, tx.realized_profit
    )
    return tx


def _insert_transaction(till: Till, currency: Currency, tx_type: str, operator_id: int, amount: Decimal,
                        rate: Decimal, home_total: Decimal, commission: Decimal,
                        customer_id: int | None, **costing) -> ExchangeTransaction:
    tx = ExchangeTransaction(
        till_id=till.id,
        currency_id=currency.id,
        type=tx_type,
        status=TX_STATUS_COMPLETED,
        amount=amount,
        rate=rate,
        home_total=home_total,
        commission=commission,
        customer_id=customer_id,
        operator_id=operator_id,
        created_at=utcnow(),
        **costing,
    )
    db.session.add(tx)
    db.session.flush()
    return tx


def _record_buy(till, foreign, home, operator_id, amount, rate, home_total, commission, customer_id):
    tx = _insert_transaction(till, foreign, TX_BUY, operator_id, amount, rate, home_total,
                             commission, customer_id)

    inventory_service.add_lot(foreign, till, amount, rate, source_transaction_id=tx.id)

    # Paying out home currency we do not hold is a hard error
    balance_service.post(
        till, home, -home_total, balance_service.REASON_BUY,
        description=_describe(tx, foreign, "Paid to customer"),
        actor_id=operator_id, transaction_id=tx.id,
    )
    balance_service.post(
        till, foreign, amount, balance_service.REASON_BUY,
        description=_describe(tx, foreign, "Received from customer"),
        actor_id=operator_id, transaction_id=tx.id,
    )
    return tx


def _record_sell(till, foreign, home, operator_id, amount, rate, home_total, commission, customer_id):
    consumption = inventory_service.consume_fifo(foreign, till, amount)

    uncovered = max(consumption.unsatisfied, ZERO)
    realized_cost = consumption.total_cost
    if uncovered > 0:
        fallback = currency_service.fallback_unit_cost(foreign)
        current_app.logger.warning(
            "Valuing %s %s not covered by inventory at fallback cost %s", uncovered, foreign.code, fallback
        )
        realized_cost += uncovered * fallback

    profit = to_money(home_total - realized_cost)
    if profit < 0:
        current_app.logger.warning(
            "Negative profit on SELL %s %s @ %s: %s", amount, foreign.code, rate, profit
        )

    weighted = consumption.weighted_unit_cost
    tx = _insert_transaction(
        till, foreign, TX_SELL, operator_id, amount, rate, home_total, commission, customer_id,
        unit_cost=to_unit_cost(weighted) if weighted is not None else None,
        uncovered_amount=to_money(uncovered),
        realized_cost=to_money(realized_cost),
        realized_profit=profit,
    )

    balance_service.post(
        till, home, home_total, balance_service.REASON_SELL,
        description=_describe(tx, foreign, "Received from customer"),
        actor_id=operator_id, transaction_id=tx.id,
    )
    # Selling more than the drawer holds is allowed and only logged
    balance_service.post(
        till, foreign, -amount, balance_service.REASON_SELL,
        description=_describe(tx, foreign, "Delivered to customer"),
        actor_id=operator_id, transaction_id=tx.id, allow_negative=True,
    )

    # Memo only; the profit is already inside the home leg
    balance_service.record_movement(
        till,
        home,
        DIRECTION_IN if profit >= 0 else DIRECTION_OUT,
        abs(profit),
        balance_service.REASON_PROFIT if profit >= 0 else balance_service.REASON_LOSS,
        description=f"{_describe(tx, foreign, 'Profit' if profit >= 0 else 'Loss')} ({profit:+})",
        actor_id=operator_id,
        transaction_id=tx.id,
        affects_balance=False,
    )

    till.accumulated_profit = to_money(Decimal(till.accumulated_profit or 0) + profit)
    db.session.flush()
    return tx


# =============================================================================
# READS
# =============================================================================

def get_transaction(tx_id: int, operator_id: int | None = None) -> ExchangeTransaction:
    """Receipt lookup; scoped to the operator when one is given."""
    query = db.session.query(ExchangeTransaction).filter(ExchangeTransaction.id == tx_id)
    if operator_id is not None:
        query = query.filter(ExchangeTransaction.operator_id == operator_id)
    tx = query.first()
    if tx is None:
        raise TransactionNotFoundError(f"Transaction {tx_id} not found")
    return tx


def list_transactions(
    operator_id: int,
    *,
    include_closed: bool = False,
    limit: int = 50,
    offset: int = 0,
) -> list[ExchangeTransaction]:
    """Newest first; only the open till unless include_closed."""
    if limit < 1 or limit > 100:
        raise ValidationError("limit must be between 1 and 100")
    if offset < 0:
        raise ValidationError("offset cannot be negative")

    till_ids = till_service.operator_till_ids(operator_id, include_closed=include_closed)
    if not till_ids:
        return []
    return (
        db.session.query(ExchangeTransaction)
        .filter(ExchangeTransaction.till_id.in_(till_ids))
        .order_by(ExchangeTransaction.created_at.desc(), ExchangeTransaction.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
