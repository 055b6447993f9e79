"""
Till (Caja) Lifecycle Service

WHY: A till is one cashier's accountability period across every currency.
All balance and inventory mutation is gated on the till being OPEN.

DESIGN PRINCIPLES:
- One OPEN till per operator, backed by a partial unique index
- Closed tills are terminal and immutable
- Every state change runs in one locked unit of work
- Opening balances and adjustments are recorded as movements
"""

from __future__ import annotations

from decimal import Decimal

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, OperationalError

from ..errors import (
    NoOpenTillError,
    PendingWorkError,
    TillAlreadyOpenError,
    TillBusyError,
    TillNotFoundError,
)
from ..extensions import db
from ..models import ExchangeTransaction, Till, TILL_CLOSED, TILL_OPEN, TX_STATUS_PENDING
from ..money import ZERO, to_money
from ..validation import (
    DIRECTION_IN,
    ValidationError,
    normalize_currency_code,
    validate_direction,
    validate_non_negative_amount,
    validate_positive_amount,
)
from caja.time_utils import utcnow
from . import balance_service, currency_service
from .concurrency import (
    bound_lock_wait,
    is_lock_error,
    lock_for_update,
    run_in_till_scope,
    run_with_retry,
    unit_of_work,
)


# =============================================================================
# LIFECYCLE
# =============================================================================

def open_till(
    operator_id: int,
    opening_balances: dict | None = None,
    note: str | None = None,
) -> Till:
    """
    Open a new till for an operator.

    Args:
        operator_id: Cashier opening the till
        opening_balances: currency code -> opening amount (missing codes start at zero)
        note: Optional opening note

    Raises:
        TillAlreadyOpenError: operator already has an OPEN till
        CurrencyNotFoundError: unknown currency code in opening_balances
        ValidationError: negative opening amount
        TillBusyError: lock not acquired within the bounded wait
    """
    seeds = {}
    for code, value in (opening_balances or {}).items():
        normalized = normalize_currency_code(code)
        if normalized in seeds:
            raise ValidationError(f"duplicate opening balance for {normalized}")
        seeds[normalized] = validate_non_negative_amount(value, f"opening balance {normalized}")
    if note is not None and len(note) > 255:
        raise ValidationError("note must be at most 255 characters")

    def _open() -> Till:
        with unit_of_work():
            bound_lock_wait()
            existing = lock_for_update(
                db.session.query(Till).filter_by(operator_id=operator_id, state=TILL_OPEN)
            ).first()
            if existing:
                raise TillAlreadyOpenError(f"Operator already has an open till (till {existing.id})")

            till = Till(
                operator_id=operator_id,
                state=TILL_OPEN,
                opened_at=utcnow(),
                accumulated_profit=ZERO,
                opening_note=note,
            )
            db.session.add(till)
            db.session.flush()

            for code, amount in seeds.items():
                currency = currency_service.get_currency(code)
                balance_service.seed_opening_balance(till, currency, amount)
                if amount > 0:
                    balance_service.record_movement(
                        till,
                        currency,
                        DIRECTION_IN,
                        amount,
                        balance_service.REASON_OPENING,
                        description="Opening balance",
                        actor_id=operator_id,
                    )
        return till

    try:
        till = run_with_retry(
            _open,
            attempts=current_app.config["LOCK_RETRY_ATTEMPTS"],
            backoff_base=current_app.config["LOCK_RETRY_BACKOFF"],
        )
    except IntegrityError as exc:
        # Lost the race against a concurrent open for the same operator
        raise TillAlreadyOpenError("Operator already has an open till") from exc
    except OperationalError as exc:
        if is_lock_error(exc):
            raise TillBusyError("Till is busy, retry the operation") from exc
        raise

    current_app.logger.info("Till %s opened by operator %s", till.id, operator_id)
    return till


def close_till(operator_id: int, closed_by: int | None = None) -> Till:
    """
    Close the operator's open till.

    IMMUTABLE: Once closed, the till cannot be reopened or modified.

    Raises:
        NoOpenTillError: operator has no OPEN till
        PendingWorkError: till still has PENDING transactions
    """
    def _close(till: Till) -> Till:
        pending = db.session.query(func.count(ExchangeTransaction.id)).filter(
            ExchangeTransaction.till_id == till.id,
            ExchangeTransaction.status == TX_STATUS_PENDING,
        ).scalar() or 0
        if pending:
            raise PendingWorkError(f"Cannot close till {till.id} with {pending} pending transaction(s)")

        till.state = TILL_CLOSED
        till.closed_at = utcnow()
        till.closed_by = closed_by if closed_by is not None else operator_id
        db.session.flush()
        return till

    till = run_in_till_scope(_close, operator_id=operator_id)
    current_app.logger.info(
        "Till %s closed by %s, accumulated profit %s", till.id, till.closed_by, to_money(till.accumulated_profit)
    )
    return till


def adjust_till(
    operator_id: int,
    currency_code: str,
    direction: str,
    amount,
    description: str,
):
    """
    Record a manual balance correction outside the buy/sell flow.

    delta = +amount for IN, -amount for OUT. Adjustments never drive a
    balance negative.

    Raises:
        NoOpenTillError: operator has no OPEN till
        InsufficientFundsError: OUT adjustment larger than the balance
    """
    direction = validate_direction(direction)
    amount = validate_positive_amount(amount)
    description = (description or "").strip()
    if not description:
        raise ValidationError("description is required")
    if len(description) > 255:
        raise ValidationError("description must be at most 255 characters")

    def _adjust(till: Till):
        currency = currency_service.get_currency(currency_code)
        signed = amount if direction == DIRECTION_IN else -amount
        return balance_service.post(
            till,
            currency,
            signed,
            balance_service.REASON_ADJUSTMENT,
            description=description,
            actor_id=operator_id,
        )

    movement = run_in_till_scope(_adjust, operator_id=operator_id)
    current_app.logger.info(
        "Till %s adjusted: %s %s %s (%s)", movement.till_id, direction, amount, currency_code, description
    )
    return movement


# =============================================================================
# READS
# =============================================================================

def get_till(till_id: int) -> Till:
    till = db.session.get(Till, till_id)
    if till is None:
        raise TillNotFoundError(f"Till {till_id} not found")
    return till


def get_open_till(operator_id: int) -> Till | None:
    """The operator's OPEN till, if any."""
    return db.session.query(Till).filter_by(
        operator_id=operator_id,
        state=TILL_OPEN,
    ).first()


def require_open_till(operator_id: int) -> Till:
    till = get_open_till(operator_id)
    if till is None:
        raise NoOpenTillError("No open till for this operator")
    return till


def get_last_closed_till(operator_id: int) -> Till | None:
    return db.session.query(Till).filter_by(
        operator_id=operator_id,
        state=TILL_CLOSED,
    ).order_by(Till.closed_at.desc(), Till.id.desc()).first()


def list_tills(operator_id: int) -> list[Till]:
    return db.session.query(Till).filter_by(operator_id=operator_id).order_by(Till.id.desc()).all()


def operator_till_ids(operator_id: int, *, include_closed: bool = False) -> list[int]:
    query = db.session.query(Till.id).filter(Till.operator_id == operator_id)
    if not include_closed:
        query = query.filter(Till.state == TILL_OPEN)
    return [row.id for row in query.all()]


def get_profit(operator_id: int, *, include_closed: bool = False) -> Decimal:
    """Accumulated profit of the operator's open till, or of all their tills."""
    query = db.session.query(func.coalesce(func.sum(Till.accumulated_profit), 0)).filter(
        Till.operator_id == operator_id
    )
    if not include_closed:
        query = query.filter(Till.state == TILL_OPEN)
    return to_money(query.scalar() or 0)
