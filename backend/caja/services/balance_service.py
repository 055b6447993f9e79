# Overview: Service-layer operations for till balances and the movement log.

from __future__ import annotations

from collections import defaultdict
from decimal import Decimal

from flask import current_app

from ..errors import InsufficientFundsError
from ..extensions import db
from ..models import Currency, Till, TillBalance, TillMovement
from ..money import ZERO, to_money
from ..validation import DIRECTION_IN, DIRECTION_OUT
from caja.time_utils import utcnow
"""
Caja Balance Ledger Invariants (authoritative)

- One TillBalance per (till, currency), created zeroed on first touch.
- current_amount only changes through apply_delta, inside the caller's unit
  of work; this module flushes but never commits.
- Every balance-affecting delta is mirrored by exactly one movement with
  affects_balance=True, so per currency:
      current_amount == SUM(+amount for IN, -amount for OUT)
- Movements are append-only (no updates/deletes).
- Negative results are refused unless the caller opts in with
  allow_negative, in which case the shortfall is logged as a warning.
"""

REASON_OPENING = "APERTURA"
REASON_BUY = "COMPRA"
REASON_SELL = "VENTA"
REASON_PROFIT = "UTILIDAD"
REASON_LOSS = "PERDIDA"
REASON_ADJUSTMENT = "AJUSTE"


def get_balance(till: Till, currency: Currency) -> TillBalance:
    """Return the till's balance row for a currency, creating a zeroed one if missing."""
    balance = db.session.query(TillBalance).filter_by(
        till_id=till.id,
        currency_id=currency.id,
    ).first()
    if balance is None:
        balance = TillBalance(
            till_id=till.id,
            currency_id=currency.id,
            opening_amount=ZERO,
            current_amount=ZERO,
        )
        db.session.add(balance)
        db.session.flush()
    return balance


def seed_opening_balance(till: Till, currency: Currency, amount: Decimal) -> TillBalance:
    """Set opening and current amounts for a freshly opened till."""
    balance = get_balance(till, currency)
    balance.opening_amount = to_money(amount)
    balance.current_amount = to_money(amount)
    db.session.flush()
    return balance


def apply_delta(
    till: Till,
    currency: Currency,
    signed_amount: Decimal,
    *,
    allow_negative: bool = False,
) -> TillBalance:
    """
    Add a signed delta to the till's balance in `currency`.

    Raises:
        InsufficientFundsError: result would be negative and allow_negative
            is not set
    """
    balance = get_balance(till, currency)
    current = Decimal(balance.current_amount)
    new_amount = to_money(current + Decimal(signed_amount))

    if new_amount < 0:
        if not allow_negative:
            raise InsufficientFundsError(
                f"Insufficient {currency.code} balance: {to_money(current)} available, "
                f"{to_money(-Decimal(signed_amount))} required"
            )
        current_app.logger.warning(
            "Balance of %s in till %s goes negative (%s); allowed by policy",
            currency.code, till.id, new_amount,
        )

    balance.current_amount = new_amount
    db.session.flush()
    return balance


def record_movement(
    till: Till,
    currency: Currency,
    direction: str,
    amount: Decimal,
    reason: str,
    *,
    description: str | None = None,
    actor_id: int | None = None,
    transaction_id: int | None = None,
    affects_balance: bool = True,
) -> TillMovement:
    """Append one immutable movement. amount is the absolute value."""
    if direction not in (DIRECTION_IN, DIRECTION_OUT):
        raise ValueError(f"invalid direction {direction!r}")

    movement = TillMovement(
        till_id=till.id,
        currency_id=currency.id,
        transaction_id=transaction_id,
        direction=direction,
        amount=to_money(abs(Decimal(amount))),
        reason=reason,
        description=description,
        affects_balance=affects_balance,
        actor_id=actor_id,
        occurred_at=utcnow(),
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def post(
    till: Till,
    currency: Currency,
    signed_amount: Decimal,
    reason: str,
    *,
    description: str | None = None,
    actor_id: int | None = None,
    transaction_id: int | None = None,
    allow_negative: bool = False,
) -> TillMovement:
    """
    Apply a balance delta and its mirroring movement in one step.

    WHY: Keeping both writes behind one call is what guarantees the movement
    log never drifts from the balances.
    """
    apply_delta(till, currency, signed_amount, allow_negative=allow_negative)
    direction = DIRECTION_IN if Decimal(signed_amount) >= 0 else DIRECTION_OUT
    return record_movement(
        till,
        currency,
        direction,
        abs(Decimal(signed_amount)),
        reason,
        description=description,
        actor_id=actor_id,
        transaction_id=transaction_id,
    )


# =============================================================================
# READS
# =============================================================================

def list_balances(till: Till) -> list[TillBalance]:
    return (
        db.session.query(TillBalance)
        .join(Currency, Currency.id == TillBalance.currency_id)
        .filter(TillBalance.till_id == till.id)
        .order_by(Currency.code)
        .all()
    )


def balances_by_code(till: Till) -> dict[str, dict[str, Decimal]]:
    """Every registered currency, zero when the till never touched it."""
    result = {
        currency.code: {"opening": ZERO, "current": ZERO}
        for currency in db.session.query(Currency).order_by(Currency.code).all()
    }
    for balance in list_balances(till):
        result[balance.currency.code] = {
            "opening": to_money(balance.opening_amount),
            "current": to_money(balance.current_amount),
        }
    return result


def list_movements(till_ids: list[int], *, limit: int = 50) -> list[TillMovement]:
    if not till_ids:
        return []
    return (
        db.session.query(TillMovement)
        .filter(TillMovement.till_id.in_(till_ids))
        .order_by(TillMovement.occurred_at.desc(), TillMovement.id.desc())
        .limit(limit)
        .all()
    )


def movement_totals(till: Till) -> dict[str, Decimal]:
    """Signed per-currency sums of balance-affecting movements."""
    totals: dict[str, Decimal] = defaultdict(lambda: ZERO)
    rows = (
        db.session.query(TillMovement)
        .filter(TillMovement.till_id == till.id, TillMovement.affects_balance.is_(True))
        .all()
    )
    for movement in rows:
        totals[movement.currency.code] += Decimal(movement.signed_amount)
    return {code: to_money(total) for code, total in totals.items()}
