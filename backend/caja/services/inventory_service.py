# Overview: Service-layer operations for the foreign-currency lot inventory.

# backend/caja/services/inventory_service.py

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Currency, InventoryLot, Till
from ..money import ZERO, as_decimal, to_money, to_unit_cost
from caja.time_utils import utcnow
"""
Caja Lot Inventory Invariants (authoritative)

Lot model:
- Every BUY appends one lot (amount @ unit_cost) scoped to its till.
- Lots are never merged: each one is a cost layer.
- A lot's amount only decreases; available == (amount > 0).
- Consumed lots stay in the table with amount=0 for audit.

Consumption:
- FIFO: oldest acquired_at first, id breaks ties.
- Each lot gives min(remaining, still_needed).
- Weighted cost is computed over the lots actually touched:
    sum(consumed_i * unit_cost_i) / sum(consumed_i)
- Running short is not an error; the caller values the remainder.

Consumption only happens inside a till unit of work (see concurrency).
"""


@dataclass
class LotDraw:
    lot_id: int
    amount: Decimal
    unit_cost: Decimal


@dataclass
class FifoConsumption:
    requested: Decimal
    consumed: Decimal = ZERO
    total_cost: Decimal = ZERO
    draws: list[LotDraw] = field(default_factory=list)

    @property
    def unsatisfied(self) -> Decimal:
        return self.requested - self.consumed

    @property
    def fully_covered(self) -> bool:
        return self.unsatisfied <= 0

    @property
    def weighted_unit_cost(self) -> Decimal | None:
        if self.consumed <= 0:
            return None
        return self.total_cost / self.consumed


def add_lot(
    currency: Currency,
    till: Till,
    amount: Decimal,
    unit_cost: Decimal,
    *,
    source_transaction_id: int | None = None,
) -> InventoryLot:
    """Append a new cost layer. Flushes, never commits."""
    if amount <= 0:
        raise ValueError("lot amount must be positive")
    if unit_cost <= 0:
        raise ValueError("lot unit cost must be positive")

    lot = InventoryLot(
        currency_id=currency.id,
        till_id=till.id,
        original_amount=to_money(amount),
        amount=to_money(amount),
        unit_cost=to_unit_cost(unit_cost),
        available=True,
        acquired_at=utcnow(),
        source_transaction_id=source_transaction_id,
    )
    db.session.add(lot)
    db.session.flush()
    return lot


def _available_lots_query(currency_id: int, till_id: int):
    return db.session.query(InventoryLot).filter(
        InventoryLot.currency_id == currency_id,
        InventoryLot.till_id == till_id,
        InventoryLot.available.is_(True),
    )


def consume_fifo(currency: Currency, till: Till, amount: Decimal) -> FifoConsumption:
    """
    Consume `amount` units from the till's lots of `currency`, oldest first.

    Mutates lot rows in the current session; the caller's unit of work
    commits or rolls them back together with the rest of the sale.
    """
    if amount <= 0:
        raise ValueError("consumption amount must be positive")

    result = FifoConsumption(requested=Decimal(amount))
    lots = (
        _available_lots_query(currency.id, till.id)
        .order_by(InventoryLot.acquired_at.asc(), InventoryLot.id.asc())
        .all()
    )

    for lot in lots:
        needed = result.unsatisfied
        if needed <= 0:
            break

        remaining = Decimal(lot.amount)
        used = min(remaining, needed)
        if used <= 0:
            continue

        unit_cost = Decimal(lot.unit_cost)
        lot.amount = remaining - used
        if lot.amount <= 0:
            lot.available = False

        result.consumed += used
        result.total_cost += used * unit_cost
        result.draws.append(LotDraw(lot_id=lot.id, amount=used, unit_cost=unit_cost))

        current_app.logger.info(
            "Consumed lot %s: %s %s @ %s (remaining %s)",
            lot.id, used, currency.code, unit_cost, lot.amount,
        )

    db.session.flush()

    if not result.fully_covered:
        current_app.logger.warning(
            "Inventory short for %s in till %s: requested %s, available %s",
            currency.code, till.id, result.requested, result.consumed,
        )
    return result


def available_quantity(currency: Currency, till: Till) -> Decimal:
    total = (
        db.session.query(func.coalesce(func.sum(InventoryLot.amount), 0))
        .filter(
            InventoryLot.currency_id == currency.id,
            InventoryLot.till_id == till.id,
            InventoryLot.available.is_(True),
        )
        .scalar()
    )
    return to_money(total or 0)


def list_lots(till: Till, currency: Currency | None = None, *, only_available: bool = False) -> list[InventoryLot]:
    query = db.session.query(InventoryLot).filter(InventoryLot.till_id == till.id)
    if currency is not None:
        query = query.filter(InventoryLot.currency_id == currency.id)
    if only_available:
        query = query.filter(InventoryLot.available.is_(True))
    return query.order_by(InventoryLot.acquired_at.asc(), InventoryLot.id.asc()).all()


def get_average_cost(currency: Currency, till: Till | None = None) -> dict:
    """
    Weighted average cost of the currency's available lots.

    Fallback chain when there is no usable inventory: the currency's
    base_cost, then its reference buy rate.

    Returns:
        {"currency", "average_cost", "source"} with source one of
        INVENTORY, BASE_COST, BUY_RATE
    """
    query = db.session.query(
        func.coalesce(func.sum(InventoryLot.amount), 0).label("units"),
        func.coalesce(func.sum(InventoryLot.amount * InventoryLot.unit_cost), 0).label("cost"),
    ).filter(
        InventoryLot.currency_id == currency.id,
        InventoryLot.available.is_(True),
    )
    if till is not None:
        query = query.filter(InventoryLot.till_id == till.id)

    row = query.one()
    units = as_decimal(row.units or 0)
    if units > 0:
        cost = as_decimal(row.cost or 0)
        return {
            "currency": currency.code,
            "average_cost": str(to_unit_cost(cost / units)),
            "source": "INVENTORY",
        }

    if currency.base_cost is not None:
        return {"currency": currency.code, "average_cost": str(to_unit_cost(currency.base_cost)), "source": "BASE_COST"}

    return {"currency": currency.code, "average_cost": str(to_unit_cost(currency.buy_rate)), "source": "BUY_RATE"}
