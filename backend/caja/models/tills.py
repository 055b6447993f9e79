from __future__ import annotations

from ..extensions import db
from ..money import fmt_money
from caja.time_utils import to_utc_z

TILL_OPEN = "OPEN"
TILL_CLOSED = "CLOSED"


class Till(db.Model):
    """
    One cashier's cash-drawer session across all currencies ("caja").

    LIFECYCLE:
    - OPEN: accepts transactions and adjustments
    - CLOSED: terminal, every further mutation is rejected

    INVARIANT: at most one OPEN till per operator. Enforced by the partial
    unique index below, not by in-process state.
    """
    __tablename__ = "tills"
    __table_args__ = (
        db.Index(
            "uq_tills_operator_open",
            "operator_id",
            unique=True,
            sqlite_where=db.text("state = 'OPEN'"),
            postgresql_where=db.text("state = 'OPEN'"),
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Supplied by the identity layer; no users table in the core
    operator_id = db.Column(db.Integer, nullable=False, index=True)

    state = db.Column(db.String(16), nullable=False, default=TILL_OPEN, index=True)

    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    closed_by = db.Column(db.Integer, nullable=True)

    # Running sum of realized profit, home-currency units
    accumulated_profit = db.Column(db.Numeric(18, 2), nullable=False, default=0)

    opening_note = db.Column(db.String(255), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_open(self) -> bool:
        return self.state == TILL_OPEN

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "operator_id": self.operator_id,
            "state": self.state,
            "opened_at": to_utc_z(self.opened_at),
            "closed_at": to_utc_z(self.closed_at) if self.closed_at else None,
            "closed_by": self.closed_by,
            "accumulated_profit": fmt_money(self.accumulated_profit),
            "opening_note": self.opening_note,
            "version_id": self.version_id,
        }


class TillBalance(db.Model):
    """
    Running balance of one currency inside one till.

    Created lazily (zeroed) the first time a currency is touched, or seeded
    when the till opens. Only changed through signed deltas applied inside a
    unit of work (see balance_service.apply_delta).
    """
    __tablename__ = "till_balances"
    __table_args__ = (
        db.UniqueConstraint("till_id", "currency_id", name="uq_till_balances_till_currency"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    till_id = db.Column(db.Integer, db.ForeignKey("tills.id"), nullable=False, index=True)
    currency_id = db.Column(db.Integer, db.ForeignKey("currencies.id"), nullable=False, index=True)

    opening_amount = db.Column(db.Numeric(18, 2), nullable=False, default=0)
    current_amount = db.Column(db.Numeric(18, 2), nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    till = db.relationship("Till", backref=db.backref("balances", lazy=True))
    currency = db.relationship("Currency")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "till_id": self.till_id,
            "currency": self.currency.code if self.currency else None,
            "opening_amount": fmt_money(self.opening_amount),
            "current_amount": fmt_money(self.current_amount),
        }


class TillMovement(db.Model):
    """
    Append-only log of balance changes.

    REASONS:
    - APERTURA: opening balance
    - COMPRA / VENTA: the two legs of an exchange transaction
    - UTILIDAD / PERDIDA: realized profit or loss of a sale (memo only)
    - AJUSTE: manual correction

    affects_balance is False only for the UTILIDAD/PERDIDA memo; summing the
    other rows per currency reproduces TillBalance.current_amount.
    """
    __tablename__ = "till_movements"
    __table_args__ = (
        db.Index("ix_till_movements_till_occurred", "till_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    till_id = db.Column(db.Integer, db.ForeignKey("tills.id"), nullable=False, index=True)
    currency_id = db.Column(db.Integer, db.ForeignKey("currencies.id"), nullable=False, index=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("exchange_transactions.id"), nullable=True, index=True)

    direction = db.Column(db.String(3), nullable=False)  # IN, OUT
    amount = db.Column(db.Numeric(18, 2), nullable=False)  # always positive
    reason = db.Column(db.String(16), nullable=False, index=True)
    description = db.Column(db.String(255), nullable=True)
    affects_balance = db.Column(db.Boolean, nullable=False, default=True)

    actor_id = db.Column(db.Integer, nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    till = db.relationship("Till", backref=db.backref("movements", lazy=True))
    currency = db.relationship("Currency")

    @property
    def signed_amount(self):
        return self.amount if self.direction == "IN" else -self.amount

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "till_id": self.till_id,
            "currency": self.currency.code if self.currency else None,
            "transaction_id": self.transaction_id,
            "direction": self.direction,
            "amount": fmt_money(self.amount),
            "reason": self.reason,
            "description": self.description,
            "affects_balance": self.affects_balance,
            "actor_id": self.actor_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }
