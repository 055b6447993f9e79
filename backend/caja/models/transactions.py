from __future__ import annotations

from ..extensions import db
from ..money import fmt_money
from caja.time_utils import to_utc_z

TX_STATUS_COMPLETED = "COMPLETED"
TX_STATUS_PENDING = "PENDING"


class ExchangeTransaction(db.Model):
    """
    A BUY or SELL of foreign currency against the home currency.

    IMMUTABLE: rows are written once by transaction_service.record_transaction.
    A till cannot close while any of its rows is PENDING.

    SELL rows carry the realized cost and profit; BUY rows leave them null.
    """
    __tablename__ = "exchange_transactions"
    __table_args__ = (
        db.Index("ix_exchange_tx_till_created", "till_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    till_id = db.Column(db.Integer, db.ForeignKey("tills.id"), nullable=False, index=True)
    currency_id = db.Column(db.Integer, db.ForeignKey("currencies.id"), nullable=False, index=True)

    type = db.Column(db.String(8), nullable=False, index=True)  # BUY, SELL
    status = db.Column(db.String(16), nullable=False, default=TX_STATUS_COMPLETED, index=True)

    amount = db.Column(db.Numeric(18, 2), nullable=False)  # foreign units
    rate = db.Column(db.Numeric(12, 4), nullable=False)
    home_total = db.Column(db.Numeric(18, 2), nullable=False)  # round(amount * rate, 2)
    commission = db.Column(db.Numeric(18, 2), nullable=False, default=0)

    # SELL costing
    unit_cost = db.Column(db.Numeric(18, 6), nullable=True)  # weighted cost of consumed lots
    uncovered_amount = db.Column(db.Numeric(18, 2), nullable=True)  # valued at fallback cost
    realized_cost = db.Column(db.Numeric(18, 2), nullable=True)
    realized_profit = db.Column(db.Numeric(18, 2), nullable=True)

    # Customer records live outside the core
    customer_id = db.Column(db.Integer, nullable=True, index=True)
    operator_id = db.Column(db.Integer, nullable=False, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    till = db.relationship("Till", backref=db.backref("transactions", lazy=True))
    currency = db.relationship("Currency")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "till_id": self.till_id,
            "type": self.type,
            "status": self.status,
            "currency": self.currency.code if self.currency else None,
            "amount": fmt_money(self.amount),
            "rate": str(self.rate),
            "home_total": fmt_money(self.home_total),
            "commission": fmt_money(self.commission),
            "unit_cost": str(self.unit_cost) if self.unit_cost is not None else None,
            "uncovered_amount": fmt_money(self.uncovered_amount),
            "realized_cost": fmt_money(self.realized_cost),
            "realized_profit": fmt_money(self.realized_profit),
            "customer_id": self.customer_id,
            "operator_id": self.operator_id,
            "created_at": to_utc_z(self.created_at),
        }
