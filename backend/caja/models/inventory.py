from __future__ import annotations

from ..extensions import db
from ..money import fmt_money
from caja.time_utils import to_utc_z


class InventoryLot(db.Model):
    """
    One acquisition of foreign currency at a fixed unit cost.

    WHY: Cost layers are preserved so a sale can be valued against the exact
    lots it drains (FIFO by acquired_at, then id).

    DESIGN: Lots are never merged and never deleted. A fully consumed lot
    stays with amount=0 and available=False for audit.
    """
    __tablename__ = "inventory_lots"
    __table_args__ = (
        db.Index("ix_lots_till_currency_available", "till_id", "currency_id", "available", "acquired_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    currency_id = db.Column(db.Integer, db.ForeignKey("currencies.id"), nullable=False, index=True)
    till_id = db.Column(db.Integer, db.ForeignKey("tills.id"), nullable=False, index=True)

    original_amount = db.Column(db.Numeric(18, 2), nullable=False)
    amount = db.Column(db.Numeric(18, 2), nullable=False)  # remaining
    unit_cost = db.Column(db.Numeric(18, 6), nullable=False)

    available = db.Column(db.Boolean, nullable=False, default=True)
    acquired_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    # BUY transaction that produced the lot
    source_transaction_id = db.Column(db.Integer, db.ForeignKey("exchange_transactions.id"), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    currency = db.relationship("Currency")
    till = db.relationship("Till", backref=db.backref("lots", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<InventoryLot id={self.id} amount={self.amount} unit_cost={self.unit_cost}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "currency": self.currency.code if self.currency else None,
            "till_id": self.till_id,
            "original_amount": fmt_money(self.original_amount),
            "amount": fmt_money(self.amount),
            "unit_cost": str(self.unit_cost),
            "available": self.available,
            "acquired_at": to_utc_z(self.acquired_at),
            "source_transaction_id": self.source_transaction_id,
        }
