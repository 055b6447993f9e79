from __future__ import annotations

from ..extensions import db
from caja.time_utils import to_utc_z


class Currency(db.Model):
    """
    Currency reference data: code, reference buy/sell rates, base cost.

    WHY: The transaction engine validates applied rates against these
    references and falls back to them when inventory cannot cover a sale.

    HOME CURRENCY: exactly one row carries is_home=True. BUY/SELL only apply
    to the other currencies; the home currency is the unit of profit.

    DESIGN: Rows are never deleted while any transaction, lot, balance or
    movement references them.
    """
    __tablename__ = "currencies"
    __table_args__ = (
        db.Index(
            "uq_currencies_single_home",
            "is_home",
            unique=True,
            sqlite_where=db.text("is_home = 1"),
            postgresql_where=db.text("is_home"),
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(3), nullable=False, unique=True, index=True)
    name = db.Column(db.String(64), nullable=False)

    # Reference rates in home-currency units per foreign unit
    buy_rate = db.Column(db.Numeric(12, 4), nullable=False)
    sell_rate = db.Column(db.Numeric(12, 4), nullable=False)

    # Optional reference acquisition cost (fallback valuation)
    base_cost = db.Column(db.Numeric(12, 4), nullable=True)

    is_home = db.Column(db.Boolean, nullable=False, default=False)
    rates_updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Currency {self.code} buy={self.buy_rate} sell={self.sell_rate}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "buy_rate": str(self.buy_rate),
            "sell_rate": str(self.sell_rate),
            "base_cost": str(self.base_cost) if self.base_cost is not None else None,
            "is_home": self.is_home,
            "rates_updated_at": to_utc_z(self.rates_updated_at),
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
