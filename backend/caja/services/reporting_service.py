# Overview: Read-only snapshots and reports of till state for the external report/PDF renderer.

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, time, timedelta

from sqlalchemy import case, func

from ..errors import TillNotFoundError
from ..extensions import db
from ..models import Currency, ExchangeTransaction, Till, TX_STATUS_COMPLETED
from ..money import ZERO, as_decimal, fmt_money, to_money
from ..validation import TX_BUY, TX_SELL, ValidationError, parse_date, validate_tx_type
from caja.time_utils import utcnow
from . import balance_service, currency_service, till_service


def _recent_transactions(till_ids: list[int], limit: int, *, completed_only: bool = False) -> list[dict]:
    if not till_ids:
        return []
    query = db.session.query(ExchangeTransaction).filter(ExchangeTransaction.till_id.in_(till_ids))
    if completed_only:
        query = query.filter(ExchangeTransaction.status == TX_STATUS_COMPLETED)
    rows = query.order_by(
        ExchangeTransaction.created_at.desc(),
        ExchangeTransaction.id.desc(),
    ).limit(limit).all()
    return [tx.to_dict() for tx in rows]


def get_till_snapshot(till_id: int, *, movement_limit: int = 10, transaction_limit: int = 10) -> dict:
    """
    Snapshot of one till: header, balances per currency, recent movements
    and recent transactions.

    Never mutates state; safe to hand to report rendering.
    """
    till = till_service.get_till(till_id)
    balances = balance_service.balances_by_code(till)
    movements = balance_service.list_movements([till.id], limit=movement_limit)
    tx_count = db.session.query(func.count(ExchangeTransaction.id)).filter(
        ExchangeTransaction.till_id == till.id
    ).scalar() or 0

    return {
        "till": till.to_dict(),
        "balances": {
            code: {"opening": fmt_money(values["opening"]), "current": fmt_money(values["current"])}
            for code, values in balances.items()
        },
        "recent_movements": [m.to_dict() for m in movements],
        "recent_transactions": _recent_transactions([till.id], transaction_limit),
        "transactions_count": int(tx_count),
    }


def _volume_by_currency(till_ids: list[int]) -> dict[str, dict[str, str]]:
    """Home-currency volume bought and sold, per foreign currency."""
    if not till_ids:
        return {}
    rows = db.session.query(
        Currency.code.label("code"),
        func.coalesce(func.sum(case(
            (ExchangeTransaction.type == TX_BUY, ExchangeTransaction.home_total), else_=0,
        )), 0).label("bought"),
        func.coalesce(func.sum(case(
            (ExchangeTransaction.type == TX_SELL, ExchangeTransaction.home_total), else_=0,
        )), 0).label("sold"),
    ).join(Currency, Currency.id == ExchangeTransaction.currency_id).filter(
        ExchangeTransaction.till_id.in_(till_ids),
        ExchangeTransaction.status == TX_STATUS_COMPLETED,
    ).group_by(Currency.code).order_by(Currency.code).all()

    return {
        row.code: {"buy": fmt_money(as_decimal(row.bought or 0)), "sell": fmt_money(as_decimal(row.sold or 0))}
        for row in rows
    }


def _daily_profit(till_ids: list[int], days: int | None) -> list[dict]:
    """
    Realized profit per UTC calendar day, oldest first.

    Days are bucketed in Python, not with a dialect date function.
    """
    if not till_ids:
        return []
    query = db.session.query(ExchangeTransaction.created_at, ExchangeTransaction.realized_profit).filter(
        ExchangeTransaction.till_id.in_(till_ids),
        ExchangeTransaction.status == TX_STATUS_COMPLETED,
        ExchangeTransaction.realized_profit.isnot(None),
    )
    if days is not None:
        if days < 1:
            raise ValidationError("days must be at least 1")
        since = datetime.combine(utcnow().date() - timedelta(days=days - 1), time.min)
        query = query.filter(ExchangeTransaction.created_at >= since)

    buckets: dict = defaultdict(lambda: ZERO)
    for created_at, profit in query.all():
        buckets[created_at.date()] += as_decimal(profit)
    return [
        {"date": day.isoformat(), "profit": fmt_money(total)}
        for day, total in sorted(buckets.items())
    ]


def get_operator_dashboard(
    operator_id: int,
    *,
    include_closed: bool = False,
    recent_limit: int = 15,
    days: int | None = None,
) -> dict:
    """
    Totals across the operator's open till (or every till).

    Returns:
        - transaction count and home-currency volume
        - realized profit (sum over SELL rows)
        - current balances of the open till, if any
        - home volume bought/sold per currency
        - realized profit per day, limited to the last `days` days if given
        - the most recent completed transactions
    """
    till_ids = till_service.operator_till_ids(operator_id, include_closed=include_closed)

    count, volume, profit = 0, 0, 0
    if till_ids:
        row = db.session.query(
            func.count(ExchangeTransaction.id).label("count"),
            func.coalesce(func.sum(ExchangeTransaction.home_total), 0).label("volume"),
            func.coalesce(func.sum(ExchangeTransaction.realized_profit), 0).label("profit"),
        ).filter(
            ExchangeTransaction.till_id.in_(till_ids),
            ExchangeTransaction.status == TX_STATUS_COMPLETED,
        ).one()
        count, volume, profit = row.count, row.volume, row.profit

    open_till = till_service.get_open_till(operator_id)
    balances = {}
    if open_till is not None:
        balances = {
            code: fmt_money(values["current"])
            for code, values in balance_service.balances_by_code(open_till).items()
        }

    return {
        "operator_id": operator_id,
        "include_closed": include_closed,
        "open_till_id": open_till.id if open_till else None,
        "transactions_count": int(count or 0),
        "home_volume": fmt_money(to_money(volume or 0)),
        "realized_profit": fmt_money(to_money(profit or 0)),
        "balances": balances,
        "volume_by_currency": _volume_by_currency(till_ids),
        "daily_profit": _daily_profit(till_ids, days),
        "recent_transactions": _recent_transactions(till_ids, recent_limit, completed_only=True),
    }


# =============================================================================
# DATE-RANGE TRANSACTION REPORT
# =============================================================================

def transaction_report(
    operator_id: int,
    date_from,
    date_to,
    *,
    detail: bool = False,
    currency_code: str | None = None,
    tx_type: str | None = None,
    customer_id: int | None = None,
    till_id: int | None = None,
) -> dict:
    """
    Completed transactions of one operator between two UTC dates, inclusive.

    Args:
        date_from, date_to: date, datetime or 'YYYY-MM-DD'
        detail: one row per transaction (newest first) instead of a summary
            grouped by type and currency
        currency_code, tx_type, customer_id, till_id: optional filters

    Raises:
        ValidationError: bad dates, date_from after date_to, bad type
        CurrencyNotFoundError: unknown currency filter
        TillNotFoundError: till filter not owned by the operator
    """
    start_day = parse_date(date_from, "date_from")
    end_day = parse_date(date_to, "date_to")
    if start_day > end_day:
        raise ValidationError("date_from must be on or before date_to")

    filters = [
        ExchangeTransaction.operator_id == operator_id,
        ExchangeTransaction.status == TX_STATUS_COMPLETED,
        ExchangeTransaction.created_at >= datetime.combine(start_day, time.min),
        ExchangeTransaction.created_at < datetime.combine(end_day + timedelta(days=1), time.min),
    ]
    applied = {}
    if currency_code is not None:
        currency = currency_service.get_currency(currency_code)
        filters.append(ExchangeTransaction.currency_id == currency.id)
        applied["currency"] = currency.code
    if tx_type is not None:
        tx_type = validate_tx_type(tx_type)
        filters.append(ExchangeTransaction.type == tx_type)
        applied["type"] = tx_type
    if customer_id is not None:
        filters.append(ExchangeTransaction.customer_id == customer_id)
        applied["customer_id"] = customer_id
    if till_id is not None:
        till = db.session.query(Till).filter_by(id=till_id, operator_id=operator_id).first()
        if till is None:
            raise TillNotFoundError(f"Till {till_id} not found")
        filters.append(ExchangeTransaction.till_id == till_id)
        applied["till_id"] = till_id

    if detail:
        rows = [
            tx.to_dict()
            for tx in db.session.query(ExchangeTransaction).filter(*filters).order_by(
                ExchangeTransaction.created_at.desc(),
                ExchangeTransaction.id.desc(),
            ).all()
        ]
    else:
        grouped = db.session.query(
            ExchangeTransaction.type.label("type"),
            Currency.code.label("code"),
            Currency.name.label("name"),
            func.sum(ExchangeTransaction.amount).label("amount"),
            func.sum(ExchangeTransaction.home_total).label("home_total"),
            func.count(ExchangeTransaction.id).label("count"),
            func.avg(ExchangeTransaction.realized_profit).label("average_profit"),
        ).join(Currency, Currency.id == ExchangeTransaction.currency_id).filter(*filters).group_by(
            ExchangeTransaction.type, Currency.code, Currency.name,
        ).order_by(Currency.code, ExchangeTransaction.type).all()

        rows = [
            {
                "type": row.type,
                "currency": row.code,
                "currency_name": row.name,
                "total_amount": fmt_money(as_decimal(row.amount or 0)),
                "total_home": fmt_money(as_decimal(row.home_total or 0)),
                "transactions_count": int(row.count or 0),
                "average_profit": (
                    fmt_money(as_decimal(row.average_profit)) if row.average_profit is not None else None
                ),
            }
            for row in grouped
        ]

    return {
        "operator_id": operator_id,
        "date_from": start_day.isoformat(),
        "date_to": end_day.isoformat(),
        "detail": detail,
        "filters": applied,
        "rows": rows,
    }
