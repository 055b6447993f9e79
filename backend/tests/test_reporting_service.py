# Overview: Pytest coverage for till snapshots, the operator dashboard and the transaction report.

from datetime import timedelta

import pytest

from caja.errors import CurrencyNotFoundError, TillNotFoundError
from caja.models import ExchangeTransaction
from caja.services import reporting_service, till_service, transaction_service
from caja.time_utils import utcnow
from caja.validation import ValidationError


OPERATOR_ID = 1


def _trade():
    transaction_service.record_transaction(OPERATOR_ID, 'BUY', 'USD', '100', '3.50', '350.00')
    transaction_service.record_transaction(OPERATOR_ID, 'SELL', 'USD', '60', '3.60', '216.00')


def _backdate(db_session, tx, days):
    db_session.query(ExchangeTransaction).filter_by(id=tx.id).update(
        {'created_at': utcnow() - timedelta(days=days)}
    )
    db_session.commit()


class TestTillSnapshot:

    def test_snapshot(self, db_session, open_till):
        _trade()

        snapshot = reporting_service.get_till_snapshot(open_till.id)

        assert snapshot['till']['id'] == open_till.id
        assert snapshot['till']['state'] == 'OPEN'
        assert snapshot['till']['accumulated_profit'] == '6.00'
        assert snapshot['balances']['PEN'] == {'opening': '1000.00', 'current': '866.00'}
        assert snapshot['balances']['USD'] == {'opening': '0.00', 'current': '40.00'}
        assert snapshot['balances']['EUR'] == {'opening': '0.00', 'current': '0.00'}
        assert snapshot['transactions_count'] == 2
        # APERTURA + 2 BUY legs + 2 SELL legs + profit memo
        assert len(snapshot['recent_movements']) == 6
        assert snapshot['recent_movements'][0]['reason'] == 'UTILIDAD'

    def test_snapshot_recent_transactions(self, db_session, open_till):
        _trade()

        snapshot = reporting_service.get_till_snapshot(open_till.id)
        limited = reporting_service.get_till_snapshot(open_till.id, transaction_limit=1)

        assert [tx['type'] for tx in snapshot['recent_transactions']] == ['SELL', 'BUY']
        assert snapshot['recent_transactions'][0]['realized_profit'] == '6.00'
        assert len(limited['recent_transactions']) == 1
        assert limited['recent_transactions'][0]['type'] == 'SELL'

    def test_snapshot_movement_limit(self, db_session, open_till):
        _trade()

        snapshot = reporting_service.get_till_snapshot(open_till.id, movement_limit=2)

        assert len(snapshot['recent_movements']) == 2

    def test_snapshot_of_closed_till(self, db_session, open_till):
        till_service.close_till(OPERATOR_ID)

        snapshot = reporting_service.get_till_snapshot(open_till.id)

        assert snapshot['till']['state'] == 'CLOSED'
        assert snapshot['till']['closed_by'] == OPERATOR_ID

    def test_snapshot_unknown_till(self, db_session):
        with pytest.raises(TillNotFoundError):
            reporting_service.get_till_snapshot(404)


class TestOperatorDashboard:

    def test_dashboard_open_till(self, db_session, open_till):
        _trade()

        dashboard = reporting_service.get_operator_dashboard(OPERATOR_ID)

        assert dashboard['open_till_id'] == open_till.id
        assert dashboard['transactions_count'] == 2
        assert dashboard['home_volume'] == '566.00'
        assert dashboard['realized_profit'] == '6.00'
        assert dashboard['balances']['PEN'] == '866.00'

    def test_dashboard_include_closed(self, db_session, open_till):
        _trade()
        till_service.close_till(OPERATOR_ID)
        till_service.open_till(OPERATOR_ID)

        current = reporting_service.get_operator_dashboard(OPERATOR_ID)
        history = reporting_service.get_operator_dashboard(OPERATOR_ID, include_closed=True)

        assert current['transactions_count'] == 0
        assert current['realized_profit'] == '0.00'
        assert history['transactions_count'] == 2
        assert history['realized_profit'] == '6.00'

    def test_dashboard_without_tills(self, db_session, currencies):
        dashboard = reporting_service.get_operator_dashboard(OPERATOR_ID)

        assert dashboard['open_till_id'] is None
        assert dashboard['transactions_count'] == 0
        assert dashboard['balances'] == {}

    def test_dashboard_volume_by_currency(self, db_session, open_till):
        _trade()
        transaction_service.record_transaction(OPERATOR_ID, 'BUY', 'EUR', '10', '4.10', '41.00')

        dashboard = reporting_service.get_operator_dashboard(OPERATOR_ID)

        assert dashboard['volume_by_currency'] == {
            'EUR': {'buy': '41.00', 'sell': '0.00'},
            'USD': {'buy': '350.00', 'sell': '216.00'},
        }

    def test_dashboard_daily_profit(self, db_session, open_till):
        transaction_service.record_transaction(OPERATOR_ID, 'BUY', 'USD', '100', '3.50', '350.00')
        older = transaction_service.record_transaction(OPERATOR_ID, 'SELL', 'USD', '60', '3.60', '216.00')
        transaction_service.record_transaction(OPERATOR_ID, 'SELL', 'USD', '20', '3.60', '72.00')
        _backdate(db_session, older, days=5)
        today = utcnow().date()

        dashboard = reporting_service.get_operator_dashboard(OPERATOR_ID)
        recent = reporting_service.get_operator_dashboard(OPERATOR_ID, days=3)

        assert dashboard['daily_profit'] == [
            {'date': (today - timedelta(days=5)).isoformat(), 'profit': '6.00'},
            {'date': today.isoformat(), 'profit': '2.00'},
        ]
        assert recent['daily_profit'] == [{'date': today.isoformat(), 'profit': '2.00'}]

    def test_dashboard_daily_profit_days_must_be_positive(self, db_session, open_till):
        _trade()

        with pytest.raises(ValidationError):
            reporting_service.get_operator_dashboard(OPERATOR_ID, days=0)

    def test_dashboard_recent_transactions(self, db_session, open_till):
        for _ in range(8):
            transaction_service.record_transaction(OPERATOR_ID, 'BUY', 'USD', '10', '3.50', '35.00')
            transaction_service.record_transaction(OPERATOR_ID, 'SELL', 'USD', '10', '3.60', '36.00')

        dashboard = reporting_service.get_operator_dashboard(OPERATOR_ID)
        limited = reporting_service.get_operator_dashboard(OPERATOR_ID, recent_limit=3)

        assert len(dashboard['recent_transactions']) == 15
        assert dashboard['recent_transactions'][0]['type'] == 'SELL'
        assert len(limited['recent_transactions']) == 3


class TestTransactionReport:

    @pytest.fixture
    def trades(self, db_session, open_till):
        usd_buy = transaction_service.record_transaction(OPERATOR_ID, 'BUY', 'USD', '100', '3.50', '350.00')
        usd_sell = transaction_service.record_transaction(
            OPERATOR_ID, 'SELL', 'USD', '60', '3.60', '216.00', customer_id=7,
        )
        eur_buy = transaction_service.record_transaction(OPERATOR_ID, 'BUY', 'EUR', '10', '4.10', '41.00')
        return {'usd_buy': usd_buy, 'usd_sell': usd_sell, 'eur_buy': eur_buy}

    def test_summary_grouped_by_currency_and_type(self, trades):
        today = utcnow().date()

        report = reporting_service.transaction_report(OPERATOR_ID, today, today)

        assert report['detail'] is False
        assert report['date_from'] == today.isoformat()
        assert [(row['currency'], row['type']) for row in report['rows']] == [
            ('EUR', 'BUY'), ('USD', 'BUY'), ('USD', 'SELL'),
        ]
        eur_buy, usd_buy, usd_sell = report['rows']
        assert eur_buy['currency_name'] == 'Euro'
        assert usd_buy['total_amount'] == '100.00'
        assert usd_buy['total_home'] == '350.00'
        assert usd_buy['transactions_count'] == 1
        assert usd_buy['average_profit'] is None
        assert usd_sell['total_home'] == '216.00'
        assert usd_sell['average_profit'] == '6.00'

    def test_detail_newest_first(self, trades):
        today = utcnow().date().isoformat()

        report = reporting_service.transaction_report(OPERATOR_ID, today, today, detail=True)

        assert [row['id'] for row in report['rows']] == [
            trades['eur_buy'].id, trades['usd_sell'].id, trades['usd_buy'].id,
        ]

    def test_date_range_is_inclusive(self, db_session, trades):
        _backdate(db_session, trades['usd_buy'], days=10)
        today = utcnow().date()

        recent = reporting_service.transaction_report(
            OPERATOR_ID, today - timedelta(days=3), today, detail=True,
        )
        older = reporting_service.transaction_report(
            OPERATOR_ID, today - timedelta(days=10), today - timedelta(days=10), detail=True,
        )

        assert trades['usd_buy'].id not in [row['id'] for row in recent['rows']]
        assert len(recent['rows']) == 2
        assert [row['id'] for row in older['rows']] == [trades['usd_buy'].id]

    def test_filters(self, trades):
        today = utcnow().date()

        by_currency = reporting_service.transaction_report(OPERATOR_ID, today, today, currency_code='usd')
        by_type = reporting_service.transaction_report(OPERATOR_ID, today, today, tx_type='buy', detail=True)
        by_customer = reporting_service.transaction_report(OPERATOR_ID, today, today, customer_id=7, detail=True)
        by_till = reporting_service.transaction_report(
            OPERATOR_ID, today, today, till_id=trades['usd_buy'].till_id,
        )

        assert {row['currency'] for row in by_currency['rows']} == {'USD'}
        assert by_currency['filters'] == {'currency': 'USD'}
        assert {row['type'] for row in by_type['rows']} == {'BUY'}
        assert len(by_type['rows']) == 2
        assert [row['id'] for row in by_customer['rows']] == [trades['usd_sell'].id]
        assert len(by_till['rows']) == 3

    def test_other_operator_sees_nothing(self, trades):
        today = utcnow().date()

        report = reporting_service.transaction_report(2, today, today)

        assert report['rows'] == []

    def test_other_operators_till_filter(self, trades):
        today = utcnow().date()

        with pytest.raises(TillNotFoundError):
            reporting_service.transaction_report(2, today, today, till_id=trades['usd_buy'].till_id)

    @pytest.mark.parametrize('date_from, date_to', [
        ('2024-03-10', '2024-03-01'),
        ('10/03/2024', '2024-03-10'),
        (None, '2024-03-10'),
    ])
    def test_invalid_dates(self, db_session, currencies, date_from, date_to):
        with pytest.raises(ValidationError):
            reporting_service.transaction_report(OPERATOR_ID, date_from, date_to)

    def test_unknown_currency_filter(self, trades):
        today = utcnow().date()

        with pytest.raises(CurrencyNotFoundError):
            reporting_service.transaction_report(OPERATOR_ID, today, today, currency_code='GBP')
