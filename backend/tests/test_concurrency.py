# Overview: Threaded concurrency tests against a file-backed SQLite database.

"""
Concurrency tests for the till lock.

Each worker runs in its own thread with its own app context (and therefore
its own session), so the only thing serializing them is the database lock
taken by run_in_till_scope.
"""

import os
import sqlite3
import tempfile
import threading
import unittest
from decimal import Decimal

from caja import create_app
from caja.errors import TillAlreadyOpenError, TillBusyError, TillConflictError
from caja.extensions import db
from caja.models import ExchangeTransaction, InventoryLot, Till, TillMovement
from caja.services import balance_service, currency_service, till_service, transaction_service


OPERATOR_ID = 1
RETRYABLE = (TillBusyError, TillConflictError)


class ConcurrencyTests(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.db_path = os.path.join(self.tmpdir.name, "concurrency.db")
        self.app = create_app({
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{self.db_path}",
            "LOCK_RETRY_ATTEMPTS": 5,
            "LOCK_RETRY_BACKOFF": 0.01,
        })

        with self.app.app_context():
            db.drop_all()
            db.create_all()
            currency_service.create_currency("PEN", "Sol peruano", "1", "1", is_home=True)
            currency_service.create_currency("USD", "Dolar estadounidense", "3.48", "3.52")

    def tearDown(self):
        with self.app.app_context():
            db.session.remove()
            db.drop_all()
            db.session.remove()
            db.engine.dispose()
        self.tmpdir.cleanup()

    def _run_threads(self, target, count):
        results = []
        lock = threading.Lock()

        def worker():
            with self.app.app_context():
                try:
                    outcome = target()
                    with lock:
                        results.append(outcome)
                except Exception as exc:
                    with lock:
                        results.append(exc)
                finally:
                    db.session.remove()

        threads = [threading.Thread(target=worker) for _ in range(count)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        return results

    def _assert_ledger_consistent(self, till_id):
        till = db.session.get(Till, till_id)
        totals = balance_service.movement_totals(till)
        for code, values in balance_service.balances_by_code(till).items():
            self.assertEqual(totals.get(code, Decimal("0")), values["current"], code)

        profits = [
            tx.realized_profit
            for tx in db.session.query(ExchangeTransaction).filter_by(till_id=till_id).all()
            if tx.realized_profit is not None
        ]
        self.assertEqual(Decimal(till.accumulated_profit), sum(profits, Decimal("0")))

    def test_concurrent_opens_single_till(self):
        results = self._run_threads(lambda: till_service.open_till(OPERATOR_ID).id, 5)

        opened = [r for r in results if isinstance(r, int)]
        failures = [r for r in results if not isinstance(r, int)]
        self.assertEqual(len(opened), 1)
        for exc in failures:
            self.assertIsInstance(exc, (TillAlreadyOpenError, TillBusyError))

        with self.app.app_context():
            self.assertEqual(db.session.query(Till).filter_by(operator_id=OPERATOR_ID, state="OPEN").count(), 1)

    def test_concurrent_sells_never_oversell_lots(self):
        with self.app.app_context():
            till_id = till_service.open_till(OPERATOR_ID, {"PEN": 1000}).id
            transaction_service.record_transaction(OPERATOR_ID, "BUY", "USD", "10", "3.50", "35.00")

        def sell():
            tx = transaction_service.record_transaction(OPERATOR_ID, "SELL", "USD", "6", "3.52", "21.12")
            return Decimal(tx.amount) - Decimal(tx.uncovered_amount)

        results = self._run_threads(sell, 2)

        consumed = [r for r in results if isinstance(r, Decimal)]
        for exc in results:
            if not isinstance(exc, Decimal):
                self.assertIsInstance(exc, RETRYABLE)
        self.assertLessEqual(sum(consumed, Decimal("0")), Decimal("10"))

        with self.app.app_context():
            lot = db.session.query(InventoryLot).one()
            self.assertGreaterEqual(lot.amount, 0)
            self.assertEqual(Decimal(lot.amount), Decimal("10") - sum(consumed, Decimal("0")))
            self._assert_ledger_consistent(till_id)

    def test_concurrent_adjustments_no_lost_update(self):
        with self.app.app_context():
            till_id = till_service.open_till(OPERATOR_ID, {"PEN": 100}).id

        results = self._run_threads(
            lambda: till_service.adjust_till(OPERATOR_ID, "PEN", "IN", "10", "Float top-up").id,
            5,
        )

        applied = [r for r in results if isinstance(r, int)]
        for exc in results:
            if not isinstance(exc, int):
                self.assertIsInstance(exc, RETRYABLE)

        with self.app.app_context():
            till = db.session.get(Till, till_id)
            pen = balance_service.balances_by_code(till)["PEN"]["current"]
            self.assertEqual(pen, Decimal("100") + Decimal("10") * len(applied))
            self.assertEqual(
                db.session.query(TillMovement).filter_by(till_id=till_id, reason="AJUSTE").count(),
                len(applied),
            )
            self._assert_ledger_consistent(till_id)

    def test_different_tills_do_not_block(self):
        with self.app.app_context():
            till_service.open_till(1, {"PEN": 100})
            till_service.open_till(2, {"PEN": 100})

        operators = iter([1, 2])
        pick = threading.Lock()

        def adjust():
            with pick:
                operator_id = next(operators)
            return till_service.adjust_till(operator_id, "PEN", "OUT", "25", "Expense").till_id

        results = self._run_threads(adjust, 2)

        self.assertEqual(len({r for r in results if isinstance(r, int)}), 2)

    def test_held_write_lock_surfaces_as_busy(self):
        """While another connection holds the write lock, mutations give up with TillBusyError."""
        with self.app.app_context():
            till_service.open_till(OPERATOR_ID, {"PEN": 1000})

        impatient = create_app({
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{self.db_path}",
            "LOCK_TIMEOUT_SECONDS": 0.2,
            "LOCK_RETRY_ATTEMPTS": 2,
            "LOCK_RETRY_BACKOFF": 0.01,
        })

        blocker = sqlite3.connect(self.db_path, isolation_level=None)
        blocker.execute("BEGIN IMMEDIATE")
        try:
            with impatient.app_context():
                with self.assertRaises(TillBusyError):
                    transaction_service.record_transaction(OPERATOR_ID, "BUY", "USD", "10", "3.50", "35.00")
                with self.assertRaises(TillBusyError):
                    till_service.adjust_till(OPERATOR_ID, "PEN", "IN", "10", "Float top-up")
                with self.assertRaises(TillBusyError):
                    till_service.open_till(2)
                db.session.remove()
                db.engine.dispose()
        finally:
            blocker.execute("ROLLBACK")
            blocker.close()

        with self.app.app_context():
            self.assertEqual(db.session.query(ExchangeTransaction).count(), 0)
            self.assertEqual(db.session.query(TillMovement).filter_by(reason="AJUSTE").count(), 0)
            self.assertEqual(db.session.query(Till).count(), 1)

            tx = transaction_service.record_transaction(OPERATOR_ID, "BUY", "USD", "10", "3.50", "35.00")
            self.assertEqual(Decimal(tx.home_total), Decimal("35.00"))


if __name__ == "__main__":
    unittest.main()
