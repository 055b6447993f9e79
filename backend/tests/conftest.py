"""
Pytest fixtures for caja backend tests.

Provides an in-memory application, a per-test clean database and the
default currency set (PEN home, USD, EUR).
"""

from decimal import Decimal

import pytest

from caja import create_app
from caja.extensions import db
from caja.services import currency_service, till_service


OPERATOR_ID = 1


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'LOCK_RETRY_BACKOFF': 0.01,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def currencies(db_session):
    """PEN (home), USD and EUR with the default reference rates."""
    return {
        'PEN': currency_service.create_currency('PEN', 'Sol peruano', '1.0000', '1.0000', is_home=True),
        'USD': currency_service.create_currency('USD', 'Dolar estadounidense', '3.4800', '3.5200'),
        'EUR': currency_service.create_currency('EUR', 'Euro', '4.0500', '4.1200'),
    }


@pytest.fixture(scope='function')
def open_till(currencies):
    """Operator 1's till, opened with 1000 PEN."""
    return till_service.open_till(OPERATOR_ID, {'PEN': Decimal('1000')})
