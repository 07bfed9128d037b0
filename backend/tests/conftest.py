"""
Pytest fixtures for tillcore tests.

Provides the application with an in-memory ledger database, a clean session
per test, a CLI runner, and small cart builders shared by the engine tests.
"""

from datetime import datetime

import pytest

from tillcore import create_app
from tillcore.extensions import db
from tillcore.money import Money
from tillcore.services.totals_service import LineItem, calculate_totals


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'LOG_LEVEL': 'WARNING',
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
def runner(app):
    """Create CLI runner."""
    return app.test_cli_runner()


@pytest.fixture
def shift_start():
    return datetime(2026, 3, 2, 9, 0, 0)


@pytest.fixture
def coffee_line():
    """2 x $3.50 with $0.70 tax on the undiscounted line."""
    return LineItem("coffee", 2, Money(350), Money(70), name="Coffee")


@pytest.fixture
def totals_763():
    """Cart whose grand total is $7.63 ($7.00 + $0.63 tax)."""
    return calculate_totals([LineItem("coffee", 2, Money(350), Money(63), name="Coffee")])
