"""
Pytest fixtures for hubstock backend tests.

Provides an in-memory application, a per-test clean database, a test client,
a CLI runner, and small helpers for seeding stock.
"""

import pytest

from hubstock import create_app
from hubstock.extensions import db
from hubstock.services import stock_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'DEFAULT_LOW_STOCK_THRESHOLD': 10,
        'STOCK_RETRY_ATTEMPTS': 1,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def runner(app):
    """Create CLI runner."""
    return app.test_cli_runner()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema. Core deletes bypass the
        # append-only mapper events on stock_transactions.
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        db.session.expunge_all()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def stock(db_session):
    """Seed helper: stock(product_id, location_id, quantity) -> quantity."""
    def _seed(product_id, location_id, quantity, note="Seed stock"):
        return stock_service.adjust_stock(product_id, location_id, quantity, "adjust-add", note=note).new_quantity
    return _seed
