"""
Pytest fixtures for stockledger backend tests.

Provides an in-memory app, a per-test clean database, catalog fixtures and
the Flask test client. Thread-based tests build their own file-backed app
(see test_concurrency.py); in-memory SQLite is a single shared connection.
"""

from datetime import date

import pytest

from stockledger import create_app
from stockledger.extensions import db
from stockledger.models import Product
from stockledger.services import ledger_service
from stockledger.services.balance_service import get_balance_cache


@pytest.fixture(scope='session')
def reports_dir(tmp_path_factory):
    return tmp_path_factory.mktemp("reports")


@pytest.fixture(scope='session')
def app(reports_dir):
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'REPORTS_DIR': str(reports_dir),
        'EXPORT_MAX_WORKERS': 1,
        'DB_RETRY_ATTEMPTS': 2,
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
def db_session(app, reports_dir):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema. Bulk DELETE bypasses the ORM
        # immutability guard on stock_movements.
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        get_balance_cache().clear()
        for stale in reports_dir.iterdir():
            stale.unlink()

        yield db.session

        # Cleanup after test
        db.session.rollback()


def make_product(session, **fields) -> Product:
    defaults = {
        "name": "Whey Protein 2lb",
        "sale_price_cents": 2000,
        "cost_price_cents": 1200,
        "min_stock": 0,
        "status": "Active",
    }
    defaults.update(fields)
    product = Product(**defaults)
    session.add(product)
    session.commit()
    return product


def stock_in(product_id: int, quantity: int, **kwargs):
    return ledger_service.add_stock_movement(
        product_id=product_id, movement_type="ingress", quantity=quantity, **kwargs
    )


@pytest.fixture(scope='function')
def product_p(db_session):
    """Product P: min_stock=5, zero stock."""
    return make_product(
        db_session,
        sku="VS-WHEY-001",
        name="Whey Protein 2lb",
        brand="VitaSport",
        category="Proteins",
        min_stock=5,
        max_stock=150,
    )


@pytest.fixture(scope='function')
def product_q(db_session):
    return make_product(
        db_session,
        sku="VS-CREA-300",
        name="Creatine 300g",
        brand="VitaSport",
        category="Supplements",
        sale_price_cents=1500,
        cost_price_cents=700,
        min_stock=2,
        max_stock=40,
    )


@pytest.fixture(scope='function')
def stocked_p(product_p):
    """Product P with 100 units received."""
    stock_in(product_p.id, 100, note="Opening delivery")
    return product_p


@pytest.fixture(scope='function')
def sale_day():
    return date(2024, 5, 10)
