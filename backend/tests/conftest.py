"""
Pytest fixtures for gestilog backend tests.

Provides test database setup, tenant fixtures, factories and test client.
"""

from decimal import Decimal

import pytest
from gestilog import create_app
from gestilog.extensions import db
from gestilog.models import Store, Product, Customer


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'DEFAULT_TAX_RATE': 20,
        'CURRENCY_CODE': 'MAD',
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
def store_a(db_session):
    """Create Store A (first tenant)."""
    store = Store(name="Store A", code="A1", is_active=True)
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def store_b(db_session):
    """Create Store B (second tenant)."""
    store = Store(name="Store B", code="B1", is_active=True)
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory for products with a given opening stock and cost."""
    def _make(store, name="Widget", stock=10, purchase_price=5, sale_price=10, reference=None, threshold=0):
        product = Product(
            store_id=store.id,
            name=name,
            reference=reference,
            stock_quantity=Decimal(str(stock)),
            purchase_price=Decimal(str(purchase_price)) if purchase_price is not None else None,
            sale_price=Decimal(str(sale_price)),
            min_stock_threshold=Decimal(str(threshold)),
        )
        db_session.add(product)
        db_session.commit()
        return product
    return _make


@pytest.fixture(scope='function')
def make_customer(db_session):
    """Factory for customers with a given balance and credit limit."""
    def _make(store, name="Karim", balance=0, limit=0):
        customer = Customer(
            store_id=store.id,
            name=name,
            balance=Decimal(str(balance)),
            authorized_credit_limit=Decimal(str(limit)),
        )
        db_session.add(customer)
        db_session.commit()
        return customer
    return _make


def context_headers(store, user_id: int = 1) -> dict:
    """Helper to create tenant context headers."""
    return {'X-Store-Id': str(store.id), 'X-User-Id': str(user_id)}


def line(product=None, quantity=1, unit_price=100, tax_rate=0, **extra) -> dict:
    """Helper to build a sale line payload."""
    data = {'quantity': quantity, 'unit_price': unit_price, 'tax_rate': tax_rate}
    if product is not None:
        data['product_id'] = product.id
    data.update(extra)
    return data
