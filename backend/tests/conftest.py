"""
Pytest fixtures for mallhub backend tests.

Provides the app with an in-memory database, a per-test clean session and
shop/product/box fixtures.
"""

import pytest

from mallhub import create_app
from mallhub.extensions import db
from mallhub.models import Shop, Product, Box


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'TX_RETRY_ATTEMPTS': 3,
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
def shop_a(db_session):
    shop = Shop(name="Shop A - Bakery", is_active=True)
    db_session.add(shop)
    db_session.commit()
    return shop


@pytest.fixture(scope='function')
def shop_b(db_session):
    shop = Shop(name="Shop B - Books", is_active=True)
    db_session.add(shop)
    db_session.commit()
    return shop


@pytest.fixture(scope='function')
def shop_c(db_session):
    shop = Shop(name="Shop C - Coffee", is_active=True)
    db_session.add(shop)
    db_session.commit()
    return shop


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory for products with explicit price and stock."""
    def _make(shop, name="Product", price_cents=1000, stock=10, is_active=True):
        product = Product(
            shop_id=shop.id,
            name=name,
            price_cents=price_cents,
            stock=stock,
            is_active=is_active,
        )
        db_session.add(product)
        db_session.commit()
        return product
    return _make


@pytest.fixture(scope='function')
def product_a(make_product, shop_a):
    """Product in Shop A: 10.00, 10 on hand."""
    return make_product(shop_a, name="Baguette", price_cents=1000, stock=10)


@pytest.fixture(scope='function')
def product_b(make_product, shop_b):
    """Product in Shop B: 25.00, 5 on hand."""
    return make_product(shop_b, name="Novel", price_cents=2500, stock=5)


@pytest.fixture(scope='function')
def box_1(db_session):
    box = Box(numero="A-01", surface=12.5, rent_cents=45000, is_free=True)
    db_session.add(box)
    db_session.commit()
    return box


@pytest.fixture(scope='function')
def box_2(db_session):
    box = Box(numero="A-02", surface=20.0, rent_cents=70000, is_free=True)
    db_session.add(box)
    db_session.commit()
    return box
