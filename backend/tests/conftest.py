"""
Pytest fixtures for shopledger backend tests.

Provides an in-memory application, a per-test table wipe, and factories
for stores, users, counterparties and stock.
"""

import pytest

from shopledger import create_app
from shopledger.extensions import db
from shopledger.services import auth_service, counterparty_service, products_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'REQUIRE_OPEN_CASH_SESSION': False,
        'HIGH_RISK_THRESHOLD': 0.5,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def file_app(tmp_path):
    """Application on a SQLite file so several threads can share the database."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'ledger.db'}",
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'REQUIRE_OPEN_CASH_SESSION': False,
    })

    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.drop_all()
        db.engine.dispose()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        db.session.rollback()
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        db.session.rollback()
        app.config['REQUIRE_OPEN_CASH_SESSION'] = False


@pytest.fixture(scope='function')
def store(db_session):
    return auth_service.create_store("Main Shop", "MAIN")


@pytest.fixture(scope='function')
def other_store(db_session):
    return auth_service.create_store("Second Shop", "SECOND")


@pytest.fixture(scope='function')
def owner_with_token(store):
    return auth_service.create_user(store.id, "owner", role="owner", full_name="Shop Owner")


@pytest.fixture(scope='function')
def owner(owner_with_token):
    return owner_with_token[0]


@pytest.fixture(scope='function')
def seller_with_token(store):
    return auth_service.create_user(store.id, "seller", role="seller")


@pytest.fixture(scope='function')
def seller(seller_with_token):
    return seller_with_token[0]


@pytest.fixture(scope='function')
def customer(store):
    return counterparty_service.create_counterparty(store.id, "customer", name="Jane Roe", phone="555-0100")


@pytest.fixture(scope='function')
def supplier(store):
    return counterparty_service.create_counterparty(store.id, "supplier", name="Wholesale Ltd")


@pytest.fixture(scope='function')
def accessory(store, owner):
    """Accessory with quantity 10, min_qty 3."""
    return products_service.create_accessory(
        store.id,
        sku="CASE-01",
        name="Phone case",
        quantity=10,
        min_qty=3,
        buy_price_cents=300,
        sell_price_cents=1000,
        user_id=owner.id,
    )


@pytest.fixture(scope='function')
def phone(store, owner):
    return products_service.create_phone(
        store.id,
        imei="356938035643809",
        name="Pixel 8 128GB",
        buy_price_cents=30000,
        sell_price_cents=45000,
        user_id=owner.id,
    )


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def owner_headers(owner_with_token):
    return auth_headers(owner_with_token[1])


@pytest.fixture(scope='function')
def seller_headers(seller_with_token):
    return auth_headers(seller_with_token[1])
