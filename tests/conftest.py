"""Shared test fixtures for the billing test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite, CSRF off)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- seed_data: a user with a Stripe customer mapping, a user without one,
  and a small product catalog
- login: helper that logs a seeded user in through /auth/login
"""

import pytest

from app import create_app
from app.extensions import db as _db
from app.models.billing import Customer
from app.models.catalog import Price, Product
from app.models.user import User


@pytest.fixture(scope="session")
def app():
    """Create the Flask application configured for testing."""
    app = create_app("testing")
    yield app


@pytest.fixture(autouse=True)
def db_session(app):
    """Create all tables before each test, drop after."""
    with app.app_context():
        _db.create_all()
        yield _db.session
        _db.session.rollback()
        _db.drop_all()


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture
def seed_data(app, db_session):
    """Seed users, a customer mapping and a catalog.

    Returns a dict of plain IDs so tests can use them across contexts.
    """
    # --- Subscriber: already has a Stripe customer ---
    subscriber = User(email="sub@example.com", full_name="Sam Subscriber")
    subscriber.set_password("subpass123")
    _db.session.add(subscriber)

    # --- Newcomer: no Stripe customer yet ---
    newcomer = User(email="new@example.com", full_name="Nia Newcomer")
    newcomer.set_password("newpass123")
    _db.session.add(newcomer)
    _db.session.flush()

    _db.session.add(Customer(id=subscriber.id, stripe_customer_id="cus_sub"))

    # --- Catalog ---
    _db.session.add(Product(
        id="prod_pro", active=True, name="Pro", metadata_={"order": "2"},
    ))
    _db.session.add(Product(
        id="prod_basic", active=True, name="Basic", metadata_={"order": "1"},
    ))
    _db.session.add(Product(id="prod_old", active=False, name="Legacy"))
    _db.session.add(Price(
        id="price_basic_monthly", product_id="prod_basic", active=True,
        currency="usd", type="recurring", unit_amount=900, interval="month",
        interval_count=1,
    ))
    _db.session.add(Price(
        id="price_pro_monthly", product_id="prod_pro", active=True,
        currency="usd", type="recurring", unit_amount=2900, interval="month",
        interval_count=1,
    ))
    _db.session.add(Price(
        id="price_pro_retired", product_id="prod_pro", active=False,
        currency="usd", type="recurring", unit_amount=1900, interval="month",
        interval_count=1,
    ))

    _db.session.commit()

    return {
        "subscriber_id": subscriber.id,
        "subscriber_email": "sub@example.com",
        "subscriber_password": "subpass123",
        "newcomer_id": newcomer.id,
        "newcomer_email": "new@example.com",
        "newcomer_password": "newpass123",
        "stripe_customer_id": "cus_sub",
    }


@pytest.fixture
def login(client):
    """Log a user in via the login form."""

    def _login(email, password):
        return client.post(
            "/auth/login",
            data={"email": email, "password": password},
            follow_redirects=False,
        )

    return _login
