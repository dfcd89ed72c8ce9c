"""
Pytest fixtures for StockRun backend tests.

Provides an in-memory app per test, a ManualScheduler for the location
components, users per role, a small catalog and auth helpers.
"""

from datetime import date, timedelta

import pytest

from stockrun import create_app
from stockrun.extensions import db
from stockrun.models import Order, OrderLine, Product
from stockrun.models.auth import ROLE_ADMIN, ROLE_DRIVER, ROLE_MANAGER, ROLE_SALES_REP, ROLE_SECRETARY
from stockrun.scheduling import ManualScheduler
from stockrun.services.auth_service import create_user
from stockrun.time_utils import today, utcnow


PASSWORD = "Password123!"


@pytest.fixture(scope='function')
def scheduler():
    return ManualScheduler()


@pytest.fixture(scope='function')
def app(scheduler):
    """Create application for testing."""
    app = create_app(
        {
            'TESTING': True,
            'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
            'BCRYPT_ROUNDS': 4,
            'POSITION_TIMEOUT_MS': 0,
            'LOG_LEVEL': 'WARNING',
        },
        scheduler=scheduler,
    )

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    return db.session


@pytest.fixture(scope='function')
def make_user(db_session):
    counter = {"n": 0}

    def _make(role, name=None):
        counter["n"] += 1
        n = counter["n"]
        return create_user(name or f"{role.title()} {n}", f"{role.lower()}{n}@stockrun.test", PASSWORD, role)

    return _make


@pytest.fixture(scope='function')
def admin(make_user):
    return make_user(ROLE_ADMIN, "Admin")


@pytest.fixture(scope='function')
def secretary(make_user):
    return make_user(ROLE_SECRETARY, "Secretary")


@pytest.fixture(scope='function')
def manager(make_user):
    return make_user(ROLE_MANAGER, "Manager")


@pytest.fixture(scope='function')
def sales_rep(make_user):
    return make_user(ROLE_SALES_REP, "Rep One")


@pytest.fixture(scope='function')
def driver(make_user):
    return make_user(ROLE_DRIVER, "Driver One")


@pytest.fixture(scope='function')
def driver2(make_user):
    return make_user(ROLE_DRIVER, "Driver Two")


@pytest.fixture(scope='function')
def products(db_session):
    """Three products; P1 and P2 are used by most scenarios."""
    items = [
        Product(sku="P-001", name="Ginger Beer", category="Drinks", stock=100, price_cents=250),
        Product(sku="P-002", name="Cream Soda", category="Drinks", stock=100, price_cents=200),
        Product(sku="P-003", name="Orange Barley", category="Drinks", stock=50, price_cents=400),
    ]
    db_session.add_all(items)
    db_session.commit()
    return items


@pytest.fixture(scope='function')
def make_order(db_session):
    def _make(lines, *, delivery=None, status="PENDING", order_date=None):
        order = Order(
            customer_ref="C-1",
            customer_name="Corner Shop",
            order_date=order_date or utcnow(),
            expected_delivery_date=delivery,
            status=status,
        )
        for product, qty in lines:
            order.lines.append(OrderLine(product_id=product.id, quantity=qty, unit_price_cents=product.price_cents))
        db_session.add(order)
        db_session.commit()
        return order

    return _make


@pytest.fixture(scope='function')
def d1():
    return today()


@pytest.fixture(scope='function')
def d2():
    return today() + timedelta(days=1)


def login(client, user, password: str = PASSWORD) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={'email': user.email, 'password': password})
    assert response.status_code == 200, response.get_json()
    return response.get_json()['token']


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def headers_for(client):
    def _headers(user):
        return auth_headers(login(client, user))

    return _headers


def days_ago(n: int) -> date:
    return today() - timedelta(days=n)
