"""
Pytest fixtures for the cafe billing engine tests.

Provides the application, a clean database per test, seeded staff,
products, tables and an authenticated test client.
"""

import pytest

from cafepos import create_app
from cafepos.config import TestConfig
from cafepos.extensions import db
from cafepos.services import auth_service, stock_service, table_service


PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)

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
    """Create fresh database for each test."""
    # Clear all data but keep schema
    for table in reversed(db.metadata.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()

    yield db.session

    db.session.rollback()


@pytest.fixture(scope='function')
def products(db_session):
    """Small menu with opening stock booked through the ledger."""
    return {
        "coffee": stock_service.create_product("Coffee", 300, initial_stock=20, sku="COF"),
        "cake": stock_service.create_product("Cake", 450, initial_stock=5, sku="CAK", min_stock_level=5),
        "sandwich": stock_service.create_product("Sandwich", 800, initial_stock=10, sku="SAN"),
    }


@pytest.fixture(scope='function')
def table(db_session):
    return table_service.create_table("1", capacity=4)


@pytest.fixture(scope='function')
def other_table(db_session):
    return table_service.create_table("2", capacity=2)


@pytest.fixture(scope='function')
def users(db_session):
    return {
        "admin": auth_service.create_user("admin", PASSWORD, "Ada Admin", role="admin"),
        "manager": auth_service.create_user("manager", PASSWORD, "Mia Manager", role="manager"),
        "cashier": auth_service.create_user("cashier", PASSWORD, "Cal Cashier", role="cashier"),
    }


def get_auth_token(client, username: str, password: str = PASSWORD) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'username': username,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def cashier_headers(client, users):
    return auth_headers(get_auth_token(client, "cashier"))


@pytest.fixture(scope='function')
def manager_headers(client, users):
    return auth_headers(get_auth_token(client, "manager"))
