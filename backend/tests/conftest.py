"""
Pytest fixtures for barstock backend tests.

Provides a fresh in-memory database per test, a branch/branch/warehouse
store layout, users in every role, and a test client.
"""

import pytest

from barstock import create_app
from barstock.extensions import db
from barstock.models import Store, User


@pytest.fixture(scope='function')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'DEFAULT_DEPOSIT_EXPIRY_DAYS': 30,
        'EXPIRY_WARNING_DAYS': 7,
        'DEFAULT_DIFF_TOLERANCE': 5.0,
    })

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


def _make_store(db_session, code, name, *, central=False):
    store = Store(code=code, name=name, is_central=central, active=True)
    db_session.add(store)
    db_session.commit()
    return store


def _make_user(db_session, username, role, stores=()):
    user = User(username=username, display_name=username.replace("_", " ").title(), role=role, active=True)
    user.stores.extend(stores)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def branch_a(db_session):
    """Branch A (bar)."""
    return _make_store(db_session, "BRA", "Branch A")


@pytest.fixture(scope='function')
def branch_b(db_session):
    """Branch B (bar)."""
    return _make_store(db_session, "BRB", "Branch B")


@pytest.fixture(scope='function')
def central(db_session):
    """Central warehouse."""
    return _make_store(db_session, "HQ", "Central Warehouse", central=True)


@pytest.fixture(scope='function')
def staff_a(db_session, branch_a):
    return _make_user(db_session, "staff_a", "staff", [branch_a])


@pytest.fixture(scope='function')
def bar_a(db_session, branch_a):
    return _make_user(db_session, "bar_a", "bar", [branch_a])


@pytest.fixture(scope='function')
def staff_b(db_session, branch_b):
    return _make_user(db_session, "staff_b", "staff", [branch_b])


@pytest.fixture(scope='function')
def hq_user(db_session, central):
    return _make_user(db_session, "hq_user", "hq", [central])


@pytest.fixture(scope='function')
def owner(db_session, branch_a, branch_b):
    return _make_user(db_session, "owner", "owner", [branch_a, branch_b])


@pytest.fixture(scope='function')
def accountant(db_session, branch_a):
    return _make_user(db_session, "accountant", "accountant", [branch_a])


@pytest.fixture(scope='function')
def customer(db_session):
    return _make_user(db_session, "customer_somchai", "customer")


@pytest.fixture(scope='function')
def make_user(db_session):
    """Factory for one-off users: make_user("name", "role", [store, ...])."""
    def factory(username, role, stores=()):
        return _make_user(db_session, username, role, stores)
    return factory
