"""
Shared test fixtures.

Test fixtures:
- app: Flask application with an in-memory SQLite database
- client: test client for making HTTP requests
- auth_client: test client already signed up and logged in
- login_as: helper that signs up and logs in a given client
- store / catalog / ledger: services bound to the test session
- owner, other_owner: user ids for service-level tests
- make_product / make_batch: factories for catalog and ledger rows
"""

from datetime import datetime

import pytest

from stockbook import create_app, db, User
from stockbook.catalog import CatalogManager
from stockbook.ledger import BatchLedger
from stockbook.logging_config import reset_logging
from stockbook.store import LedgerStore


@pytest.fixture
def app():
    """
    Create and configure test Flask application.

    Uses in-memory SQLite database for isolation between tests.
    """
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SECRET_KEY': 'test-secret',
        'LOG_LEVEL': 'DEBUG',
    })

    with app.app_context():
        db.create_all()
        yield app

    reset_logging()


@pytest.fixture
def client(app):
    return app.test_client()


def login(client, username='owner', password='secret'):
    """Sign up (if needed) and log in; returns the user id."""
    client.post('/auth/signup', json={'username': username, 'password': password})
    resp = client.post('/auth/login', json={'username': username, 'password': password})
    assert resp.status_code == 200
    return resp.get_json()['id']


@pytest.fixture
def login_as():
    return login


@pytest.fixture
def auth_client(client):
    login(client)
    return client


@pytest.fixture
def store(app):
    return LedgerStore(db.session)


@pytest.fixture
def catalog(store):
    return CatalogManager(store)


@pytest.fixture
def ledger(store):
    return BatchLedger(store)


def _user(username):
    user = User(username=username)
    user.set_password('pw')
    db.session.add(user)
    db.session.commit()
    return user.id


@pytest.fixture
def owner(app):
    return _user('owner')


@pytest.fixture
def other_owner(app):
    return _user('intruder')


@pytest.fixture
def make_product(catalog):
    def factory(owner_id, sku='SKU-1', **fields):
        data = {'sku': sku, 'name': f'Product {sku}', 'unit_type': 'count', 'base_unit': 'box'}
        data.update(fields)
        return catalog.create(owner_id, data)
    return factory


@pytest.fixture
def make_batch(ledger):
    def factory(owner_id, product_id, **fields):
        data = {
            'product_id': product_id,
            'boxes_purchased': 10,
            'quantity_per_box': '12',
            'unit_per_box': 'piece',
            'cost_per_box': '100.00',
            'reorder_level': 5,
            'critical_level': 2,
        }
        data.update(fields)
        return ledger.create_batch(owner_id, data)
    return factory


class FixedClock:
    """Callable clock for analytics tests; set .moment to move it."""

    def __init__(self, moment=datetime(2024, 3, 15, 12, 0, 0)):
        self.moment = moment

    def __call__(self):
        return self.moment


@pytest.fixture
def clock():
    return FixedClock()
