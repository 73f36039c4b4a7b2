"""
Pytest fixtures for Charla backend tests.

Provides test database setup, tenant fixtures, payment methods, a fake
oracle and the test client.
"""

import json
from datetime import datetime

import pytest

from charla import create_app
from charla.extensions import db
from charla.models import Tenant
from charla.services import catalog_service, price_service


NOW = datetime(2026, 10, 17, 15, 0, 0)


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'OPENAI_API_KEY': '',
        'GENERATE_REPLIES': False,
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
def tenant_a(db_session):
    """Tenant A (first business)."""
    tenant = Tenant(name="Empanadas Doña Rosa", timezone="UTC", is_active=True)
    db_session.add(tenant)
    db_session.commit()
    return tenant


@pytest.fixture(scope='function')
def tenant_b(db_session):
    """Tenant B (second business)."""
    tenant = Tenant(name="Kiosco El Sol", timezone="UTC", is_active=True)
    db_session.add(tenant)
    db_session.commit()
    return tenant


@pytest.fixture(scope='function')
def payment_methods(db_session):
    """Global default payment methods, keyed by name."""
    methods = catalog_service.ensure_default_payment_methods()
    db_session.commit()
    return {m.name: m for m in methods}


@pytest.fixture(scope='function')
def empanadas(db_session, tenant_a):
    """Catalogued product with a current price of $250."""
    product = catalog_service.create_product(tenant_a.id, "Empanadas")
    price_service.record_price_if_changed(product.id, 25000, now=datetime(2026, 10, 1, 12, 0, 0))
    db_session.commit()
    return product


class FakeOracle:
    """
    Stands in for the language model.

    replies: extraction replies (dicts are JSON-encoded, strings are
    returned verbatim), consumed in order.
    """

    def __init__(self, *replies, chat_reply=None):
        self.replies = list(replies)
        self.prompts = []
        self.chat_reply = chat_reply
        self.chat_calls = []

    def complete(self, prompt):
        self.prompts.append(prompt)
        if not self.replies:
            return json.dumps({"hasSaleData": False, "hasExpenseData": False})
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply if isinstance(reply, str) else json.dumps(reply)

    def chat(self, messages):
        self.chat_calls.append(messages)
        return self.chat_reply


def sale_reply(items, total, payments=None, customer=None, note=None):
    """Extraction reply for a completed sale."""
    return {
        "hasSaleData": True,
        "sale": {
            "items": [
                {
                    "product_name": name,
                    "presentation": None,
                    "quantity": quantity,
                    "unit_price": unit_price,
                    "subtotal": quantity * unit_price,
                }
                for name, quantity, unit_price in items
            ],
            "total": total,
            "customer": customer,
            "note": note,
            "payment_methods": [
                {"method_name": method, "amount": amount}
                for method, amount in (payments or [])
            ],
        },
        "hasExpenseData": False,
    }


def tenant_headers(tenant) -> dict:
    """Helper to create the gateway tenant header."""
    return {'X-Tenant-Id': str(tenant.id)}
