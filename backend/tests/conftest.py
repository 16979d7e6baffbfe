"""
Pytest fixtures for Kasa backend tests.

Provides test database setup, a scriptable card terminal, a recording event
publisher and small builders for carts, customers and register sessions.
"""

import pytest

from kasa import create_app
from kasa.extensions import db
from kasa.services import credit_service, register_service
from kasa.services.cart_service import Cart, CartLine
from kasa.services.discount_service import Discount
from kasa.services.terminal_service import TerminalGateway, TerminalResult


class FakeTerminal:
    """Integrated terminal double: approves, declines or fails to connect on demand."""

    def __init__(self, *, manual=False, connects=True, approve=True):
        self.manual = manual
        self.connects = connects
        self.approve = approve
        self.charges = []
        self.connect_calls = 0
        self.disconnect_calls = 0
        self.on_payment = None

    def is_manual_mode(self):
        return self.manual

    def connect(self, device_name):
        self.connect_calls += 1
        return self.connects

    def process_payment(self, amount_cents):
        if self.on_payment:
            self.on_payment(amount_cents)
        if not self.approve:
            return TerminalResult(success=False, message="Declined")
        self.charges.append(amount_cents)
        return TerminalResult(success=True, message="Approved")

    def disconnect(self):
        self.disconnect_calls += 1


class RecordingPublisher:
    """Keeps published events in memory instead of the outbox table."""

    def __init__(self):
        self.events = []

    def publish(self, name, payload):
        self.events.append((name, dict(payload)))

    def names(self):
        return [name for name, _ in self.events]

    def last(self, name):
        for event_name, payload in reversed(self.events):
            if event_name == name:
                return payload
        return None


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
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
    """Fresh data for each test (schema kept)."""
    meta = db.metadata
    for table in reversed(meta.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()

    yield db.session

    db.session.rollback()
    db.session.remove()


@pytest.fixture
def terminal():
    return FakeTerminal()


@pytest.fixture
def gateway(app, terminal):
    """Gateway over the fake terminal, also installed as the app's terminal."""
    gateway = TerminalGateway(terminal, device_name="Ingenico")
    previous = app.extensions["kasa.terminal"]
    app.extensions["kasa.terminal"] = gateway
    yield gateway
    app.extensions["kasa.terminal"] = previous


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def open_session(db_session, publisher):
    """OPEN session on the default register with a 100.00 float."""
    return register_service.open_register(10_000, publisher=publisher)


@pytest.fixture
def make_customer(db_session):
    def _make(name="Ayse Yilmaz", credit_limit_cents=10_000, debt_cents=0):
        customer = credit_service.add_customer(name=name, phone="05550000000", credit_limit_cents=credit_limit_cents)
        if debt_cents:
            credit_service.post_debt(customer, debt_cents, "Opening balance")
        return customer
    return _make


def make_cart(*lines, discount=None):
    """
    Build a cart from (product_id, unit_price_cents, quantity) tuples.

    Tax rate 0 keeps the arithmetic in tests readable: unit price == gross.
    """
    return Cart(
        lines=tuple(
            CartLine(
                product_id=product_id,
                name=f"Product {product_id}",
                unit_price_cents=price,
                unit_price_with_tax_cents=price,
                tax_rate=0,
                quantity=quantity,
            )
            for product_id, price, quantity in lines
        ),
        discount=Discount.from_dict(discount),
    )


def cart_payload(*lines, discount=None):
    """Wire shape of make_cart for route tests."""
    data = {
        "lines": [
            {"product_id": pid, "name": f"Product {pid}", "unit_price_cents": price, "tax_rate": 0, "quantity": qty}
            for pid, price, qty in lines
        ]
    }
    if discount:
        data["discount"] = discount
    return data
