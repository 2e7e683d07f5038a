"""
Pytest fixtures for order ledger backend tests.

Provides the in-memory application, per-test data wipe, actors for each
role, replaceable collaborators (notifier, refund gateway) and small
catalog/order factories.
"""

import pytest

from orderledger import create_app
from orderledger.extensions import db
from orderledger.models import Product, ProductVariant
from orderledger.permissions.definitions import (
    ROLE_ADMIN,
    ROLE_CUSTOMER,
    ROLE_INVENTORY_MANAGER,
    ROLE_SALES_STAFF,
)
from orderledger.permissions.policy import Actor
from orderledger.services import inventory_ledger, order_service
from orderledger.services.gateways import RefundGateway, RefundResult
from orderledger.services.notifications import Notifier


TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    'NOTIFICATIONS_ASYNC': False,
    'LEDGER_RETRY_BACKOFF': 0,
}


class RecordingNotifier(Notifier):
    """Collects delivered events as (event, payload) tuples."""

    def __init__(self):
        self.events = []
        self.fail_with = None

    def _record(self, event, payload):
        if self.fail_with is not None:
            raise self.fail_with
        self.events.append((event, payload))

    def order_status_changed(self, payload):
        self._record("order_status_changed", payload)

    def refund_created(self, payload):
        self._record("refund_created", payload)

    def of(self, event):
        return [payload for name, payload in self.events if name == event]


class ScriptedGateway(RefundGateway):
    """Refund gateway whose outcome each test chooses."""

    def __init__(self):
        self.calls = []
        self.accept = True
        self.message = "accepted"
        self.raise_exc = None

    def refund(self, amount_cents, external_payment_reference):
        self.calls.append((amount_cents, external_payment_reference))
        if self.raise_exc is not None:
            raise self.raise_exc
        return RefundResult(accepted=self.accept, message=self.message)


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TEST_CONFIG)

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
def notifier(app):
    recorder = RecordingNotifier()
    app.extensions["notifier"].notifier = recorder
    return recorder


@pytest.fixture(scope='function')
def gateway(app):
    scripted = ScriptedGateway()
    app.extensions["refund_gateway"] = scripted
    return scripted


# =============================================================================
# ACTORS
# =============================================================================

@pytest.fixture
def admin():
    return Actor(user_id=1, role=ROLE_ADMIN)


@pytest.fixture
def sales_staff():
    return Actor(user_id=2, role=ROLE_SALES_STAFF)


@pytest.fixture
def inventory_manager():
    return Actor(user_id=3, role=ROLE_INVENTORY_MANAGER)


@pytest.fixture
def customer():
    return Actor(user_id=100, role=ROLE_CUSTOMER)


@pytest.fixture
def other_customer():
    return Actor(user_id=101, role=ROLE_CUSTOMER)


def actor_headers(actor: Actor) -> dict:
    """Helper to create the identity headers the auth gateway would set."""
    return {'X-User-Id': str(actor.user_id), 'X-User-Role': actor.role}


# =============================================================================
# CATALOG & ORDERS
# =============================================================================

@pytest.fixture
def make_variant(db_session, admin):
    """Factory: product + variant whose opening stock is recorded as a RESTOCK entry."""
    counter = {"n": 0}

    def _make(stock=5, base_price_cents=2000, additional_price_cents=0, size="M", color="Black"):
        counter["n"] += 1
        n = counter["n"]
        product = Product(name=f"Product {n}", slug=f"product-{n}", base_price_cents=base_price_cents)
        db_session.add(product)
        db_session.commit()

        variant = ProductVariant(
            product_id=product.id,
            sku=f"SKU-{n:03d}",
            size=size,
            color=color,
            additional_price_cents=additional_price_cents,
            stock_quantity=0,
        )
        db_session.add(variant)
        db_session.commit()

        if stock:
            inventory_ledger.record_adjustment(
                variant.id, inventory_ledger.CHANGE_RESTOCK, stock, "Opening stock", admin,
            )
        return variant

    return _make


@pytest.fixture
def variant(make_variant):
    return make_variant(stock=5)


@pytest.fixture
def place_order(db_session, notifier, gateway):
    """Factory: store-pickup order for `actor` (a customer orders for themselves)."""

    def _place(actor, variant, quantity=2, customer_id=None, **kwargs):
        kwargs.setdefault("payment_method", order_service.PAYMENT_METHOD_MOBILE_MONEY)
        kwargs.setdefault("delivery_method", order_service.DELIVERY_STORE_PICKUP)
        return order_service.create_order(
            customer_id=customer_id if customer_id is not None else actor.user_id,
            items=[{"variant_id": variant.id, "quantity": quantity}],
            actor=actor,
            **kwargs,
        )

    return _place
