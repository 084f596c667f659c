"""
Pytest fixtures for the fulfillment core tests.

Provides an in-memory app, a clean database per test, a small catalog,
a frozen clock, an event recorder and a scripted slip reader.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta

import pytest

from fulfillment import create_app
from fulfillment.config import CoreSettings
from fulfillment.extensions import db
from fulfillment.models import Branch, Product, ProductVariant
from fulfillment.services.events import EventNotifier
from fulfillment.services.registry import FulfillmentCore
from fulfillment.services.slip_reader import SlipData, SlipReadResult


# 12:00 on 14 March in Bangkok
NOW = datetime(2026, 3, 14, 5, 0, 0)
MERCHANT_ACCOUNT = "1234567890"


class FrozenClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeSlipReader:
    """Returns scripted results per image reference and records every call."""

    def __init__(self):
        self.results = {}
        self.calls = []

    def script(self, image_reference: str, result: SlipReadResult) -> None:
        self.results[image_reference] = result

    def read_slip(self, image_reference: str) -> SlipReadResult:
        self.calls.append(image_reference)
        result = self.results.get(image_reference)
        if result is None:
            return SlipReadResult.failure("unknown image")
        if isinstance(result, Exception):
            raise result
        return result


def make_slip(ref="TXN-0001", amount_cents=89000, transferred_at=None, receiver_account=MERCHANT_ACCOUNT):
    return SlipReadResult.success(
        SlipData(
            transaction_ref=ref,
            amount_cents=amount_cents,
            transferred_at=transferred_at or NOW - timedelta(hours=2),
            sender_account="xxx-x-x9999-x",
            sender_name="MR CUSTOMER",
            sender_bank="004",
            receiver_account=receiver_account,
            receiver_name="KITCHEN CO",
            receiver_bank="014",
        )
    )


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'MERCHANT_ACCOUNTS': MERCHANT_ACCOUNT,
        'SLIPOK_API_KEY': '',
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


@pytest.fixture
def clock():
    return FrozenClock(NOW)


@pytest.fixture
def published():
    return []


@pytest.fixture
def slip_reader():
    return FakeSlipReader()


@pytest.fixture
def settings():
    return CoreSettings(
        default_branch_code="BR1",
        delivery_slot_capacity={"MORNING": 2, "EVENING": 1},
        merchant_accounts=(MERCHANT_ACCOUNT,),
        slip_amount_tolerance_cents=100,
        slip_recency_hours=24,
        slip_clock_skew_minutes=5,
    )


@pytest.fixture
def core(db_session, settings, clock, published, slip_reader):
    notifier = EventNotifier()
    notifier.subscribe(published.append)
    return FulfillmentCore(
        db_session,
        settings=settings,
        notifier=notifier,
        slip_reader=slip_reader,
        clock=clock,
    )


@dataclass
class Catalog:
    branch: Branch
    product_a: Product
    product_b: Product
    product_c: Product
    large_b: ProductVariant
    flour: object
    sugar: object


@pytest.fixture
def catalog(db_session, core):
    """
    product_a  545.00, recipe 0.3 flour per unit
    product_b  184.00, variant "Large" +20.00
    product_c  831.78 (890.00 with 7% tax), recipe 1 sugar per unit
    flour: 10.000 kg in stock, minimum 2.000, 10.00 per kg
    sugar: 0.500 kg in stock, minimum 1.000
    """
    branch = Branch(code="BR1", name="Main Kitchen", timezone="Asia/Bangkok", tax_rate_bps=700)
    db_session.add(branch)
    db_session.commit()

    product_a = Product(branch_id=branch.id, name="Khao Man Gai Set", price_cents=54500)
    product_b = Product(branch_id=branch.id, name="Thai Tea", price_cents=18400, cost_cents=4000)
    product_c = Product(branch_id=branch.id, name="Party Tray", price_cents=83178)
    db_session.add_all([product_a, product_b, product_c])
    db_session.commit()

    large_b = ProductVariant(product_id=product_b.id, name="Large", price_modifier_cents=2000)
    db_session.add(large_b)
    db_session.commit()

    flour = core.stock.create_ingredient(
        branch_id=branch.id,
        name="Flour",
        unit="kg",
        cost_per_unit_cents=1000,
        opening_stock="10",
        min_stock_level="2",
    )
    sugar = core.stock.create_ingredient(
        branch_id=branch.id,
        name="Sugar",
        unit="kg",
        cost_per_unit_cents=500,
        opening_stock="0.5",
        min_stock_level="1",
    )
    core.recipes.add_line(product_a.id, flour.id, "0.3")
    core.recipes.add_line(product_c.id, sugar.id, "1")

    return Catalog(
        branch=branch,
        product_a=product_a,
        product_b=product_b,
        product_c=product_c,
        large_b=large_b,
        flour=flour,
        sugar=sugar,
    )


@pytest.fixture
def customer():
    return {"customer_name": "Somchai Jaidee", "customer_phone": "0812345678"}


@pytest.fixture
def place_order(core, catalog, customer):
    """Create an order for product_c (890.00 total) unless items are given."""
    def _place(items=None, delivery=None):
        if items is None:
            items = [{"product_id": catalog.product_c.id, "quantity": 1}]
        return core.ledger.create_order(items, customer, delivery)
    return _place
