# Overview: Threaded concurrency tests against a file-backed SQLite database.

"""
Concurrency tests for the fulfillment core.

Each worker runs in its own thread and app context, so each gets its own
session and connection; SQLite's write lock is the only thing keeping them
apart.
"""
import os
import tempfile
import threading
import unittest
from datetime import timedelta
from decimal import Decimal

from fulfillment import create_app
from fulfillment.errors import SlotFull
from fulfillment.extensions import db
from fulfillment.models import Branch, Ingredient, Order, Product, StockTransaction, DeliverySlotBooking
from fulfillment.services.registry import get_core
from fulfillment.time_utils import utcnow, local_date

from conftest import FakeSlipReader, MERCHANT_ACCOUNT, make_slip


CUSTOMER = {"customer_name": "Concurrent Customer"}


class ConcurrencyTests(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        db_path = os.path.join(self.tmpdir.name, "concurrency.db")
        self.app = create_app({
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
            "MERCHANT_ACCOUNTS": MERCHANT_ACCOUNT,
            "SLIPOK_API_KEY": "",
            "DELIVERY_SLOT_CAPACITY": "MORNING:8,EVENING:3",
        })

        with self.app.app_context():
            db.drop_all()
            db.create_all()

            branch = Branch(code="BR1", name="Concurrency Kitchen", timezone="Asia/Bangkok", tax_rate_bps=700)
            db.session.add(branch)
            db.session.commit()
            self.branch_id = branch.id

            product = Product(branch_id=self.branch_id, name="Party Tray", price_cents=83178)
            db.session.add(product)
            db.session.commit()
            self.product_id = product.id

            core = get_core()
            ingredient = core.stock.create_ingredient(
                branch_id=self.branch_id,
                name="Rice",
                unit="kg",
                opening_stock="5",
                min_stock_level="1",
            )
            self.ingredient_id = ingredient.id
            core.recipes.add_line(self.product_id, self.ingredient_id, "0.5")

    def tearDown(self):
        with self.app.app_context():
            db.session.remove()
            db.drop_all()
            db.session.remove()
            db.engine.dispose()
        self.tmpdir.cleanup()

    def _run_threads(self, targets):
        threads = [threading.Thread(target=target) for target in targets]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

    def _create_order(self, delivery=None):
        with self.app.app_context():
            try:
                return get_core().ledger.create_order(
                    [{"product_id": self.product_id, "quantity": 1}], CUSTOMER, delivery
                )
            finally:
                db.session.remove()

    def test_order_numbers_unique_and_gapless(self):
        created = []
        errors = []
        lock = threading.Lock()

        def worker():
            with self.app.app_context():
                try:
                    result = get_core().ledger.create_order(
                        [{"product_id": self.product_id, "quantity": 1}], CUSTOMER
                    )
                    with lock:
                        created.append(result["order_number"])
                except Exception as exc:
                    with lock:
                        errors.append(exc)
                finally:
                    db.session.remove()

        self._run_threads([worker] * 10)

        self.assertFalse(errors)
        self.assertEqual(len(created), len(set(created)))
        suffixes = sorted(number.rsplit("-", 1)[1] for number in created)
        self.assertEqual(suffixes, [f"{n:03d}" for n in range(1, 11)])

    def test_delivery_slot_never_overbooked(self):
        with self.app.app_context():
            tomorrow = local_date(utcnow(), "Asia/Bangkok") + timedelta(days=1)
        delivery = {
            "delivery_type": "delivery",
            "delivery_address": "1 Silom Rd",
            "delivery_date": tomorrow.isoformat(),
            "delivery_time_slot": "EVENING",
        }

        results = []
        lock = threading.Lock()

        def worker():
            with self.app.app_context():
                try:
                    get_core().ledger.create_order(
                        [{"product_id": self.product_id, "quantity": 1}], CUSTOMER, delivery
                    )
                    with lock:
                        results.append("booked")
                except Exception as exc:
                    with lock:
                        results.append(exc)
                finally:
                    db.session.remove()

        self._run_threads([worker] * 8)

        self.assertEqual(results.count("booked"), 3)
        failures = [r for r in results if r != "booked"]
        self.assertTrue(all(isinstance(f, SlotFull) for f in failures), failures)

        with self.app.app_context():
            booking = db.session.query(DeliverySlotBooking).one()
            self.assertEqual(booking.booked_count, 3)
            self.assertEqual(db.session.query(Order).count(), 3)

    def test_concurrent_preparing_deducts_once(self):
        order_id = self._create_order()["order_id"]
        with self.app.app_context():
            get_core().status.transition(order_id, "confirmed", actor="admin")
            db.session.remove()

        results = []
        lock = threading.Lock()

        def worker():
            with self.app.app_context():
                try:
                    result = get_core().status.transition(order_id, "preparing", actor="kitchen")
                    with lock:
                        results.append(result["changed"])
                except Exception as exc:
                    with lock:
                        results.append(exc)
                finally:
                    db.session.remove()

        self._run_threads([worker] * 4)

        self.assertEqual(sorted(results), [False, False, False, True])
        with self.app.app_context():
            rows = db.session.query(StockTransaction).filter_by(order_id=order_id).count()
            stock = db.session.get(Ingredient, self.ingredient_id).current_stock
        self.assertEqual(rows, 1)
        self.assertEqual(stock, Decimal("4.5"))

    def test_same_slip_attaches_to_one_order(self):
        first = self._create_order()["order_id"]
        second = self._create_order()["order_id"]

        reader = FakeSlipReader()
        reader.script("slip.jpg", make_slip(ref="TXN-RACE", transferred_at=utcnow() - timedelta(hours=1)))
        self.app.extensions["fulfillment"].payments.slip_reader = reader

        outcomes = []
        lock = threading.Lock()

        def worker(order_id):
            def run():
                with self.app.app_context():
                    try:
                        decision = get_core().payments.process_slip(order_id, "slip.jpg")
                        with lock:
                            outcomes.append(decision.outcome)
                    except Exception as exc:
                        with lock:
                            outcomes.append(exc)
                    finally:
                        db.session.remove()
            return run

        self._run_threads([worker(first), worker(second)])

        self.assertEqual(sorted(outcomes), ["approved", "duplicate"])
        with self.app.app_context():
            paid = db.session.query(Order).filter(Order.payment_ref == "TXN-RACE").count()
        self.assertEqual(paid, 1)


if __name__ == "__main__":
    unittest.main()
