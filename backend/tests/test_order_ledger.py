# Overview: Pytest coverage for order creation, order numbering and delivery slot quotas.

"""
Order Ledger Tests

Covers:
- Server-side totals (client prices ignored)
- All-or-nothing creation
- Gapless per-branch, per-day order numbers in the branch timezone
- Delivery slot capacity held server-side
"""

import pytest

from fulfillment.errors import (
    EmptyCart,
    InvalidCartItem,
    InvalidQuantity,
    ProductNotFound,
    VariantNotFound,
    SlotFull,
    TotalMismatch,
    ValidationError,
    BranchNotFound,
)
from fulfillment.models import (
    Order,
    OrderLineItem,
    OrderStatusEvent,
    DeliverySlotBooking,
    OrderNumberSequence,
)
from fulfillment.services.events import OrderCreated
from fulfillment.services.order_service import check_order_totals


def delivery(date="2026-03-15", slot="EVENING"):
    return {
        "delivery_type": "delivery",
        "delivery_address": "99 Sukhumvit Rd, Bangkok",
        "delivery_date": date,
        "delivery_time_slot": slot,
    }


class TestCreateOrderTotals:
    def test_totals_computed_from_catalog(self, core, catalog, customer):
        result = core.ledger.create_order(
            [
                {"product_id": catalog.product_a.id, "quantity": 2},
                {"product_id": catalog.product_b.id, "quantity": 1},
            ],
            customer,
        )
        assert result["subtotal_cents"] == 127400
        assert result["tax_cents"] == 8918
        assert result["discount_cents"] == 0
        assert result["total_cents"] == 136318
        assert result["status"] == "pending"
        # 10 base + 2 per item x 3 items
        assert result["estimated_prep_minutes"] == 16

    def test_client_prices_ignored(self, core, catalog, customer):
        """Price fields smuggled into the cart never reach the totals."""
        result = core.ledger.create_order(
            [
                {"product_id": catalog.product_a.id, "quantity": 2, "unit_price_cents": 1, "price": 0.01},
                {"product_id": catalog.product_b.id, "quantity": 1, "line_total_cents": 1},
            ],
            customer,
        )
        assert result["total_cents"] == 136318
        assert [line["unit_price_cents"] for line in result["line_items"]] == [54500, 18400]

    def test_variant_price_snapshot(self, core, catalog, customer, db_session):
        result = core.ledger.create_order(
            [{"product_id": catalog.product_b.id, "variant_id": catalog.large_b.id, "quantity": 2}],
            customer,
        )
        assert result["subtotal_cents"] == 40800

        # Later catalog edits never touch the stored line
        catalog.large_b.price_modifier_cents = 9999
        db_session.commit()
        line = db_session.query(OrderLineItem).filter_by(order_id=result["order_id"]).one()
        assert line.unit_price_cents == 20400
        assert line.variant_name == "Large"

    def test_persisted_rows(self, core, catalog, customer, db_session):
        result = core.ledger.create_order([{"product_id": catalog.product_c.id}], customer)

        order = db_session.get(Order, result["order_id"])
        assert order.total_cents == 89000
        assert order.customer_name == "Somchai Jaidee"
        assert order.payment_status.value == "unpaid"
        assert len(order.line_items) == 1

        history = db_session.query(OrderStatusEvent).filter_by(order_id=order.id).all()
        assert len(history) == 1
        assert history[0].from_status is None
        assert history[0].to_status.value == "pending"

    def test_order_created_event(self, core, catalog, customer, published):
        result = core.ledger.create_order([{"product_id": catalog.product_c.id}], customer)
        created = [e for e in published if isinstance(e, OrderCreated)]
        assert len(created) == 1
        assert created[0].order_number == result["order_number"]
        assert created[0].total_cents == 89000


class TestCreateOrderAtomicity:
    def test_unknown_product_writes_nothing(self, core, catalog, customer, db_session):
        with pytest.raises(ProductNotFound):
            core.ledger.create_order(
                [
                    {"product_id": catalog.product_a.id, "quantity": 1},
                    {"product_id": 99999, "quantity": 1},
                ],
                customer,
            )
        assert db_session.query(Order).count() == 0
        assert db_session.query(OrderLineItem).count() == 0
        assert db_session.query(OrderNumberSequence).count() == 0

    def test_bad_variant_writes_nothing(self, core, catalog, customer, db_session):
        with pytest.raises(VariantNotFound):
            core.ledger.create_order(
                [{"product_id": catalog.product_a.id, "variant_id": catalog.large_b.id}],
                customer,
            )
        assert db_session.query(Order).count() == 0

    def test_unknown_branch(self, core, catalog, customer):
        with pytest.raises(BranchNotFound):
            core.ledger.create_order([{"product_id": catalog.product_a.id}], customer, branch_code="NOPE")


class TestCartValidation:
    def test_empty_cart(self, core, catalog, customer):
        with pytest.raises(EmptyCart):
            core.ledger.create_order([], customer)

    def test_item_not_an_object(self, core, catalog, customer):
        with pytest.raises(InvalidCartItem):
            core.ledger.create_order(["oops"], customer)

    def test_missing_product_id(self, core, catalog, customer):
        with pytest.raises(InvalidCartItem):
            core.ledger.create_order([{"quantity": 1}], customer)

    @pytest.mark.parametrize("quantity", [0, -3, 1000, "2", 1.5, True])
    def test_bad_quantity(self, core, catalog, customer, quantity):
        with pytest.raises(InvalidQuantity):
            core.ledger.create_order([{"product_id": catalog.product_a.id, "quantity": quantity}], customer)

    def test_quantity_defaults_to_one(self, core, catalog, customer):
        result = core.ledger.create_order([{"product_id": catalog.product_a.id}], customer)
        assert result["line_items"][0]["quantity"] == 1

    def test_customer_name_required(self, core, catalog):
        with pytest.raises(ValidationError):
            core.ledger.create_order([{"product_id": catalog.product_a.id}], {"customer_phone": "0812345678"})

    def test_customer_name_too_short(self, core, catalog):
        with pytest.raises(ValidationError):
            core.ledger.create_order([{"product_id": catalog.product_a.id}], {"customer_name": "A"})

    def test_delivery_requires_address(self, core, catalog, customer):
        with pytest.raises(ValidationError):
            core.ledger.create_order(
                [{"product_id": catalog.product_a.id}],
                customer,
                {"delivery_type": "delivery"},
            )

    def test_slot_only_for_delivery(self, core, catalog, customer):
        with pytest.raises(ValidationError):
            core.ledger.create_order(
                [{"product_id": catalog.product_a.id}],
                customer,
                {"delivery_type": "pickup", "delivery_date": "2026-03-15", "delivery_time_slot": "MORNING"},
            )

    def test_unknown_delivery_type(self, core, catalog, customer):
        with pytest.raises(ValidationError):
            core.ledger.create_order([{"product_id": catalog.product_a.id}], customer, {"delivery_type": "drone"})


class TestOrderNumbers:
    def test_sequential_within_day(self, place_order):
        numbers = [place_order()["order_number"] for _ in range(3)]
        assert numbers == ["BR1-0314-001", "BR1-0314-002", "BR1-0314-003"]

    def test_resets_on_next_business_day(self, place_order, clock):
        assert place_order()["order_number"] == "BR1-0314-001"
        clock.advance(days=1)
        assert place_order()["order_number"] == "BR1-0315-001"

    def test_business_day_follows_branch_timezone(self, place_order, clock):
        """16:59 UTC is still the 14th in Bangkok; 17:00 UTC is the 15th."""
        place_order()
        clock.advance(hours=11, minutes=59)
        assert place_order()["order_number"] == "BR1-0314-002"
        clock.advance(minutes=1)
        assert place_order()["order_number"] == "BR1-0315-001"

    def test_failed_creation_leaves_no_gap(self, core, catalog, customer, place_order):
        place_order()
        with pytest.raises(ProductNotFound):
            core.ledger.create_order([{"product_id": 99999}], customer)
        assert place_order()["order_number"] == "BR1-0314-002"


class TestDeliverySlots:
    def test_booking_counts_server_side(self, place_order, db_session):
        place_order(delivery=delivery(slot="morning"))
        booking = db_session.query(DeliverySlotBooking).one()
        assert booking.slot_code == "MORNING"
        assert booking.capacity == 2
        assert booking.booked_count == 1

    def test_full_slot_rejected_without_gap(self, place_order, db_session):
        place_order(delivery=delivery())
        with pytest.raises(SlotFull):
            place_order(delivery=delivery())
        assert db_session.query(Order).count() == 1
        # The rolled-back attempt did not consume a number
        assert place_order()["order_number"] == "BR1-0314-002"

    def test_slots_are_per_date(self, place_order):
        place_order(delivery=delivery(date="2026-03-15"))
        place_order(delivery=delivery(date="2026-03-16"))

    def test_unknown_slot(self, place_order):
        with pytest.raises(ValidationError):
            place_order(delivery=delivery(slot="MIDNIGHT"))

    def test_past_delivery_date(self, place_order):
        with pytest.raises(ValidationError):
            place_order(delivery=delivery(date="2026-03-13"))

    def test_slot_requires_date(self, place_order):
        payload = delivery()
        del payload["delivery_date"]
        with pytest.raises(ValidationError):
            place_order(delivery=payload)

    def test_cancel_releases_slot(self, core, place_order, db_session):
        first = place_order(delivery=delivery())
        core.status.cancel(first["order_id"], actor="admin", reason="Customer changed plans")

        booking = db_session.query(DeliverySlotBooking).one()
        assert booking.booked_count == 0
        place_order(delivery=delivery())


class TestTotalsCheck:
    def test_line_total_mismatch(self):
        order = Order(subtotal_cents=1000, discount_cents=0, tax_cents=70, total_cents=1070)
        line = OrderLineItem(product_name="X", quantity=2, unit_price_cents=500, line_total_cents=900)
        with pytest.raises(TotalMismatch):
            check_order_totals(order, [line])

    def test_total_equation(self):
        order = Order(subtotal_cents=1000, discount_cents=0, tax_cents=70, total_cents=1071)
        line = OrderLineItem(product_name="X", quantity=2, unit_price_cents=500, line_total_cents=1000)
        with pytest.raises(TotalMismatch):
            check_order_totals(order, [line])

    def test_consistent_order_passes(self):
        order = Order(subtotal_cents=1000, discount_cents=100, tax_cents=63, total_cents=963)
        line = OrderLineItem(product_name="X", quantity=2, unit_price_cents=500, line_total_cents=1000)
        check_order_totals(order, [line])


class TestOrderQueries:
    def test_get_order_includes_lines_and_history(self, core, place_order):
        created = place_order()
        order = core.ledger.get_order(created["order_id"])
        assert order["order_number"] == created["order_number"]
        assert len(order["line_items"]) == 1
        assert [h["to_status"] for h in order["status_history"]] == ["pending"]
        assert order["payment_evidence"] == []

    def test_list_orders_filters_by_status(self, core, place_order):
        first = place_order()
        place_order()
        core.status.transition(first["order_id"], "confirmed", actor="admin")

        confirmed = core.ledger.list_orders(status="confirmed")
        assert confirmed["total"] == 1
        assert confirmed["orders"][0]["id"] == first["order_id"]
        assert core.ledger.list_orders()["total"] == 2

    def test_kitchen_orders_skip_terminal(self, core, place_order):
        first = place_order()
        second = place_order()
        core.status.cancel(first["order_id"], actor="admin", reason="test")

        kitchen = core.ledger.kitchen_orders()
        assert [o["id"] for o in kitchen] == [second["order_id"]]
        assert kitchen[0]["line_items"]
