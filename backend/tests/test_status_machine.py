# Overview: Pytest coverage for the order status state machine.

from decimal import Decimal

import pytest

from fulfillment.errors import IngredientNotFound, InvalidTransition, OrderNotFound, ValidationError
from fulfillment.models import Order, OrderStatus, StockTransaction
from fulfillment.services.events import OrderStatusChanged
from fulfillment.services.recipe_service import RecipeComponent
from fulfillment.services.status_service import (
    ALLOWED_TRANSITIONS,
    TERMINAL_STATUSES,
    can_transition,
    check_transition_table,
    parse_status,
)


def walk(core, order_id, *statuses):
    for status in statuses:
        core.status.transition(order_id, status, actor="kitchen")


class TestTransitionTable:
    def test_table_is_exhaustive(self):
        assert set(ALLOWED_TRANSITIONS) == set(OrderStatus)

    def test_incomplete_table_rejected(self):
        partial = {s: t for s, t in ALLOWED_TRANSITIONS.items() if s != OrderStatus.READY}
        with pytest.raises(RuntimeError, match="ready"):
            check_transition_table(partial)

    def test_terminal_statuses(self):
        assert TERMINAL_STATUSES == {OrderStatus.COMPLETED, OrderStatus.CANCELLED}

    def test_no_backwards_moves(self):
        assert not can_transition(OrderStatus.READY, OrderStatus.PREPARING)
        assert not can_transition(OrderStatus.CONFIRMED, OrderStatus.PENDING)
        assert not can_transition(OrderStatus.COMPLETED, OrderStatus.CANCELLED)

    def test_same_status_allowed(self):
        assert can_transition(OrderStatus.READY, OrderStatus.READY)

    def test_parse_status(self):
        assert parse_status(" Preparing ") == OrderStatus.PREPARING
        with pytest.raises(ValidationError):
            parse_status("shipped")


class TestTransitions:
    def test_happy_path(self, core, place_order, db_session):
        order_id = place_order()["order_id"]
        walk(core, order_id, "confirmed", "preparing", "ready", "completed")

        order = db_session.get(Order, order_id)
        assert order.status == OrderStatus.COMPLETED
        assert order.completed_at is not None

    def test_skipping_a_step_rejected(self, core, place_order, db_session):
        order_id = place_order()["order_id"]
        with pytest.raises(InvalidTransition) as exc_info:
            core.status.transition(order_id, "ready")

        assert exc_info.value.details["current_status"] == "pending"
        assert exc_info.value.details["allowed"] == ["cancelled", "confirmed"]
        assert db_session.get(Order, order_id).status == OrderStatus.PENDING

    def test_terminal_orders_are_frozen(self, core, place_order):
        order_id = place_order()["order_id"]
        core.status.cancel(order_id, actor="admin", reason="Out of stock")
        for target in ("pending", "confirmed", "preparing", "ready", "completed"):
            with pytest.raises(InvalidTransition):
                core.status.transition(order_id, target)

    def test_same_status_is_noop(self, core, place_order, published, db_session):
        order_id = place_order()["order_id"]
        core.status.transition(order_id, "confirmed")
        published.clear()

        result = core.status.transition(order_id, "confirmed")
        assert result["changed"] is False
        assert published == []
        assert len(core.status.history(order_id)) == 2

    def test_unknown_order(self, core, catalog):
        with pytest.raises(OrderNotFound):
            core.status.transition(99999, "confirmed")

    def test_history_replays_to_current_status(self, core, place_order, db_session):
        order_id = place_order()["order_id"]
        walk(core, order_id, "confirmed", "preparing")

        history = core.status.history(order_id)
        assert [(h["from_status"], h["to_status"]) for h in history] == [
            (None, "pending"),
            ("pending", "confirmed"),
            ("confirmed", "preparing"),
        ]
        assert core.status.replay_status(order_id) == db_session.get(Order, order_id).status

    def test_status_changed_event(self, core, place_order, published):
        order_id = place_order()["order_id"]
        core.status.transition(order_id, "confirmed", actor="admin")

        changes = [e for e in published if isinstance(e, OrderStatusChanged)]
        assert len(changes) == 1
        assert (changes[0].old_status, changes[0].new_status, changes[0].actor) == ("pending", "confirmed", "admin")

    def test_cancel_records_reason(self, core, place_order, db_session):
        order_id = place_order()["order_id"]
        core.status.cancel(order_id, actor="admin", reason="Customer request")

        order = db_session.get(Order, order_id)
        assert order.cancel_reason == "Customer request"
        assert order.cancelled_at is not None


class TestCommitmentPoint:
    def test_preparing_deducts_stock(self, core, place_order, catalog, db_session):
        order_id = place_order([{"product_id": catalog.product_a.id, "quantity": 2}])["order_id"]
        walk(core, order_id, "confirmed")
        assert db_session.query(StockTransaction).filter_by(order_id=order_id).count() == 0

        walk(core, order_id, "preparing")
        assert db_session.query(StockTransaction).filter_by(order_id=order_id).count() == 1
        assert db_session.get(Order, order_id).stock_deducted_at is not None

    def test_cancel_after_preparing_keeps_deduction(self, core, place_order, catalog, db_session):
        order_id = place_order([{"product_id": catalog.product_a.id, "quantity": 2}])["order_id"]
        walk(core, order_id, "confirmed", "preparing")
        core.status.cancel(order_id, actor="admin", reason="Burnt")

        db_session.expire_all()
        assert catalog.flour.current_stock == Decimal("9.400")
        assert db_session.query(StockTransaction).filter_by(order_id=order_id).count() == 1

    def test_failed_deduction_keeps_order_confirmed(self, core, place_order, catalog, db_session, monkeypatch):
        order_id = place_order([{"product_id": catalog.product_a.id, "quantity": 2}])["order_id"]
        walk(core, order_id, "confirmed")
        recipe = core.recipes.get_recipe(catalog.product_a.id)
        monkeypatch.setattr(
            core.recipes,
            "get_recipe",
            lambda product_id: recipe + [RecipeComponent(ingredient_id=99999, quantity_per_unit=Decimal("1"))],
        )

        with pytest.raises(IngredientNotFound):
            core.status.transition(order_id, "preparing", actor="kitchen")

        db_session.expire_all()
        order = db_session.get(Order, order_id)
        assert order.status == OrderStatus.CONFIRMED
        assert order.stock_deducted_at is None
        assert catalog.flour.current_stock == Decimal("10.000")
        assert db_session.query(StockTransaction).filter_by(order_id=order_id).count() == 0
        assert [h["to_status"] for h in core.status.history(order_id)] == ["pending", "confirmed"]


class TestCancelUnpaid:
    def test_cancels_only_stale_unpaid_pending(self, core, place_order, clock, db_session):
        stale = place_order()["order_id"]
        confirmed = place_order()["order_id"]
        core.status.transition(confirmed, "confirmed")

        clock.advance(hours=25)
        fresh = place_order()["order_id"]

        cancelled = core.status.cancel_unpaid_orders(24)
        assert cancelled == ["BR1-0314-001"]

        assert db_session.get(Order, stale).status == OrderStatus.CANCELLED
        assert db_session.get(Order, stale).cancel_reason == "Unpaid after 24 hours"
        assert db_session.get(Order, confirmed).status == OrderStatus.CONFIRMED
        assert db_session.get(Order, fresh).status == OrderStatus.PENDING

    def test_default_age_from_settings(self, core, place_order, clock):
        place_order()
        clock.advance(hours=23)
        assert core.status.cancel_unpaid_orders() == []
        clock.advance(hours=2)
        assert core.status.cancel_unpaid_orders() == ["BR1-0314-001"]
