# Overview: Order status state machine; the only writer of Order.status after creation.

"""
Order Status State Machine

STATE MACHINE:
    PENDING -> CONFIRMED -> PREPARING -> READY -> COMPLETED
    CANCELLED reachable from PENDING, CONFIRMED, PREPARING and READY

RULES:
1. ALLOWED_TRANSITIONS is exhaustive over OrderStatus; import fails otherwise
2. Re-applying the current status is a successful no-op (retried callers)
3. Anything else not in the table fails InvalidTransition, status unchanged
4. Entering PREPARING is the commitment point: stock is deducted once, in
   the same DB transaction as the status write
5. Cancelling never reverses stock already deducted; a delivery order's
   slot booking is released
6. Every change appends one OrderStatusEvent; folding them reproduces
   Order.status
"""
from __future__ import annotations

from datetime import timedelta

from flask import current_app

from ..errors import OrderNotFound, InvalidTransition, ValidationError
from ..models import Order, OrderStatusEvent, OrderStatus, PaymentStatus, DeliveryType
from ..time_utils import utcnow
from .concurrency import begin_immediate, lock_for_update, run_with_retry
from .events import OrderStatusChanged
from .sequence_service import release_delivery_slot


ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.PREPARING, OrderStatus.CANCELLED}),
    OrderStatus.PREPARING: frozenset({OrderStatus.READY, OrderStatus.CANCELLED}),
    OrderStatus.READY: frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}


def check_transition_table(table) -> None:
    missing = set(OrderStatus) - set(table)
    if missing:
        raise RuntimeError(f"ALLOWED_TRANSITIONS missing statuses: {sorted(s.value for s in missing)}")


check_transition_table(ALLOWED_TRANSITIONS)

TERMINAL_STATUSES = frozenset(s for s, targets in ALLOWED_TRANSITIONS.items() if not targets)

# Entering this status deducts stock for the order
COMMITMENT_STATUS = OrderStatus.PREPARING


def parse_status(value) -> OrderStatus:
    if isinstance(value, OrderStatus):
        return value
    try:
        return OrderStatus(str(value).strip().lower())
    except ValueError:
        raise ValidationError(
            f"Invalid status: {value}",
            details={"status": value, "valid_statuses": [s.value for s in OrderStatus]},
        )


def can_transition(from_status: OrderStatus, to_status: OrderStatus) -> bool:
    if from_status == to_status:
        return True
    return to_status in ALLOWED_TRANSITIONS[from_status]


class OrderStatusMachine:
    def __init__(self, session, stock, notifier=None, clock=utcnow, settings=None):
        self.session = session
        self.stock = stock
        self.notifier = notifier
        self.clock = clock
        self.settings = settings

    def transition(self, order_id: int, target, actor: str | None = None, note: str | None = None) -> dict:
        """
        Move an order to target.

        Returns {order_id, order_number, old_status, new_status, changed}.

        Raises:
            OrderNotFound: unknown order
            InvalidTransition: target not reachable from the current status
        """
        target_status = parse_status(target)
        events: list = []

        def _op():
            events.clear()
            begin_immediate(self.session)
            order = lock_for_update(self.session.query(Order).filter_by(id=order_id)).first()
            if order is None:
                raise OrderNotFound(f"Order {order_id} not found", details={"order_id": order_id})

            result = self._transition_locked(order, target_status, actor=actor, note=note, events=events)
            self.session.commit()
            return result

        result = run_with_retry(self.session, _op)
        if result["changed"]:
            current_app.logger.info(
                "Order %s: %s -> %s (actor=%s)",
                result["order_number"],
                result["old_status"],
                result["new_status"],
                actor,
            )
        self._publish(events)
        return result

    def cancel(self, order_id: int, actor: str | None = None, reason: str | None = None) -> dict:
        return self.transition(order_id, OrderStatus.CANCELLED, actor=actor, note=reason)

    def _transition_locked(
        self,
        order: Order,
        target: OrderStatus,
        *,
        actor: str | None,
        note: str | None,
        events: list,
    ) -> dict:
        """Transition without locking, retry or commit; the caller owns the unit."""
        current = order.status
        result = {
            "order_id": order.id,
            "order_number": order.order_number,
            "old_status": current.value,
            "new_status": target.value,
            "changed": False,
        }
        if current == target:
            return result

        if not can_transition(current, target):
            raise InvalidTransition(
                f"Cannot move order {order.order_number} from {current.value} to {target.value}",
                details={
                    "order_id": order.id,
                    "current_status": current.value,
                    "target_status": target.value,
                    "allowed": sorted(s.value for s in ALLOWED_TRANSITIONS[current]),
                },
            )

        now = self.clock()

        if target == COMMITMENT_STATUS:
            self.stock._deduct_locked(order, actor=actor, events=events)

        order.status = target
        if target == OrderStatus.COMPLETED:
            order.completed_at = now
        elif target == OrderStatus.CANCELLED:
            order.cancelled_at = now
            order.cancel_reason = note
            if (
                order.delivery_type == DeliveryType.DELIVERY
                and order.delivery_date is not None
                and order.delivery_time_slot
            ):
                release_delivery_slot(
                    self.session,
                    branch_id=order.branch_id,
                    delivery_date=order.delivery_date,
                    slot_code=order.delivery_time_slot,
                )

        self.session.add(
            OrderStatusEvent(
                order_id=order.id,
                from_status=current,
                to_status=target,
                actor=actor,
                note=note,
                occurred_at=now,
            )
        )
        self.session.flush()

        events.append(
            OrderStatusChanged(
                order_id=order.id,
                order_number=order.order_number,
                old_status=current.value,
                new_status=target.value,
                actor=actor,
                occurred_at=now,
            )
        )
        result["changed"] = True
        return result

    def cancel_unpaid_orders(self, older_than_hours: int | None = None, actor: str = "system") -> list[str]:
        """
        Cancel PENDING orders still unpaid after older_than_hours.

        Orders waiting for a payment review are left alone. Returns the
        cancelled order numbers.
        """
        if older_than_hours is None:
            older_than_hours = self.settings.unpaid_order_ttl_hours if self.settings else 24
        cutoff = self.clock() - timedelta(hours=older_than_hours)

        candidates = (
            self.session.query(Order.id)
            .filter(
                Order.status == OrderStatus.PENDING,
                Order.payment_status == PaymentStatus.UNPAID,
                Order.created_at < cutoff,
            )
            .order_by(Order.id)
            .all()
        )

        cancelled = []
        for (order_id,) in candidates:
            try:
                result = self.transition(
                    order_id,
                    OrderStatus.CANCELLED,
                    actor=actor,
                    note=f"Unpaid after {older_than_hours} hours",
                )
            except InvalidTransition:
                # Moved on since the candidate query
                continue
            if result["changed"]:
                cancelled.append(result["order_number"])
        return cancelled

    def replay_status(self, order_id: int) -> OrderStatus | None:
        """Fold the status history; equals Order.status for every order."""
        events = (
            self.session.query(OrderStatusEvent)
            .filter_by(order_id=order_id)
            .order_by(OrderStatusEvent.id)
            .all()
        )
        status = None
        for event in events:
            status = event.to_status
        return status

    def history(self, order_id: int) -> list[dict]:
        if self.session.get(Order, order_id) is None:
            raise OrderNotFound(f"Order {order_id} not found", details={"order_id": order_id})
        events = (
            self.session.query(OrderStatusEvent)
            .filter_by(order_id=order_id)
            .order_by(OrderStatusEvent.id)
            .all()
        )
        return [event.to_dict() for event in events]

    def _publish(self, events: list) -> None:
        if self.notifier is not None and events:
            self.notifier.publish_all(events)
