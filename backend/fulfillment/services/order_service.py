# Overview: Order creation and order queries; the only writer of Order and OrderLineItem rows.

"""
Order Ledger

Invariants:
- Prices come from the catalog resolver only; a cart's price fields are never read
- Every item resolves or the whole call fails before anything is written
- Order + line items + initial PENDING history row + order number + slot
  booking commit together or not at all
- total_cents == subtotal_cents - discount_cents + tax_cents (checked here
  and by a CHECK constraint)
"""
from __future__ import annotations

from flask import current_app

from ..errors import OrderNotFound, BranchNotFound, TotalMismatch, ValidationError
from ..models import (
    Branch,
    Order,
    OrderLineItem,
    OrderStatusEvent,
    OrderStatus,
    PaymentStatus,
    DeliveryType,
)
from ..money import apply_rate_bps
from ..time_utils import utcnow, local_date
from ..validation import validate_cart, validate_customer, validate_delivery
from .concurrency import begin_immediate, run_with_retry
from .events import OrderCreated
from .sequence_service import next_order_number, book_delivery_slot
from .status_service import TERMINAL_STATUSES, parse_status


def check_order_totals(order: Order, lines: list[OrderLineItem]) -> None:
    """Recompute every money column from the line rows; raise on any disagreement."""
    for line in lines:
        if line.line_total_cents != line.unit_price_cents * line.quantity:
            raise TotalMismatch(
                f"Line total mismatch for {line.product_name}",
                details={
                    "product_id": line.product_id,
                    "unit_price_cents": line.unit_price_cents,
                    "quantity": line.quantity,
                    "line_total_cents": line.line_total_cents,
                },
            )
    subtotal = sum(line.line_total_cents for line in lines)
    if subtotal != order.subtotal_cents:
        raise TotalMismatch(
            "Subtotal does not equal the sum of line totals",
            details={"subtotal_cents": order.subtotal_cents, "expected": subtotal},
        )
    expected_total = order.subtotal_cents - order.discount_cents + order.tax_cents
    if order.total_cents != expected_total:
        raise TotalMismatch(
            "Total does not equal subtotal - discount + tax",
            details={"total_cents": order.total_cents, "expected": expected_total},
        )


class OrderLedger:
    def __init__(self, session, prices, notifier=None, settings=None, clock=utcnow):
        self.session = session
        self.prices = prices
        self.notifier = notifier
        self.settings = settings
        self.clock = clock

    def create_order(
        self,
        items,
        customer,
        delivery=None,
        *,
        branch_code: str | None = None,
        actor: str | None = None,
    ) -> dict:
        """
        Price a cart and persist it as a PENDING order.

        Returns the computed totals, never caller-supplied ones:
        {order_id, order_number, status, subtotal_cents, discount_cents,
         tax_cents, total_cents, estimated_prep_minutes, line_items}

        Raises:
            EmptyCart / InvalidCartItem / InvalidQuantity / ValidationError: bad input
            ProductNotFound / VariantNotFound: an item does not resolve
            BranchNotFound: unknown branch code
            SlotFull: requested delivery slot has no capacity left
        """
        cart = validate_cart(items)
        customer_fields = validate_customer(customer)
        delivery_fields = validate_delivery(delivery or {})

        resolved = [self.prices.resolve(item.product_id, item.variant_id, item.quantity) for item in cart]

        subtotal = sum(line.line_total_cents for line in resolved)
        item_count = sum(line.quantity for line in resolved)
        estimated_prep = self._base_prep_minutes() + self._prep_minutes_per_item() * item_count

        created: dict = {}

        def _op():
            created.clear()
            begin_immediate(self.session)
            branch = self._resolve_branch(branch_code)

            now = self.clock()
            business_date = local_date(now, branch.timezone)

            delivery_date = delivery_fields.get("delivery_date")
            if delivery_date is not None and delivery_date < business_date:
                raise ValidationError(
                    "delivery_date cannot be in the past",
                    details={"delivery_date": delivery_date.isoformat(), "today": business_date.isoformat()},
                )

            order_number, _seq = next_order_number(self.session, branch=branch, business_date=business_date)

            slot = delivery_fields.get("delivery_time_slot")
            if delivery_fields["delivery_type"] == DeliveryType.DELIVERY and slot:
                book_delivery_slot(
                    self.session,
                    branch_id=branch.id,
                    delivery_date=delivery_date,
                    slot_code=slot,
                    capacity_by_slot=self._slot_capacity(),
                )

            tax = apply_rate_bps(subtotal, branch.tax_rate_bps)
            order = Order(
                branch_id=branch.id,
                order_number=order_number,
                business_date=business_date,
                status=OrderStatus.PENDING,
                payment_status=PaymentStatus.UNPAID,
                subtotal_cents=subtotal,
                discount_cents=0,
                tax_cents=tax,
                total_cents=subtotal + tax,
                estimated_prep_minutes=estimated_prep,
                created_at=now,
                updated_at=now,
                created_by=actor,
                **customer_fields,
                **delivery_fields,
            )
            self.session.add(order)
            self.session.flush()

            lines = []
            for item, line in zip(cart, resolved):
                row = OrderLineItem(
                    order_id=order.id,
                    product_id=line.product_id,
                    variant_id=line.variant_id,
                    product_name=line.product_name,
                    variant_name=line.variant_name,
                    quantity=line.quantity,
                    unit_price_cents=line.unit_price_cents,
                    line_total_cents=line.line_total_cents,
                    unit_cost_cents=line.unit_cost_cents,
                    notes=item.notes,
                    created_at=now,
                )
                self.session.add(row)
                lines.append(row)

            self.session.add(
                OrderStatusEvent(
                    order_id=order.id,
                    from_status=None,
                    to_status=OrderStatus.PENDING,
                    actor=actor,
                    note="Order created",
                    occurred_at=now,
                )
            )
            self.session.flush()

            check_order_totals(order, lines)

            created.update(
                order_id=order.id,
                order_number=order.order_number,
                branch_id=branch.id,
                status=order.status.value,
                subtotal_cents=order.subtotal_cents,
                discount_cents=order.discount_cents,
                tax_cents=order.tax_cents,
                total_cents=order.total_cents,
                estimated_prep_minutes=order.estimated_prep_minutes,
                created_at=now,
            )
            self.session.commit()
            return order

        run_with_retry(self.session, _op)

        current_app.logger.info(
            "Order %s created: %d items, total %s",
            created["order_number"],
            item_count,
            created["total_cents"],
        )
        if self.notifier is not None:
            self.notifier.publish(
                OrderCreated(
                    order_id=created["order_id"],
                    order_number=created["order_number"],
                    branch_id=created["branch_id"],
                    total_cents=created["total_cents"],
                    occurred_at=created["created_at"],
                )
            )

        return {
            "order_id": created["order_id"],
            "order_number": created["order_number"],
            "status": created["status"],
            "subtotal_cents": created["subtotal_cents"],
            "discount_cents": created["discount_cents"],
            "tax_cents": created["tax_cents"],
            "total_cents": created["total_cents"],
            "estimated_prep_minutes": created["estimated_prep_minutes"],
            "line_items": [line.to_dict() for line in resolved],
        }

    def get_order(self, order_id: int) -> dict:
        order = self.session.get(Order, order_id)
        if order is None:
            raise OrderNotFound(f"Order {order_id} not found", details={"order_id": order_id})

        data = order.to_dict()
        data["line_items"] = [line.to_dict() for line in order.line_items]
        data["status_history"] = [event.to_dict() for event in order.status_events]
        data["payment_evidence"] = [evidence.to_dict() for evidence in order.payment_evidence]
        return data

    def list_orders(
        self,
        *,
        branch_code: str | None = None,
        status=None,
        page: int = 1,
        limit: int = 20,
    ) -> dict:
        page = max(int(page), 1)
        limit = min(max(int(limit), 1), 100)

        query = self.session.query(Order)
        if branch_code:
            branch = self._resolve_branch(branch_code)
            query = query.filter(Order.branch_id == branch.id)
        if status:
            query = query.filter(Order.status == parse_status(status))

        total = query.count()
        orders = (
            query.order_by(Order.created_at.desc(), Order.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return {
            "orders": [order.to_dict() for order in orders],
            "page": page,
            "limit": limit,
            "total": total,
        }

    def kitchen_orders(self, branch_code: str | None = None) -> list[dict]:
        """Active (non-terminal) orders with their lines, oldest first."""
        query = self.session.query(Order).filter(Order.status.notin_(list(TERMINAL_STATUSES)))
        if branch_code:
            branch = self._resolve_branch(branch_code)
            query = query.filter(Order.branch_id == branch.id)

        result = []
        for order in query.order_by(Order.created_at.asc(), Order.id.asc()).all():
            data = order.to_dict()
            data["line_items"] = [line.to_dict() for line in order.line_items]
            result.append(data)
        return result

    def orders_pending_review(self) -> list[dict]:
        orders = (
            self.session.query(Order)
            .filter(Order.payment_status == PaymentStatus.PENDING_REVIEW)
            .order_by(Order.created_at.asc(), Order.id.asc())
            .all()
        )
        return [order.to_dict() for order in orders]

    def _resolve_branch(self, branch_code: str | None) -> Branch:
        code = branch_code or (self.settings.default_branch_code if self.settings else None)
        branch = self.session.query(Branch).filter_by(code=code).first() if code else None
        if branch is None:
            raise BranchNotFound(f"Branch not found: {code}", details={"branch_code": code})
        return branch

    def _slot_capacity(self) -> dict:
        if self.settings is None:
            return {}
        return dict(self.settings.delivery_slot_capacity or {})

    def _base_prep_minutes(self) -> int:
        return self.settings.base_prep_minutes if self.settings else 10

    def _prep_minutes_per_item(self) -> int:
        return self.settings.prep_minutes_per_item if self.settings else 2
