from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from .enums import (
    OrderStatus,
    PaymentStatus,
    DeliveryType,
    PaymentMethod,
    enum_column_type,
)


class Order(db.Model):
    """
    Customer order document.

    Financial totals are written only by the order ledger, computed from
    resolved catalog prices. The CHECK constraint keeps the total equation
    true even for writers that bypass the service layer.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("order_number", name="uq_orders_order_number"),
        db.CheckConstraint(
            "total_cents = subtotal_cents - discount_cents + tax_cents",
            name="ck_orders_total_equation",
        ),
        db.Index("ix_orders_branch_status_created", "branch_id", "status", "created_at"),
        db.Index("ix_orders_payment_status", "payment_status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)

    # Human-readable number, e.g. "BR1-0314-007"
    order_number = db.Column(db.String(32), nullable=False)
    business_date = db.Column(db.Date, nullable=False, index=True)

    # Customer contact
    customer_name = db.Column(db.String(120), nullable=False)
    customer_phone = db.Column(db.String(32), nullable=True)
    customer_email = db.Column(db.String(255), nullable=True)
    line_user_id = db.Column(db.String(64), nullable=True, index=True)

    # Delivery
    delivery_type = db.Column(enum_column_type(DeliveryType), nullable=False, default=DeliveryType.PICKUP)
    delivery_address = db.Column(db.String(500), nullable=True)
    delivery_area = db.Column(db.String(120), nullable=True)
    delivery_date = db.Column(db.Date, nullable=True)
    delivery_time_slot = db.Column(db.String(32), nullable=True)

    payment_method = db.Column(enum_column_type(PaymentMethod), nullable=False, default=PaymentMethod.TRANSFER)
    notes = db.Column(db.String(500), nullable=True)

    # Lifecycle
    status = db.Column(enum_column_type(OrderStatus), nullable=False, default=OrderStatus.PENDING, index=True)
    estimated_prep_minutes = db.Column(db.Integer, nullable=True)

    # Money (minor units)
    subtotal_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False)
    total_cents = db.Column(db.Integer, nullable=False)

    # Payment axis (independent of status)
    payment_status = db.Column(enum_column_type(PaymentStatus), nullable=False, default=PaymentStatus.UNPAID)
    payment_ref = db.Column(db.String(128), nullable=True)
    payment_verified_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Set exactly once, by the inventory engine
    stock_deducted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)
    created_by = db.Column(db.String(64), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    branch = db.relationship("Branch", backref=db.backref("orders", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Order id={self.id} number={self.order_number!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "order_number": self.order_number,
            "business_date": self.business_date.isoformat() if self.business_date else None,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "customer_email": self.customer_email,
            "line_user_id": self.line_user_id,
            "delivery_type": self.delivery_type.value,
            "delivery_address": self.delivery_address,
            "delivery_area": self.delivery_area,
            "delivery_date": self.delivery_date.isoformat() if self.delivery_date else None,
            "delivery_time_slot": self.delivery_time_slot,
            "payment_method": self.payment_method.value,
            "notes": self.notes,
            "status": self.status.value,
            "estimated_prep_minutes": self.estimated_prep_minutes,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "payment_status": self.payment_status.value,
            "payment_ref": self.payment_ref,
            "payment_verified_at": to_utc_z(self.payment_verified_at),
            "stock_deducted_at": to_utc_z(self.stock_deducted_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "completed_at": to_utc_z(self.completed_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "cancel_reason": self.cancel_reason,
            "created_by": self.created_by,
            "version_id": self.version_id,
        }


class OrderLineItem(db.Model):
    """
    One product/variant/quantity entry on an order.

    Names and prices are snapshots taken at order time; later catalog edits
    never touch these rows.
    """
    __tablename__ = "order_line_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_order_line_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=True)

    product_name = db.Column(db.String(255), nullable=False)
    variant_name = db.Column(db.String(120), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)
    unit_cost_cents = db.Column(db.Integer, nullable=False, default=0)

    notes = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship(
        "Order",
        backref=db.backref("line_items", lazy=True, order_by="OrderLineItem.id"),
    )

    @property
    def line_cost_cents(self) -> int:
        return self.unit_cost_cents * self.quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "product_name": self.product_name,
            "variant_name": self.variant_name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "unit_cost_cents": self.unit_cost_cents,
            "line_cost_cents": self.line_cost_cents,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }


class OrderStatusEvent(db.Model):
    """
    Append-only history of status transitions.

    IMMUTABLE: rows are never updated or deleted. Folding to_status in id
    order reproduces Order.status.
    """
    __tablename__ = "order_status_events"
    __table_args__ = (
        db.Index("ix_order_status_events_order_occurred", "order_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    from_status = db.Column(enum_column_type(OrderStatus), nullable=True)
    to_status = db.Column(enum_column_type(OrderStatus), nullable=False)
    actor = db.Column(db.String(64), nullable=True)
    note = db.Column(db.String(255), nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship(
        "Order",
        backref=db.backref("status_events", lazy=True, order_by="OrderStatusEvent.id"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "from_status": self.from_status.value if self.from_status else None,
            "to_status": self.to_status.value,
            "actor": self.actor,
            "note": self.note,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class OrderNumberSequence(db.Model):
    """
    Atomic per-branch, per-business-day order counter.

    next_number is bumped with a single UPDATE inside the order creation
    transaction, so concurrent creations serialize on this row.
    """
    __tablename__ = "order_number_sequences"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "business_date", name="uq_order_number_sequences_branch_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    business_date = db.Column(db.Date, nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())


class DeliverySlotBooking(db.Model):
    """
    Server-side delivery quota per branch, date and time slot.

    booked_count only changes through conditional UPDATEs in the order
    creation / cancellation transactions.
    """
    __tablename__ = "delivery_slot_bookings"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "delivery_date", "slot_code", name="uq_delivery_slots_branch_date_slot"),
        db.CheckConstraint("booked_count >= 0", name="ck_delivery_slots_booked_nonnegative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    delivery_date = db.Column(db.Date, nullable=False)
    slot_code = db.Column(db.String(32), nullable=False)
    capacity = db.Column(db.Integer, nullable=False)
    booked_count = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "branch_id": self.branch_id,
            "delivery_date": self.delivery_date.isoformat(),
            "slot_code": self.slot_code,
            "capacity": self.capacity,
            "booked_count": self.booked_count,
            "remaining": max(self.capacity - self.booked_count, 0),
        }
