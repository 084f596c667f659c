from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from .enums import StockTxType, enum_column_type


class StockTransaction(db.Model):
    """
    Append-only ledger of ingredient quantity changes.

    TRANSACTION TYPES:
    - DEDUCT: recipe consumption for an order (order_id set)
    - ADD:    restock / receiving
    - REMOVE: manual removal
    - WASTE:  spoilage, drops, expired stock
    - ADJUST: physical count; quantity is the counted absolute value

    quantity is what was requested; quantity_delta is the signed change that
    was applied. SUM(quantity_delta) per ingredient == Ingredient.current_stock.

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "stock_transactions"
    __table_args__ = (
        db.Index("ix_stock_txns_ingredient_occurred", "ingredient_id", "occurred_at"),
        db.UniqueConstraint("order_id", "ingredient_id", "type", name="uq_stock_txns_order_ingredient_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    ingredient_id = db.Column(db.Integer, db.ForeignKey("ingredients.id"), nullable=False, index=True)

    type = db.Column(enum_column_type(StockTxType, length=16), nullable=False, index=True)
    quantity = db.Column(db.Numeric(14, 3), nullable=False)
    quantity_delta = db.Column(db.Numeric(14, 3), nullable=False)
    stock_before = db.Column(db.Numeric(14, 3), nullable=False)
    stock_after = db.Column(db.Numeric(14, 3), nullable=False)

    # Set for DEDUCT rows
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)

    note = db.Column(db.String(255), nullable=True)
    actor = db.Column(db.String(64), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    ingredient = db.relationship("Ingredient", backref=db.backref("stock_transactions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "ingredient_id": self.ingredient_id,
            "type": self.type.value,
            "quantity": str(self.quantity),
            "quantity_delta": str(self.quantity_delta),
            "stock_before": str(self.stock_before),
            "stock_after": str(self.stock_after),
            "order_id": self.order_id,
            "note": self.note,
            "actor": self.actor,
            "occurred_at": to_utc_z(self.occurred_at),
        }
