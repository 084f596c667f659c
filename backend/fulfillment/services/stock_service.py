# Overview: Recipe-driven stock deduction, manual stock operations and the stock ledger.

"""
Inventory Reconciliation Engine

Stock invariants (authoritative):
- Ingredient.current_stock changes only together with a StockTransaction row
  written in the same DB transaction.
- SUM(quantity_delta) over an ingredient's transactions == current_stock.
- Order-driven deduction may take stock negative; the kitchen already
  committed to the order and a human decides what to do about shortages.
- Manual remove / waste may NOT take stock negative, and a manual adjust
  may not set a negative count. These are rejected, never clamped.
- Each order is deducted at most once (Order.stock_deducted_at), and each
  ingredient appears at most once per order in the ledger.

Alerts:
- level "out" when current_stock <= 0, "low" when current_stock <=
  min_stock_level, else "ok".
- A LowStockAlert is raised only when a mutation moves an ingredient to a
  worse level, so repeated deductions of an already-low item stay quiet.
"""
from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal

from flask import current_app

from ..errors import (
    OrderNotFound,
    IngredientNotFound,
    BranchNotFound,
    InvalidType,
    InvalidQuantity,
    NegativeStock,
    ValidationError,
)
from ..models import Branch, Ingredient, Order, StockTransaction, StockTxType
from ..money import to_quantity
from ..time_utils import utcnow
from .concurrency import begin_immediate, lock_for_update, run_with_retry
from .events import LowStockAlert

ZERO = Decimal("0.000")

_LEVEL_RANK = {"ok": 0, "low": 1, "out": 2}

MANUAL_TYPES = (StockTxType.ADD, StockTxType.REMOVE, StockTxType.WASTE, StockTxType.ADJUST)


def stock_level(current_stock, min_stock_level) -> str:
    current = to_quantity(current_stock)
    if current <= 0:
        return "out"
    if current <= to_quantity(min_stock_level):
        return "low"
    return "ok"


@dataclass(frozen=True)
class StockAdjustment:
    ingredient_id: int
    type: str
    old_stock: Decimal
    new_stock: Decimal
    adjustment: Decimal
    transaction_id: int

    def to_dict(self) -> dict:
        return {
            "ingredient_id": self.ingredient_id,
            "type": self.type,
            "old_stock": str(self.old_stock),
            "new_stock": str(self.new_stock),
            "adjustment": str(self.adjustment),
            "transaction_id": self.transaction_id,
        }


def _parse_manual_type(tx_type) -> StockTxType:
    try:
        parsed = StockTxType(str(tx_type).strip().lower())
    except ValueError:
        raise InvalidType(
            f"Invalid stock operation type: {tx_type}",
            details={"type": tx_type, "valid_types": [t.value for t in MANUAL_TYPES]},
        )
    if parsed not in MANUAL_TYPES:
        raise InvalidType(
            "deduct is reserved for order fulfillment",
            details={"type": parsed.value, "valid_types": [t.value for t in MANUAL_TYPES]},
        )
    return parsed


class InventoryEngine:
    def __init__(self, session, recipes, notifier=None, clock=utcnow):
        self.session = session
        self.recipes = recipes
        self.notifier = notifier
        self.clock = clock

    # ------------------------------------------------------------------
    # Order-driven deduction
    # ------------------------------------------------------------------

    def deduct_for_order(self, order_id: int, actor: str | None = None) -> dict:
        """
        Deduct recipe quantities for every line item of an order.

        Idempotent: a second call for the same order changes nothing and
        returns deducted=False.
        """
        events: list = []

        def _op():
            events.clear()
            begin_immediate(self.session)
            order = lock_for_update(self.session.query(Order).filter_by(id=order_id)).first()
            if order is None:
                raise OrderNotFound(f"Order {order_id} not found", details={"order_id": order_id})

            result = self._deduct_locked(order, actor=actor, events=events)
            self.session.commit()
            return result

        result = run_with_retry(self.session, _op)
        self._publish(events)
        return result

    def _deduct_locked(self, order: Order, *, actor: str | None, events: list) -> dict:
        """Deduction without locking, retry or commit; the caller owns the unit."""
        if order.stock_deducted_at is not None:
            return {"order_id": order.id, "deducted": False, "transactions": []}

        needs: dict[int, Decimal] = defaultdict(lambda: ZERO)
        for line in order.line_items:
            recipe = self.recipes.get_recipe(line.product_id)
            if not recipe:
                current_app.logger.warning(
                    "Product %s on order %s has no recipe; nothing deducted for it",
                    line.product_id,
                    order.order_number,
                )
                continue
            for component in recipe:
                needs[component.ingredient_id] += component.quantity_per_unit * line.quantity

        transactions = []
        # Fixed lock order across ingredients
        for ingredient_id in sorted(needs):
            ingredient = lock_for_update(
                self.session.query(Ingredient).filter_by(id=ingredient_id)
            ).first()
            if ingredient is None:
                raise IngredientNotFound(
                    f"Ingredient {ingredient_id} not found",
                    details={"ingredient_id": ingredient_id},
                )
            quantity = to_quantity(needs[ingredient_id])
            tx = self._apply(
                ingredient,
                StockTxType.DEDUCT,
                quantity=quantity,
                delta=-quantity,
                order_id=order.id,
                note=f"Order {order.order_number}",
                actor=actor,
                events=events,
            )
            transactions.append(tx)

        order.stock_deducted_at = self.clock()
        self.session.flush()

        current_app.logger.info(
            "Stock deducted for order %s (%d ingredients)", order.order_number, len(transactions)
        )
        return {
            "order_id": order.id,
            "deducted": True,
            "transactions": [tx.to_dict() for tx in transactions],
        }

    # ------------------------------------------------------------------
    # Manual operations
    # ------------------------------------------------------------------

    def adjust_stock(
        self,
        ingredient_id: int,
        tx_type,
        quantity,
        note: str | None = None,
        actor: str | None = None,
    ) -> StockAdjustment:
        """
        Manual restock / removal / waste / physical count.

        adjust sets an absolute value; add, remove and waste are deltas.

        Raises:
            InvalidType: unknown or reserved type
            InvalidQuantity: non-numeric quantity, or a delta that is not > 0
            NegativeStock: the result would be below zero
            IngredientNotFound: unknown ingredient
        """
        parsed_type = _parse_manual_type(tx_type)
        try:
            qty = to_quantity(quantity)
        except ValueError:
            raise InvalidQuantity("quantity must be numeric", details={"quantity": quantity})

        if parsed_type == StockTxType.ADJUST:
            if qty < 0:
                raise NegativeStock(
                    "Stock count cannot be negative",
                    details={"ingredient_id": ingredient_id, "requested": str(qty)},
                )
        elif qty <= 0:
            raise InvalidQuantity(
                "quantity must be greater than 0",
                details={"quantity": str(qty), "type": parsed_type.value},
            )

        events: list = []

        def _op():
            events.clear()
            begin_immediate(self.session)
            ingredient = lock_for_update(
                self.session.query(Ingredient).filter_by(id=ingredient_id)
            ).first()
            if ingredient is None:
                raise IngredientNotFound(
                    f"Ingredient {ingredient_id} not found",
                    details={"ingredient_id": ingredient_id},
                )

            before = to_quantity(ingredient.current_stock)
            if parsed_type == StockTxType.ADD:
                delta = qty
            elif parsed_type == StockTxType.ADJUST:
                delta = qty - before
            else:
                delta = -qty
                if before + delta < 0:
                    raise NegativeStock(
                        f"Insufficient stock for {ingredient.name}",
                        details={
                            "ingredient_id": ingredient.id,
                            "current_stock": str(before),
                            "requested": str(qty),
                        },
                    )

            tx = self._apply(
                ingredient,
                parsed_type,
                quantity=qty,
                delta=delta,
                order_id=None,
                note=note,
                actor=actor,
                events=events,
            )
            adjustment = StockAdjustment(
                ingredient_id=ingredient.id,
                type=parsed_type.value,
                old_stock=before,
                new_stock=to_quantity(tx.stock_after),
                adjustment=to_quantity(tx.quantity_delta),
                transaction_id=tx.id,
            )
            self.session.commit()
            return adjustment

        result = run_with_retry(self.session, _op)
        current_app.logger.info(
            "Stock %s on ingredient %s: %s -> %s",
            result.type,
            result.ingredient_id,
            result.old_stock,
            result.new_stock,
        )
        self._publish(events)
        return result

    def create_ingredient(
        self,
        *,
        branch_id: int,
        name: str,
        unit: str,
        cost_per_unit_cents: int = 0,
        opening_stock=0,
        min_stock_level=0,
        actor: str | None = None,
    ) -> Ingredient:
        """Create an ingredient; a non-zero opening stock is written as an add row."""
        name = (name or "").strip()
        unit = (unit or "").strip()
        if not name or not unit:
            raise ValidationError("name and unit are required")
        try:
            opening = to_quantity(opening_stock)
            minimum = to_quantity(min_stock_level)
        except ValueError as exc:
            raise InvalidQuantity(str(exc))
        if opening < 0:
            raise NegativeStock("Opening stock cannot be negative", details={"opening_stock": str(opening)})
        if minimum < 0:
            raise InvalidQuantity("min_stock_level cannot be negative")
        if isinstance(cost_per_unit_cents, bool) or not isinstance(cost_per_unit_cents, int) or cost_per_unit_cents < 0:
            raise ValidationError("cost_per_unit_cents must be a non-negative integer")

        def _op():
            begin_immediate(self.session)
            if self.session.get(Branch, branch_id) is None:
                raise BranchNotFound(f"Branch {branch_id} not found", details={"branch_id": branch_id})

            ingredient = Ingredient(
                branch_id=branch_id,
                name=name,
                unit=unit,
                cost_per_unit_cents=cost_per_unit_cents,
                current_stock=ZERO,
                min_stock_level=minimum,
            )
            self.session.add(ingredient)
            self.session.flush()

            if opening > 0:
                self._apply(
                    ingredient,
                    StockTxType.ADD,
                    quantity=opening,
                    delta=opening,
                    order_id=None,
                    note="Opening stock",
                    actor=actor,
                    events=[],
                )
            self.session.commit()
            return ingredient

        return run_with_retry(self.session, _op)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def low_stock_alerts(self, branch_id: int | None = None) -> list[dict]:
        """Ingredients at or below their minimum, most depleted first."""
        query = self.session.query(Ingredient)
        if branch_id is not None:
            query = query.filter(Ingredient.branch_id == branch_id)
        query = query.filter(Ingredient.current_stock <= Ingredient.min_stock_level)

        rows = []
        for ingredient in query.all():
            current = to_quantity(ingredient.current_stock)
            minimum = to_quantity(ingredient.min_stock_level)
            rows.append(
                {
                    "ingredient_id": ingredient.id,
                    "name": ingredient.name,
                    "unit": ingredient.unit,
                    "current_stock": current,
                    "min_stock_level": minimum,
                    "shortfall": minimum - current,
                    "level": stock_level(current, minimum),
                }
            )
        rows.sort(key=lambda r: (-r["shortfall"], r["name"]))
        return rows

    def stock_history(self, ingredient_id: int, page: int = 1, limit: int = 50) -> dict:
        ingredient = self.session.get(Ingredient, ingredient_id)
        if ingredient is None:
            raise IngredientNotFound(
                f"Ingredient {ingredient_id} not found",
                details={"ingredient_id": ingredient_id},
            )
        page = max(int(page), 1)
        limit = min(max(int(limit), 1), 200)

        query = self.session.query(StockTransaction).filter_by(ingredient_id=ingredient_id)
        total = query.count()
        rows = (
            query.order_by(StockTransaction.occurred_at.desc(), StockTransaction.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return {
            "ingredient": ingredient.to_dict(),
            "transactions": [row.to_dict() for row in rows],
            "page": page,
            "limit": limit,
            "total": total,
        }

    def ledger_balance(self, ingredient_id: int) -> Decimal:
        """SUM(quantity_delta) for one ingredient, summed as Decimal."""
        deltas = (
            self.session.query(StockTransaction.quantity_delta)
            .filter(StockTransaction.ingredient_id == ingredient_id)
            .all()
        )
        return to_quantity(sum((to_quantity(d) for (d,) in deltas), ZERO))

    def verify_ledger(self, ingredient_id: int | None = None) -> list[dict]:
        """Ingredients whose stored stock disagrees with their ledger. Empty means consistent."""
        query = self.session.query(Ingredient)
        if ingredient_id is not None:
            query = query.filter(Ingredient.id == ingredient_id)

        mismatches = []
        for ingredient in query.order_by(Ingredient.id).all():
            balance = self.ledger_balance(ingredient.id)
            current = to_quantity(ingredient.current_stock)
            if balance != current:
                mismatches.append(
                    {
                        "ingredient_id": ingredient.id,
                        "name": ingredient.name,
                        "current_stock": current,
                        "ledger_balance": balance,
                    }
                )
        return mismatches

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _apply(
        self,
        ingredient: Ingredient,
        tx_type: StockTxType,
        *,
        quantity: Decimal,
        delta: Decimal,
        order_id: int | None,
        note: str | None,
        actor: str | None,
        events: list,
    ) -> StockTransaction:
        """Write the stock change and its ledger row together."""
        before = to_quantity(ingredient.current_stock)
        after = to_quantity(before + delta)
        minimum = to_quantity(ingredient.min_stock_level)
        old_level = stock_level(before, minimum)

        ingredient.current_stock = after
        tx = StockTransaction(
            ingredient_id=ingredient.id,
            type=tx_type,
            quantity=quantity,
            quantity_delta=to_quantity(delta),
            stock_before=before,
            stock_after=after,
            order_id=order_id,
            note=note,
            actor=actor,
            occurred_at=self.clock(),
        )
        self.session.add(tx)
        self.session.flush()

        new_level = stock_level(after, minimum)
        if _LEVEL_RANK[new_level] > _LEVEL_RANK[old_level]:
            events.append(
                LowStockAlert(
                    ingredient_id=ingredient.id,
                    name=ingredient.name,
                    current_stock=str(after),
                    min_stock_level=str(minimum),
                    level=new_level,
                )
            )
        return tx

    def _publish(self, events: list) -> None:
        if self.notifier is not None and events:
            self.notifier.publish_all(events)
