# Overview: Recipe lookups and recipe-derived product cost.

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from ..errors import ProductNotFound, IngredientNotFound, InvalidQuantity
from ..models import Product, Ingredient, RecipeLine
from ..money import to_quantity, quantity_cost_cents


@dataclass(frozen=True)
class RecipeComponent:
    ingredient_id: int
    quantity_per_unit: Decimal


class RecipeBook:
    """Product -> ingredient quantities, read from recipe_lines."""

    def __init__(self, session):
        self.session = session

    def get_recipe(self, product_id: int) -> list[RecipeComponent]:
        rows = (
            self.session.query(RecipeLine)
            .filter_by(product_id=product_id)
            .order_by(RecipeLine.ingredient_id)
            .all()
        )
        return [
            RecipeComponent(ingredient_id=row.ingredient_id, quantity_per_unit=to_quantity(row.quantity_per_unit))
            for row in rows
        ]

    def product_cost_cents(self, product_id: int) -> int:
        """Sum of quantity_per_unit x ingredient cost, rounded half-up."""
        rows = (
            self.session.query(RecipeLine.quantity_per_unit, Ingredient.cost_per_unit_cents)
            .join(Ingredient, Ingredient.id == RecipeLine.ingredient_id)
            .filter(RecipeLine.product_id == product_id)
            .all()
        )
        total = sum(
            (to_quantity(qty) * Decimal(cost or 0) for qty, cost in rows),
            Decimal("0"),
        )
        return quantity_cost_cents(total, 1)

    def add_line(self, product_id: int, ingredient_id: int, quantity_per_unit) -> RecipeLine:
        """
        Link a product to an ingredient (seeding / catalog collaborator use).

        Re-adding an existing pair replaces its quantity.
        """
        qty = to_quantity(quantity_per_unit)
        if qty <= 0:
            raise InvalidQuantity("quantity_per_unit must be > 0")

        if self.session.get(Product, product_id) is None:
            raise ProductNotFound(f"Product {product_id} not found")
        if self.session.get(Ingredient, ingredient_id) is None:
            raise IngredientNotFound(f"Ingredient {ingredient_id} not found")

        line = (
            self.session.query(RecipeLine)
            .filter_by(product_id=product_id, ingredient_id=ingredient_id)
            .first()
        )
        if line is None:
            line = RecipeLine(product_id=product_id, ingredient_id=ingredient_id, quantity_per_unit=qty)
            self.session.add(line)
        else:
            line.quantity_per_unit = qty
        self.session.commit()
        return line
