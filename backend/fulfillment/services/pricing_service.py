# Overview: Trusted price resolution for cart lines; read-only.

"""
Catalog Price Resolver

WHY: The only source of a line's price is the catalog. Whatever a client
sends as a price is never read, so a tampered cart cannot change totals.
"""
from __future__ import annotations

from dataclasses import dataclass

from ..errors import ProductNotFound, VariantNotFound, InvalidQuantity
from ..models import Product, ProductVariant


@dataclass(frozen=True)
class ResolvedLine:
    product_id: int
    variant_id: int | None
    product_name: str
    variant_name: str | None
    quantity: int
    unit_price_cents: int
    line_total_cents: int
    unit_cost_cents: int

    @property
    def display_name(self) -> str:
        if self.variant_name:
            return f"{self.product_name} ({self.variant_name})"
        return self.product_name

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "product_name": self.product_name,
            "variant_name": self.variant_name,
            "display_name": self.display_name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "unit_cost_cents": self.unit_cost_cents,
        }


class CatalogPriceResolver:
    def __init__(self, session, recipes=None):
        self.session = session
        self.recipes = recipes

    def resolve(self, product_id: int, variant_id: int | None = None, quantity: int = 1) -> ResolvedLine:
        """
        Resolve (product, variant) to a trusted unit price.

        Raises:
            ProductNotFound: product missing or not available
            VariantNotFound: variant missing, unavailable, or not of this product
            InvalidQuantity: quantity is not a positive integer
        """
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise InvalidQuantity("quantity must be a positive integer", details={"quantity": quantity})

        product = self.session.get(Product, product_id)
        if product is None or not product.is_available:
            raise ProductNotFound(
                f"Product not found: {product_id}",
                details={"product_id": product_id},
            )

        unit_price = product.price_cents
        variant_name = None

        if variant_id is not None:
            variant = self.session.get(ProductVariant, variant_id)
            if variant is None or variant.product_id != product.id or not variant.is_available:
                raise VariantNotFound(
                    f"Variant {variant_id} not found for product {product_id}",
                    details={"product_id": product_id, "variant_id": variant_id},
                )
            unit_price += variant.price_modifier_cents or 0
            variant_name = variant.name

        return ResolvedLine(
            product_id=product.id,
            variant_id=variant_id,
            product_name=product.name,
            variant_name=variant_name,
            quantity=quantity,
            unit_price_cents=unit_price,
            line_total_cents=unit_price * quantity,
            unit_cost_cents=self._unit_cost(product),
        )

    def _unit_cost(self, product: Product) -> int:
        if product.cost_cents is not None:
            return product.cost_cents
        if self.recipes is not None:
            return self.recipes.product_cost_cents(product.id)
        return 0
