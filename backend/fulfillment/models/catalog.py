from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Branch(db.Model):
    """
    The merchant location orders are taken for.

    code is embedded in order numbers; timezone defines the business day used
    for order-number sequencing and delivery dates.
    """
    __tablename__ = "branches"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_branches_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(16), nullable=False)
    name = db.Column(db.String(120), nullable=False)

    timezone = db.Column(db.String(64), nullable=False, default="Asia/Bangkok")
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=700)  # Basis points (700 = 7%)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Branch id={self.id} code={self.code!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "timezone": self.timezone,
            "tax_rate_bps": self.tax_rate_bps,
            "created_at": to_utc_z(self.created_at),
        }


class Product(db.Model):
    """
    Sellable menu item. Owned by the catalog collaborator; read-only here.

    price_cents is authoritative; clients never send prices.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_branch_available", "branch_id", "is_available"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    price_cents = db.Column(db.Integer, nullable=False)
    # Optional explicit cost; falls back to recipe cost when NULL
    cost_cents = db.Column(db.Integer, nullable=True)

    is_available = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    branch = db.relationship("Branch", backref=db.backref("products", lazy=True))

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} price_cents={self.price_cents}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "name": self.name,
            "price_cents": self.price_cents,
            "cost_cents": self.cost_cents,
            "is_available": self.is_available,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ProductVariant(db.Model):
    """Size/option of a product; price = product.price_cents + price_modifier_cents."""
    __tablename__ = "product_variants"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    price_modifier_cents = db.Column(db.Integer, nullable=False, default=0)
    is_available = db.Column(db.Boolean, nullable=False, default=True)

    product = db.relationship("Product", backref=db.backref("variants", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "name": self.name,
            "price_modifier_cents": self.price_modifier_cents,
            "is_available": self.is_available,
        }


class Ingredient(db.Model):
    """
    Stock-keeping ingredient.

    current_stock is a running balance; StockTransaction rows are the ledger
    that reproduces it. It may go negative through order deduction.
    """
    __tablename__ = "ingredients"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "name", name="uq_ingredients_branch_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    unit = db.Column(db.String(16), nullable=False)
    cost_per_unit_cents = db.Column(db.Integer, nullable=False, default=0)

    current_stock = db.Column(db.Numeric(14, 3), nullable=False, default=0)
    min_stock_level = db.Column(db.Numeric(14, 3), nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    branch = db.relationship("Branch", backref=db.backref("ingredients", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Ingredient id={self.id} name={self.name!r} stock={self.current_stock}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "name": self.name,
            "unit": self.unit,
            "cost_per_unit_cents": self.cost_per_unit_cents,
            "current_stock": str(self.current_stock),
            "min_stock_level": str(self.min_stock_level),
            "version_id": self.version_id,
            "updated_at": to_utc_z(self.updated_at),
        }


class RecipeLine(db.Model):
    """How much of one ingredient a single unit of a product consumes."""
    __tablename__ = "recipe_lines"
    __table_args__ = (
        db.UniqueConstraint("product_id", "ingredient_id", name="uq_recipe_lines_product_ingredient"),
        db.CheckConstraint("quantity_per_unit > 0", name="ck_recipe_lines_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    ingredient_id = db.Column(db.Integer, db.ForeignKey("ingredients.id"), nullable=False, index=True)
    quantity_per_unit = db.Column(db.Numeric(14, 3), nullable=False)

    product = db.relationship("Product", backref=db.backref("recipe_lines", lazy=True))
    ingredient = db.relationship("Ingredient")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "ingredient_id": self.ingredient_id,
            "quantity_per_unit": str(self.quantity_per_unit),
        }
