# Overview: Flask API routes for stock operations and the stock ledger.

# backend/fulfillment/routes/stock.py

from flask import Blueprint, request, jsonify, current_app

from ..errors import FulfillmentError, ProductNotFound, error_response
from ..models import Product
from ..services.registry import get_core


stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")


def _alert_to_json(alert: dict) -> dict:
    return {key: str(value) if key in ("current_stock", "min_stock_level", "shortfall") else value
            for key, value in alert.items()}


@stock_bp.post("/adjust")
def adjust_stock_route():
    """
    Manual stock operation.

    Body: {"ingredient_id", "type": add|remove|waste|adjust, "quantity", "note"?, "actor"?}
    Quantities may be sent as strings ("2.500") to avoid float rounding.
    """
    try:
        data = request.get_json(silent=True) or {}
        ingredient_id = data.get("ingredient_id")
        if not isinstance(ingredient_id, int) or isinstance(ingredient_id, bool):
            return jsonify({"error": "ingredient_id must be an integer", "code": "VALIDATION_ERROR", "details": {}}), 400
        if data.get("quantity") is None:
            return jsonify({"error": "quantity required", "code": "VALIDATION_ERROR", "details": {}}), 400

        result = get_core().stock.adjust_stock(
            ingredient_id,
            data.get("type"),
            data.get("quantity"),
            note=data.get("note"),
            actor=data.get("actor"),
        )
        return jsonify(result.to_dict()), 200

    except FulfillmentError as e:
        body, status = error_response(e)
        return jsonify(body), status
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return jsonify({"error": "Internal server error"}), 500


@stock_bp.get("/alerts")
def low_stock_route():
    try:
        branch_id = request.args.get("branch_id", type=int)
        alerts = get_core().stock.low_stock_alerts(branch_id)
        return jsonify({"alerts": [_alert_to_json(a) for a in alerts]}), 200

    except Exception:
        current_app.logger.exception("Failed to load low stock alerts")
        return jsonify({"error": "Internal server error"}), 500


@stock_bp.get("/history/<int:ingredient_id>")
def stock_history_route(ingredient_id: int):
    try:
        result = get_core().stock.stock_history(
            ingredient_id,
            page=request.args.get("page", 1, type=int),
            limit=request.args.get("limit", 50, type=int),
        )
        return jsonify(result), 200

    except FulfillmentError as e:
        body, status = error_response(e)
        return jsonify(body), status
    except Exception:
        current_app.logger.exception("Failed to load stock history")
        return jsonify({"error": "Internal server error"}), 500


@stock_bp.get("/cost/<int:product_id>")
def product_cost_route(product_id: int):
    """Recipe-derived unit cost of a product."""
    try:
        core = get_core()
        if core.session.get(Product, product_id) is None:
            raise ProductNotFound(f"Product not found: {product_id}", details={"product_id": product_id})
        recipe = core.recipes.get_recipe(product_id)
        return jsonify({
            "product_id": product_id,
            "recipe_cost_cents": core.recipes.product_cost_cents(product_id),
            "recipe": [
                {"ingredient_id": c.ingredient_id, "quantity_per_unit": str(c.quantity_per_unit)}
                for c in recipe
            ],
        }), 200

    except FulfillmentError as e:
        body, status = error_response(e)
        return jsonify(body), status
    except Exception:
        current_app.logger.exception("Failed to compute product cost")
        return jsonify({"error": "Internal server error"}), 500
