# Overview: Flask API routes for orders; parses input and returns JSON responses.

# backend/fulfillment/routes/orders.py
"""Order API routes: creation, queries, status transitions and slip submission"""

from flask import Blueprint, request, jsonify, current_app

from ..errors import FulfillmentError, error_response
from ..services.registry import get_core


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.post("/")
def create_order_route():
    """
    Create a PENDING order from a cart.

    Body: {"items": [{"product_id", "variant_id"?, "quantity", "notes"?}],
           "customer": {...}, "delivery": {...}?, "branch_code"?, "actor"?}
    Item price fields are ignored; totals are computed server-side.
    """
    try:
        data = request.get_json(silent=True) or {}
        result = get_core().ledger.create_order(
            data.get("items"),
            data.get("customer"),
            data.get("delivery"),
            branch_code=data.get("branch_code"),
            actor=data.get("actor"),
        )
        return jsonify({"order": result}), 201

    except FulfillmentError as e:
        body, status = error_response(e)
        return jsonify(body), status
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/")
def list_orders_route():
    try:
        result = get_core().ledger.list_orders(
            branch_code=request.args.get("branch_code"),
            status=request.args.get("status"),
            page=request.args.get("page", 1, type=int),
            limit=request.args.get("limit", 20, type=int),
        )
        return jsonify(result), 200

    except FulfillmentError as e:
        body, status = error_response(e)
        return jsonify(body), status
    except Exception:
        current_app.logger.exception("Failed to list orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/kitchen")
def kitchen_orders_route():
    """Active orders for the kitchen display, oldest first."""
    try:
        orders = get_core().ledger.kitchen_orders(request.args.get("branch_code"))
        return jsonify({"orders": orders}), 200

    except FulfillmentError as e:
        body, status = error_response(e)
        return jsonify(body), status
    except Exception:
        current_app.logger.exception("Failed to load kitchen orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>")
def get_order_route(order_id: int):
    try:
        order = get_core().ledger.get_order(order_id)
        return jsonify({"order": order}), 200

    except FulfillmentError as e:
        body, status = error_response(e)
        return jsonify(body), status
    except Exception:
        current_app.logger.exception("Failed to load order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/status")
def transition_route(order_id: int):
    """
    Move an order to a new status.

    Re-sending the current status returns 200 with changed=false.
    """
    try:
        data = request.get_json(silent=True) or {}
        target = data.get("status")
        if not target:
            return jsonify({"error": "status required", "code": "VALIDATION_ERROR", "details": {}}), 400

        result = get_core().status.transition(
            order_id,
            target,
            actor=data.get("actor"),
            note=data.get("note"),
        )
        return jsonify(result), 200

    except FulfillmentError as e:
        body, status = error_response(e)
        return jsonify(body), status
    except Exception:
        current_app.logger.exception("Failed to change order status")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/cancel")
def cancel_route(order_id: int):
    try:
        data = request.get_json(silent=True) or {}
        result = get_core().status.cancel(
            order_id,
            actor=data.get("actor"),
            reason=data.get("reason"),
        )
        return jsonify(result), 200

    except FulfillmentError as e:
        body, status = error_response(e)
        return jsonify(body), status
    except Exception:
        current_app.logger.exception("Failed to cancel order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/payment-slip")
def payment_slip_route(order_id: int):
    """
    Submit a transfer slip for an order.

    Always 200 once the order exists; the outcome field says what happened.
    """
    try:
        data = request.get_json(silent=True) or {}
        decision = get_core().payments.process_slip(order_id, data.get("image_reference"))
        return jsonify(decision.to_dict()), 200

    except FulfillmentError as e:
        body, status = error_response(e)
        return jsonify(body), status
    except Exception:
        current_app.logger.exception("Failed to process payment slip")
        return jsonify({"error": "Internal server error"}), 500
