# Overview: Flask API routes for the manual payment review queue.

# backend/fulfillment/routes/payments.py

from flask import Blueprint, request, jsonify, current_app

from ..errors import FulfillmentError, error_response
from ..services.registry import get_core


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


@payments_bp.get("/reviews")
def list_reviews_route():
    """Slips waiting for an operator, plus the orders they hold in pending_review."""
    try:
        core = get_core()
        return jsonify({
            "evidence": core.payments.pending_reviews(),
            "orders": core.ledger.orders_pending_review(),
        }), 200

    except Exception:
        current_app.logger.exception("Failed to load payment reviews")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/reviews/<int:evidence_id>")
def review_route(evidence_id: int):
    """
    Settle a needs_review slip.

    Body: {"approve": true|false, "actor": "...", "note": "..."}
    """
    try:
        data = request.get_json(silent=True) or {}
        approve = data.get("approve")
        if not isinstance(approve, bool):
            return jsonify({"error": "approve must be true or false", "code": "VALIDATION_ERROR", "details": {}}), 400

        result = get_core().payments.review_evidence(
            evidence_id,
            approve,
            actor=data.get("actor"),
            note=data.get("note"),
        )
        return jsonify(result), 200

    except FulfillmentError as e:
        body, status = error_response(e)
        return jsonify(body), status
    except Exception:
        current_app.logger.exception("Failed to review payment evidence")
        return jsonify({"error": "Internal server error"}), 500
