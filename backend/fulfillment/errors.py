"""
Error taxonomy for the fulfillment core.

Four families, each with a fixed HTTP status so the thin route layer can
translate without knowing individual errors:

- ValidationError  (400): bad input, rejected before any write
- NotFoundError    (404): bad reference (unknown order / ingredient / ...)
- ConflictError    (409): business rule conflict, nothing changed
- ConsistencyError (422): the write would break a money or stock invariant
"""
from __future__ import annotations


class FulfillmentError(Exception):
    """Base class; carries a stable machine-readable code plus details."""
    code = "FULFILLMENT_ERROR"
    http_status = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": str(self), "code": self.code, "details": self.details}


class ValidationError(FulfillmentError, ValueError):
    """400-level input problem."""
    code = "VALIDATION_ERROR"
    http_status = 400


class NotFoundError(FulfillmentError, LookupError):
    code = "NOT_FOUND"
    http_status = 404


class ConflictError(FulfillmentError):
    """409-level business rule conflict."""
    code = "CONFLICT"
    http_status = 409


class ConsistencyError(FulfillmentError):
    code = "CONSISTENCY_VIOLATION"
    http_status = 422


# Validation

class EmptyCart(ValidationError):
    code = "EMPTY_CART"


class InvalidCartItem(ValidationError):
    code = "INVALID_CART_ITEM"


class ProductNotFound(ValidationError):
    code = "PRODUCT_NOT_FOUND"


class VariantNotFound(ValidationError):
    code = "VARIANT_NOT_FOUND"


class InvalidType(ValidationError):
    code = "INVALID_TYPE"


class InvalidQuantity(ValidationError):
    code = "INVALID_QUANTITY"


# Not found

class OrderNotFound(NotFoundError):
    code = "ORDER_NOT_FOUND"


class IngredientNotFound(NotFoundError):
    code = "INGREDIENT_NOT_FOUND"


class BranchNotFound(NotFoundError):
    code = "BRANCH_NOT_FOUND"


class EvidenceNotFound(NotFoundError):
    code = "EVIDENCE_NOT_FOUND"


# Conflicts

class InvalidTransition(ConflictError):
    code = "INVALID_STATUS_TRANSITION"


class SlotFull(ConflictError):
    code = "DELIVERY_SLOT_FULL"


class EvidenceAlreadySettled(ConflictError):
    code = "EVIDENCE_ALREADY_SETTLED"


# Consistency

class NegativeStock(ConsistencyError):
    code = "NEGATIVE_STOCK"


class TotalMismatch(ConsistencyError):
    code = "TOTAL_MISMATCH"


def error_response(exc: FulfillmentError):
    """(body, status) tuple for Flask views."""
    return exc.to_dict(), exc.http_status
