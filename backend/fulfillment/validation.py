from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

from sqlalchemy import Boolean, Date, DateTime, Enum, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta

from .errors import ValidationError, EmptyCart, InvalidCartItem, InvalidQuantity
from .models import Order, DeliveryType
from .time_utils import parse_iso_datetime

# Upper bound for one cart line
MAX_LINE_QUANTITY = 999


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


CUSTOMER_POLICY = ModelValidationPolicy(
    writable_fields={"customer_name", "customer_phone", "customer_email", "line_user_id"},
    required_on_create={"customer_name"},
)

DELIVERY_POLICY = ModelValidationPolicy(
    writable_fields={
        "delivery_type",
        "delivery_address",
        "delivery_area",
        "delivery_date",
        "delivery_time_slot",
        "payment_method",
        "notes",
    },
    required_on_create=set(),
)


@dataclass(frozen=True)
class CartItem:
    product_id: int
    variant_id: int | None
    quantity: int
    notes: str | None = None


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _strict_int(value: Any, field: str, error_cls=ValidationError) -> int:
    # bool is an int subclass; reject it explicitly
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if stripped and stripped.lstrip("-").isdigit():
            return int(stripped)
    raise error_cls(f"{field} must be an integer", details={field: value})


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    # Enum before String: sqlalchemy.Enum is a String subtype
    if isinstance(coltype, Enum) and coltype.enum_class is not None:
        if isinstance(value, coltype.enum_class):
            return value
        try:
            return coltype.enum_class(str(value).strip().lower())
        except ValueError:
            valid = ", ".join(m.value for m in coltype.enum_class)
            raise ValidationError(f"{col.key} must be one of: {valid}")

    if isinstance(coltype, Integer):
        return _strict_int(value, col.key)

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        return bool(value)

    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            return dt
        raise ValidationError(f"{col.key} must be a datetime")

    if isinstance(coltype, Date):
        if isinstance(value, date):
            return value
        if isinstance(value, str):
            try:
                return date.fromisoformat(value.strip()[:10])
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 date (YYYY-MM-DD)")
        raise ValidationError(f"{col.key} must be a date")

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict | None,
    policy: ModelValidationPolicy,
    partial: bool,
    ignore_unknown: bool = False,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned dict with only writable fields.

    ignore_unknown=True drops non-writable keys instead of rejecting them.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if payload.get(f) in (None, ""))
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}", details={"missing": missing})

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields or k not in cols:
            if ignore_unknown:
                continue
            raise ValidationError(f"Field not allowed: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        if k not in policy.writable_fields or k not in cols:
            continue
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not isinstance(col.type, Enum) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        if isinstance(col.type, String) and not isinstance(col.type, Enum) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def validate_cart(items) -> list[CartItem]:
    """
    Shape-check cart items before anything is resolved or written.

    Only product_id, variant_id, quantity and notes are read. Price fields
    a client sends along are ignored.
    """
    if not items:
        raise EmptyCart("Cart is empty")
    if not isinstance(items, (list, tuple)):
        raise InvalidCartItem("items must be a list")

    cart = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise InvalidCartItem(f"Item {index} must be an object", details={"index": index})
        if "product_id" not in item or item["product_id"] is None:
            raise InvalidCartItem(f"Item {index} is missing product_id", details={"index": index})

        product_id = _strict_int(item["product_id"], "product_id", InvalidCartItem)
        variant_id = item.get("variant_id")
        if variant_id is not None:
            variant_id = _strict_int(variant_id, "variant_id", InvalidCartItem)

        quantity = item.get("quantity", 1)
        if isinstance(quantity, bool) or not isinstance(quantity, int):
            raise InvalidQuantity(
                f"Item {index}: quantity must be a positive integer",
                details={"index": index, "quantity": quantity},
            )
        if quantity <= 0 or quantity > MAX_LINE_QUANTITY:
            raise InvalidQuantity(
                f"Item {index}: quantity must be between 1 and {MAX_LINE_QUANTITY}",
                details={"index": index, "quantity": quantity},
            )

        notes = item.get("notes")
        cart.append(
            CartItem(
                product_id=product_id,
                variant_id=variant_id,
                quantity=quantity,
                notes=str(notes).strip()[:255] if notes else None,
            )
        )
    return cart


def validate_customer(customer) -> dict:
    patch = validate_payload(model=Order, payload=customer, policy=CUSTOMER_POLICY, partial=False, ignore_unknown=True)
    if len(patch["customer_name"]) < 2:
        raise ValidationError("customer_name must be at least 2 characters")
    return patch


def validate_delivery(delivery) -> dict:
    patch = validate_payload(model=Order, payload=delivery, policy=DELIVERY_POLICY, partial=False, ignore_unknown=True)
    delivery_type = patch.get("delivery_type") or DeliveryType.PICKUP
    patch["delivery_type"] = delivery_type

    if delivery_type == DeliveryType.DELIVERY and not patch.get("delivery_address"):
        raise ValidationError("delivery_address is required for delivery orders")
    if patch.get("delivery_time_slot"):
        if delivery_type != DeliveryType.DELIVERY:
            raise ValidationError("delivery_time_slot applies to delivery orders only")
        if patch.get("delivery_date") is None:
            raise ValidationError("delivery_date is required when a delivery_time_slot is given")
        patch["delivery_time_slot"] = patch["delivery_time_slot"].upper()
    return patch
