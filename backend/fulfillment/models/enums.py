from __future__ import annotations

import enum

from ..extensions import db


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY = "ready"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, enum.Enum):
    UNPAID = "unpaid"
    PAID = "paid"
    PENDING_REVIEW = "pending_review"


class StockTxType(str, enum.Enum):
    DEDUCT = "deduct"
    ADD = "add"
    REMOVE = "remove"
    WASTE = "waste"
    ADJUST = "adjust"


class EvidenceOutcome(str, enum.Enum):
    APPROVED = "approved"
    NEEDS_REVIEW = "needs_review"
    REJECTED = "rejected"
    DUPLICATE = "duplicate"


class DeliveryType(str, enum.Enum):
    PICKUP = "pickup"
    DELIVERY = "delivery"
    DINE_IN = "dine_in"


class PaymentMethod(str, enum.Enum):
    CASH = "cash"
    CARD = "card"
    TRANSFER = "transfer"
    QR = "qr"


def _enum_values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


def enum_column_type(enum_cls, length: int = 20):
    """
    VARCHAR-backed enum column storing the lower-case values.

    native_enum=False keeps SQLite and Postgres schemas identical.
    """
    return db.Enum(
        enum_cls,
        native_enum=False,
        length=length,
        values_callable=_enum_values,
        validate_strings=True,
    )
