# Overview: Outbound domain events and the in-process notifier the broadcast collaborator subscribes to.

"""
Event Notifier

WHY: Kitchen displays, admin chat notifications and spreadsheets all want to
hear about order and stock changes, but none of them may influence whether a
change commits. Services therefore collect events while a unit of work runs
and publish them only after the commit succeeded.

DESIGN:
- Events are frozen dataclasses (immutable facts, named in past tense)
- Subscribers are plain callables taking one event
- A failing subscriber is logged and skipped; committed state is never undone
"""
from __future__ import annotations

from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Callable

from flask import current_app

from ..time_utils import to_utc_z


@dataclass(frozen=True)
class OrderCreated:
    order_id: int
    order_number: str
    branch_id: int
    total_cents: int
    occurred_at: datetime
    event: str = field(default="order.created", init=False)


@dataclass(frozen=True)
class OrderStatusChanged:
    order_id: int
    order_number: str
    old_status: str
    new_status: str
    actor: str | None
    occurred_at: datetime
    event: str = field(default="order.status_changed", init=False)


@dataclass(frozen=True)
class LowStockAlert:
    ingredient_id: int
    name: str
    current_stock: str
    min_stock_level: str
    level: str  # "low" or "out"
    event: str = field(default="stock.low", init=False)


@dataclass(frozen=True)
class PaymentReviewRequested:
    order_id: int
    order_number: str
    evidence_id: int
    failed_checks: tuple[str, ...]
    event: str = field(default="payment.review_requested", init=False)


def event_to_dict(event) -> dict:
    data = asdict(event)
    for key, value in data.items():
        if isinstance(value, datetime):
            data[key] = to_utc_z(value)
        elif isinstance(value, tuple):
            data[key] = list(value)
    return data


class EventNotifier:
    """Synchronous fan-out to registered subscribers."""

    def __init__(self):
        self._subscribers: list[Callable] = []

    def subscribe(self, handler: Callable) -> Callable:
        self._subscribers.append(handler)
        return handler

    def unsubscribe(self, handler: Callable) -> None:
        if handler in self._subscribers:
            self._subscribers.remove(handler)

    def publish(self, event) -> None:
        for handler in list(self._subscribers):
            try:
                handler(event)
            except Exception:
                current_app.logger.exception(
                    "Event subscriber %r failed for %s", handler, event.event
                )

    def publish_all(self, events) -> None:
        for event in events:
            self.publish(event)


def log_event(event) -> None:
    """Default subscriber: one log line per event."""
    if isinstance(event, LowStockAlert):
        current_app.logger.warning("Low stock alert: %s", event_to_dict(event))
    else:
        current_app.logger.info("Event %s: %s", event.event, event_to_dict(event))
