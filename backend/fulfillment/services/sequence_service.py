# Overview: Atomic counters: per-branch-day order numbers and delivery slot quotas.

"""
Both counters are rows bumped by a single conditional UPDATE inside the
caller's transaction. The UPDATE takes the row (or, on SQLite, database)
write lock, so two concurrent creations can never read the same value.
Callers own the transaction: nothing here commits.
"""
from __future__ import annotations

from datetime import date

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..errors import SlotFull, ValidationError
from ..models import Branch, OrderNumberSequence, DeliverySlotBooking


def format_order_number(branch_code: str, business_date: date, seq: int) -> str:
    return f"{branch_code}-{business_date:%m%d}-{seq:03d}"


def next_order_number(session, *, branch: Branch, business_date: date) -> tuple[str, int]:
    """
    Allocate the next order number for a branch and business day.

    Returns (order_number, seq). seq starts at 1 each day and is gapless as
    long as every allocating transaction commits; a rolled-back creation
    rolls its increment back with it.
    """
    stmt = (
        update(OrderNumberSequence)
        .where(
            OrderNumberSequence.branch_id == branch.id,
            OrderNumberSequence.business_date == business_date,
        )
        .values(next_number=OrderNumberSequence.next_number + 1)
    )

    result = session.execute(stmt)
    if result.rowcount:
        session.flush()
        current = (
            session.query(OrderNumberSequence.next_number)
            .filter_by(branch_id=branch.id, business_date=business_date)
            .scalar()
        )
        seq = current - 1
    else:
        row = OrderNumberSequence(branch_id=branch.id, business_date=business_date, next_number=2)
        try:
            with session.begin_nested():
                session.add(row)
            seq = 1
        except IntegrityError:
            # Another writer created today's row first
            result = session.execute(stmt)
            if not result.rowcount:
                raise
            current = (
                session.query(OrderNumberSequence.next_number)
                .filter_by(branch_id=branch.id, business_date=business_date)
                .scalar()
            )
            seq = current - 1

    return format_order_number(branch.code, business_date, seq), seq


def book_delivery_slot(
    session,
    *,
    branch_id: int,
    delivery_date: date,
    slot_code: str,
    capacity_by_slot: dict[str, int],
) -> int:
    """
    Reserve one delivery in (date, slot). Returns the remaining capacity.

    Raises:
        ValidationError: unknown slot code
        SlotFull: slot has no capacity left
    """
    slot_code = slot_code.strip().upper()
    if slot_code not in capacity_by_slot:
        raise ValidationError(
            f"Unknown delivery slot: {slot_code}",
            details={"slot": slot_code, "valid_slots": sorted(capacity_by_slot)},
        )
    capacity = capacity_by_slot[slot_code]

    def _bump() -> int:
        return session.execute(
            update(DeliverySlotBooking)
            .where(
                DeliverySlotBooking.branch_id == branch_id,
                DeliverySlotBooking.delivery_date == delivery_date,
                DeliverySlotBooking.slot_code == slot_code,
                DeliverySlotBooking.booked_count < DeliverySlotBooking.capacity,
            )
            .values(booked_count=DeliverySlotBooking.booked_count + 1)
        ).rowcount

    if not _bump():
        existing = (
            session.query(DeliverySlotBooking)
            .filter_by(branch_id=branch_id, delivery_date=delivery_date, slot_code=slot_code)
            .first()
        )
        if existing is not None or capacity <= 0:
            raise SlotFull(
                f"Delivery slot {slot_code} on {delivery_date.isoformat()} is full",
                details={"slot": slot_code, "delivery_date": delivery_date.isoformat(), "capacity": capacity},
            )
        booking = DeliverySlotBooking(
            branch_id=branch_id,
            delivery_date=delivery_date,
            slot_code=slot_code,
            capacity=capacity,
            booked_count=1,
        )
        try:
            with session.begin_nested():
                session.add(booking)
        except IntegrityError:
            if not _bump():
                raise SlotFull(
                    f"Delivery slot {slot_code} on {delivery_date.isoformat()} is full",
                    details={"slot": slot_code, "delivery_date": delivery_date.isoformat(), "capacity": capacity},
                )

    session.flush()
    booked = (
        session.query(DeliverySlotBooking.booked_count, DeliverySlotBooking.capacity)
        .filter_by(branch_id=branch_id, delivery_date=delivery_date, slot_code=slot_code)
        .one()
    )
    return booked.capacity - booked.booked_count


def release_delivery_slot(session, *, branch_id: int, delivery_date: date, slot_code: str) -> None:
    """Give back one booking (order cancelled). Never drops below zero."""
    session.execute(
        update(DeliverySlotBooking)
        .where(
            DeliverySlotBooking.branch_id == branch_id,
            DeliverySlotBooking.delivery_date == delivery_date,
            DeliverySlotBooking.slot_code == slot_code.strip().upper(),
            DeliverySlotBooking.booked_count > 0,
        )
        .values(booked_count=DeliverySlotBooking.booked_count - 1)
    )
