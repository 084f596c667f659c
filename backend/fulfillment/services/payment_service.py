# Overview: Reconciles customer transfer slips against a specific order.

"""
Payment Evidence Matcher

DESIGN PRINCIPLES:
- The provider call happens before the DB unit opens; a slow or failing
  provider never holds a lock and never fails the request
- Every submission leaves a PaymentEvidence row, including unreadable and
  duplicate ones
- One provider transaction reference attaches to at most one order; the
  unique attached_ref index decides races
- A human settles anything the checks cannot approve

CHECKS (names stored in failed_checks):
- unreadable:                provider failed, timed out or returned junk
- amount_mismatch:           |claimed - order total| > SLIP_AMOUNT_TOLERANCE_CENTS
- receiver_account_mismatch: receiving account is not a merchant account
- timestamp_out_of_window:   older than SLIP_RECENCY_HOURS, or more than
                             SLIP_CLOCK_SKEW_MINUTES in the future
- order_cancelled:           order was cancelled
- already_paid:              order already has a verified payment
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import timedelta

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..config import CoreSettings
from ..errors import OrderNotFound, EvidenceNotFound, EvidenceAlreadySettled, ValidationError
from ..models import Order, PaymentEvidence, OrderStatus, PaymentStatus, EvidenceOutcome
from ..time_utils import utcnow
from .concurrency import begin_immediate, lock_for_update, run_with_retry
from .events import PaymentReviewRequested
from .slip_reader import SlipReadResult

AUTO_CONFIRM_ACTOR = "system"
AUTO_CONFIRM_NOTE = "Auto-confirmed after payment verification"

_MASK_CHARS = re.compile(r"[xX*•]")


@dataclass(frozen=True)
class SlipDecision:
    outcome: str
    failed_checks: tuple[str, ...]
    evidence_id: int
    order_id: int

    def to_dict(self) -> dict:
        return {
            "outcome": self.outcome,
            "failed_checks": list(self.failed_checks),
            "evidence_id": self.evidence_id,
            "order_id": self.order_id,
        }


def account_matches(slip_account: str | None, merchant_accounts) -> bool:
    """
    Compare a slip's receiving account with the merchant's accounts.

    Plain accounts must match digit for digit. Masked ones ("xxx-x-x1234-x")
    match when their visible digit groups, at least 4 digits in total,
    appear in that order in a merchant account.
    """
    if not slip_account:
        return False
    groups = re.findall(r"\d+", slip_account)
    digits = "".join(groups)
    if not digits:
        return False

    if not _MASK_CHARS.search(slip_account):
        return digits in merchant_accounts

    if len(digits) < 4:
        return False
    pattern = re.compile(".*".join(groups))
    return any(pattern.search(account) for account in merchant_accounts)


class PaymentEvidenceMatcher:
    def __init__(self, session, slip_reader, status_machine, notifier=None, settings=None, clock=utcnow):
        self.session = session
        self.slip_reader = slip_reader
        self.status_machine = status_machine
        self.notifier = notifier
        self.settings = settings or CoreSettings()
        self.clock = clock

    def process_slip(self, order_id: int, image_reference: str) -> SlipDecision:
        """
        Read a slip and decide approved / needs_review / duplicate.

        Raises only OrderNotFound and ValidationError; provider failures
        become needs_review with failed check "unreadable".
        """
        image_reference = (image_reference or "").strip() if isinstance(image_reference, str) else ""
        if not image_reference:
            raise ValidationError("image_reference is required")

        if self.session.get(Order, order_id) is None:
            raise OrderNotFound(f"Order {order_id} not found", details={"order_id": order_id})
        # Release the read before the provider call
        self.session.rollback()

        try:
            read = self.slip_reader.read_slip(image_reference)
        except Exception as exc:
            current_app.logger.exception("Slip reader raised for order %s", order_id)
            read = SlipReadResult.failure(f"reader error: {exc}")

        events: list = []

        def _op():
            events.clear()
            begin_immediate(self.session)
            order = self._lock_order(order_id)
            now = self.clock()

            if not read.ok:
                return self._record_unreadable(order, image_reference, read.error, now, events)

            slip = read.slip
            if self._ref_attached(slip.transaction_ref):
                return self._record_duplicate(order, image_reference, slip, now)

            failed = self.run_checks(order, slip, now)
            evidence = self._evidence_row(
                order,
                image_reference,
                slip,
                outcome=EvidenceOutcome.APPROVED if not failed else EvidenceOutcome.NEEDS_REVIEW,
                failed_checks=failed,
                attach=True,
                now=now,
            )
            self.session.add(evidence)
            self.session.flush()

            if not failed:
                self._mark_paid(order, slip.transaction_ref, now, events)
            else:
                self._mark_pending_review(order)
                events.append(
                    PaymentReviewRequested(
                        order_id=order.id,
                        order_number=order.order_number,
                        evidence_id=evidence.id,
                        failed_checks=tuple(failed),
                    )
                )
            decision = SlipDecision(
                outcome=evidence.outcome.value,
                failed_checks=tuple(failed),
                evidence_id=evidence.id,
                order_id=order.id,
            )
            self.session.commit()
            return decision

        try:
            decision = run_with_retry(self.session, _op)
        except IntegrityError:
            # Another submission attached the same reference first
            if not read.ok or not self._ref_attached(read.slip.transaction_ref):
                raise
            events.clear()

            def _dup():
                begin_immediate(self.session)
                order = self._lock_order(order_id)
                decision = self._record_duplicate(order, image_reference, read.slip, self.clock())
                return decision

            decision = run_with_retry(self.session, _dup)

        if decision.outcome == EvidenceOutcome.APPROVED.value:
            current_app.logger.info("Slip approved for order %s (evidence %s)", order_id, decision.evidence_id)
        elif decision.outcome == EvidenceOutcome.DUPLICATE.value:
            current_app.logger.warning("Duplicate slip submitted for order %s", order_id)
        else:
            current_app.logger.warning(
                "Slip for order %s needs review: %s", order_id, ", ".join(decision.failed_checks)
            )
        if self.notifier is not None and events:
            self.notifier.publish_all(events)
        return decision

    def run_checks(self, order: Order, slip, now) -> list[str]:
        failed = []
        if order.status == OrderStatus.CANCELLED:
            failed.append("order_cancelled")
        if order.payment_status == PaymentStatus.PAID:
            failed.append("already_paid")
        if abs(slip.amount_cents - order.total_cents) > self.settings.slip_amount_tolerance_cents:
            failed.append("amount_mismatch")
        if not account_matches(slip.receiver_account, self.settings.merchant_accounts):
            failed.append("receiver_account_mismatch")

        if slip.transferred_at is None:
            failed.append("timestamp_out_of_window")
            return failed
        age = now - slip.transferred_at
        if age > timedelta(hours=self.settings.slip_recency_hours) or age < -timedelta(
            minutes=self.settings.slip_clock_skew_minutes
        ):
            failed.append("timestamp_out_of_window")
        return failed

    def review_evidence(self, evidence_id: int, approve: bool, actor: str | None = None, note: str | None = None) -> dict:
        """
        Operator decision on a needs_review slip.

        approve -> order paid (and confirmed if still pending);
        reject  -> order back to unpaid unless another slip still awaits review.
        """
        events: list = []

        def _op():
            events.clear()
            begin_immediate(self.session)
            evidence = lock_for_update(
                self.session.query(PaymentEvidence).filter_by(id=evidence_id)
            ).first()
            if evidence is None:
                raise EvidenceNotFound(f"Payment evidence {evidence_id} not found", details={"evidence_id": evidence_id})
            if evidence.outcome != EvidenceOutcome.NEEDS_REVIEW:
                raise EvidenceAlreadySettled(
                    f"Payment evidence {evidence_id} is already {evidence.outcome.value}",
                    details={"evidence_id": evidence_id, "outcome": evidence.outcome.value},
                )

            order = self._lock_order(evidence.order_id)
            now = self.clock()

            evidence.reviewed_by = actor
            evidence.reviewed_at = now
            evidence.review_note = note

            if approve:
                evidence.outcome = EvidenceOutcome.APPROVED
                self._mark_paid(order, evidence.transaction_ref or f"manual-{evidence.id}", now, events)
            else:
                evidence.outcome = EvidenceOutcome.REJECTED
                # Free the reference so the transfer can be matched to the right order
                evidence.attached_ref = None
                self.session.flush()
                still_open = (
                    self.session.query(PaymentEvidence.id)
                    .filter(
                        PaymentEvidence.order_id == order.id,
                        PaymentEvidence.outcome == EvidenceOutcome.NEEDS_REVIEW,
                    )
                    .first()
                )
                if order.payment_status == PaymentStatus.PENDING_REVIEW and still_open is None:
                    order.payment_status = PaymentStatus.UNPAID

            self.session.flush()
            result = {
                "evidence": evidence.to_dict(),
                "order_id": order.id,
                "order_number": order.order_number,
                "status": order.status.value,
                "payment_status": order.payment_status.value,
            }
            self.session.commit()
            return result

        result = run_with_retry(self.session, _op)
        current_app.logger.info(
            "Payment evidence %s %s by %s", evidence_id, "approved" if approve else "rejected", actor
        )
        if self.notifier is not None and events:
            self.notifier.publish_all(events)
        return result

    def pending_reviews(self) -> list[dict]:
        rows = (
            self.session.query(PaymentEvidence, Order.order_number, Order.total_cents)
            .join(Order, Order.id == PaymentEvidence.order_id)
            .filter(PaymentEvidence.outcome == EvidenceOutcome.NEEDS_REVIEW)
            .order_by(PaymentEvidence.created_at.asc(), PaymentEvidence.id.asc())
            .all()
        )
        result = []
        for evidence, order_number, total_cents in rows:
            data = evidence.to_dict()
            data["order_number"] = order_number
            data["order_total_cents"] = total_cents
            result.append(data)
        return result

    # ------------------------------------------------------------------
    # Internals (caller owns the unit of work)
    # ------------------------------------------------------------------

    def _lock_order(self, order_id: int) -> Order:
        order = lock_for_update(self.session.query(Order).filter_by(id=order_id)).first()
        if order is None:
            raise OrderNotFound(f"Order {order_id} not found", details={"order_id": order_id})
        return order

    def _ref_attached(self, transaction_ref: str) -> bool:
        return (
            self.session.query(PaymentEvidence.id)
            .filter(PaymentEvidence.attached_ref == transaction_ref)
            .first()
            is not None
        )

    def _evidence_row(self, order, image_reference, slip, *, outcome, failed_checks, attach, now) -> PaymentEvidence:
        return PaymentEvidence(
            order_id=order.id,
            image_reference=image_reference,
            transaction_ref=slip.transaction_ref,
            attached_ref=slip.transaction_ref if attach else None,
            claimed_amount_cents=slip.amount_cents,
            claimed_at=slip.transferred_at,
            sender_account=slip.sender_account,
            sender_name=slip.sender_name,
            sender_bank=slip.sender_bank,
            receiver_account=slip.receiver_account,
            receiver_name=slip.receiver_name,
            receiver_bank=slip.receiver_bank,
            outcome=outcome,
            failed_checks=list(failed_checks),
            created_at=now,
        )

    def _record_unreadable(self, order, image_reference, error, now, events) -> SlipDecision:
        evidence = PaymentEvidence(
            order_id=order.id,
            image_reference=image_reference,
            outcome=EvidenceOutcome.NEEDS_REVIEW,
            failed_checks=["unreadable"],
            error=error,
            created_at=now,
        )
        self.session.add(evidence)
        self._mark_pending_review(order)
        self.session.flush()
        events.append(
            PaymentReviewRequested(
                order_id=order.id,
                order_number=order.order_number,
                evidence_id=evidence.id,
                failed_checks=("unreadable",),
            )
        )
        decision = SlipDecision(
            outcome=EvidenceOutcome.NEEDS_REVIEW.value,
            failed_checks=("unreadable",),
            evidence_id=evidence.id,
            order_id=order.id,
        )
        self.session.commit()
        return decision

    def _record_duplicate(self, order, image_reference, slip, now) -> SlipDecision:
        """Audit row only; the order is not touched."""
        evidence = self._evidence_row(
            order,
            image_reference,
            slip,
            outcome=EvidenceOutcome.DUPLICATE,
            failed_checks=["duplicate"],
            attach=False,
            now=now,
        )
        self.session.add(evidence)
        self.session.flush()
        decision = SlipDecision(
            outcome=EvidenceOutcome.DUPLICATE.value,
            failed_checks=("duplicate",),
            evidence_id=evidence.id,
            order_id=order.id,
        )
        self.session.commit()
        return decision

    def _mark_paid(self, order: Order, payment_ref: str, now, events: list) -> None:
        order.payment_status = PaymentStatus.PAID
        order.payment_ref = payment_ref
        order.payment_verified_at = now
        if order.status == OrderStatus.PENDING:
            self.status_machine._transition_locked(
                order,
                OrderStatus.CONFIRMED,
                actor=AUTO_CONFIRM_ACTOR,
                note=AUTO_CONFIRM_NOTE,
                events=events,
            )

    def _mark_pending_review(self, order: Order) -> None:
        if order.payment_status != PaymentStatus.PAID:
            order.payment_status = PaymentStatus.PENDING_REVIEW
