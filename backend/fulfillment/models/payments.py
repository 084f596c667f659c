from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from .enums import EvidenceOutcome, enum_column_type


class PaymentEvidence(db.Model):
    """
    A customer-submitted bank transfer slip, reduced to structured claims.

    OUTCOMES:
    - APPROVED:     all checks passed; order marked paid
    - NEEDS_REVIEW: unreadable or a check failed; waits for an operator
    - REJECTED:     operator rejected a NEEDS_REVIEW slip
    - DUPLICATE:    provider reference already attached to an order

    attached_ref holds transaction_ref only on rows that bind the reference
    to their order (APPROVED / NEEDS_REVIEW). Its unique index is what
    guarantees one reference -> at most one order, even under concurrent
    submissions. Rejecting a slip clears it so the same transfer can still
    be matched to the right order. DUPLICATE and unreadable rows leave it NULL.

    APPROVED and REJECTED rows are immutable.
    """
    __tablename__ = "payment_evidence"
    __table_args__ = (
        db.UniqueConstraint("attached_ref", name="uq_payment_evidence_attached_ref"),
        db.Index("ix_payment_evidence_transaction_ref", "transaction_ref"),
        db.Index("ix_payment_evidence_outcome", "outcome"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    image_reference = db.Column(db.String(1024), nullable=False)

    # Provider claims (NULL when the slip could not be read)
    transaction_ref = db.Column(db.String(128), nullable=True)
    attached_ref = db.Column(db.String(128), nullable=True)
    claimed_amount_cents = db.Column(db.Integer, nullable=True)
    claimed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    sender_account = db.Column(db.String(64), nullable=True)
    sender_name = db.Column(db.String(255), nullable=True)
    sender_bank = db.Column(db.String(32), nullable=True)
    receiver_account = db.Column(db.String(64), nullable=True)
    receiver_name = db.Column(db.String(255), nullable=True)
    receiver_bank = db.Column(db.String(32), nullable=True)

    outcome = db.Column(enum_column_type(EvidenceOutcome), nullable=False)
    failed_checks = db.Column(db.JSON, nullable=False, default=list)
    # External failure text (reader timeout, provider error, malformed payload)
    error = db.Column(db.String(500), nullable=True)

    reviewed_by = db.Column(db.String(64), nullable=True)
    reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    review_note = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship(
        "Order",
        backref=db.backref("payment_evidence", lazy=True, order_by="PaymentEvidence.id"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "image_reference": self.image_reference,
            "transaction_ref": self.transaction_ref,
            "claimed_amount_cents": self.claimed_amount_cents,
            "claimed_at": to_utc_z(self.claimed_at),
            "sender_account": self.sender_account,
            "sender_name": self.sender_name,
            "sender_bank": self.sender_bank,
            "receiver_account": self.receiver_account,
            "receiver_name": self.receiver_name,
            "receiver_bank": self.receiver_bank,
            "outcome": self.outcome.value,
            "failed_checks": list(self.failed_checks or []),
            "error": self.error,
            "reviewed_by": self.reviewed_by,
            "reviewed_at": to_utc_z(self.reviewed_at),
            "review_note": self.review_note,
            "created_at": to_utc_z(self.created_at),
        }
