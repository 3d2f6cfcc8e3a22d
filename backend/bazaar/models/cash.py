from __future__ import annotations

from ..extensions import db
from bazaar.time_utils import to_utc_z, cents_to_amount


class CashSubmission(db.Model):
    """
    Physical cash handoff awaiting reconciliation.

    LIFECYCLE: pending -> confirmed | disputed | rejected. Only pending is
    initial; the other three are terminal.

    RECEIVER: received_by_user_id is NULL while the submission sits in the
    unclaimed pool, or exactly one collector id once addressed or claimed.
    """
    __tablename__ = "cash_submissions"
    __table_args__ = (
        db.UniqueConstraint("event_id", "submission_number", name="uq_cash_submissions_event_number"),
        db.Index("ix_cash_submissions_event_status", "event_id", "status"),
        db.Index("ix_cash_submissions_submitted_by", "submitted_by_user_id"),
        db.Index("ix_cash_submissions_received_by", "received_by_user_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False)
    event_id = db.Column(db.Integer, db.ForeignKey("events.id"), nullable=False)
    submission_number = db.Column(db.String(32), nullable=False)

    submitted_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    submitter_role = db.Column(db.String(32), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="MYR")

    received_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    receiver_role = db.Column(db.String(32), nullable=True)
    status = db.Column(db.String(16), nullable=False, default="pending")

    note = db.Column(db.Text, nullable=True)
    resolution_note = db.Column(db.Text, nullable=True)

    submitted_at = db.Column(db.DateTime(timezone=True), nullable=False)
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    sources = db.relationship(
        "CashSubmissionSource",
        backref="submission",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_pooled(self) -> bool:
        return self.receiver_role in (None, "cashier", "financeManager")

    def __repr__(self) -> str:
        return f"<CashSubmission {self.submission_number} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "submission_number": self.submission_number,
            "submitted_by": self.submitted_by_user_id,
            "submitter_role": self.submitter_role,
            "amount": cents_to_amount(self.amount_cents),
            "amount_cents": self.amount_cents,
            "currency": self.currency,
            "received_by": self.received_by_user_id,
            "receiver_role": self.receiver_role,
            "status": self.status,
            "note": self.note,
            "resolution_note": self.resolution_note,
            "sources": [source.to_dict() for source in self.sources],
            "submitted_at": to_utc_z(self.submitted_at),
            "resolved_at": to_utc_z(self.resolved_at),
        }


class CashSubmissionSource(db.Model):
    """
    Reference from a submission to one underlying cash-generating record.

    amount_cents is resolved server-side from the referenced record at
    creation; the caller only names the record.
    """
    __tablename__ = "cash_submission_sources"
    __table_args__ = (
        db.UniqueConstraint("submission_id", "source_type", "source_id", name="uq_cash_submission_sources_ref"),
        db.Index("ix_cash_submission_sources_lookup", "source_type", "source_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    submission_id = db.Column(db.Integer, db.ForeignKey("cash_submissions.id"), nullable=False, index=True)
    source_type = db.Column(db.String(32), nullable=False)
    source_id = db.Column(db.Integer, nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "source_type": self.source_type,
            "source_id": self.source_id,
            "amount": cents_to_amount(self.amount_cents),
        }


class FinanceSummary(db.Model):
    """Tenant-wide cash position of the unclaimed pool."""
    __tablename__ = "finance_summaries"

    event_id = db.Column(db.Integer, db.ForeignKey("events.id"), primary_key=True)
    total_pending_cents = db.Column(db.Integer, nullable=False, default=0)
    total_collected_cents = db.Column(db.Integer, nullable=False, default=0)
    total_disputed_cents = db.Column(db.Integer, nullable=False, default=0)
    total_rejected_cents = db.Column(db.Integer, nullable=False, default=0)
    collection_count = db.Column(db.Integer, nullable=False, default=0)
    last_collection_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "event_id": self.event_id,
            "total_pending": cents_to_amount(self.total_pending_cents),
            "total_collected": cents_to_amount(self.total_collected_cents),
            "total_disputed": cents_to_amount(self.total_disputed_cents),
            "total_rejected": cents_to_amount(self.total_rejected_cents),
            "collection_count": self.collection_count,
            "last_collection_at": to_utc_z(self.last_collection_at),
        }


class CashSourceSummary(db.Model):
    """Pool totals per submitter role (seller, sellerManager, pointSeller)."""
    __tablename__ = "cash_source_summaries"
    __table_args__ = (
        db.UniqueConstraint("event_id", "submitter_role", name="uq_cash_source_summaries_event_role"),
    )

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(db.Integer, db.ForeignKey("events.id"), nullable=False)
    submitter_role = db.Column(db.String(32), nullable=False)
    pending_cents = db.Column(db.Integer, nullable=False, default=0)
    collected_cents = db.Column(db.Integer, nullable=False, default=0)
    submission_count = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "submitter_role": self.submitter_role,
            "pending": cents_to_amount(self.pending_cents),
            "collected": cents_to_amount(self.collected_cents),
            "submission_count": self.submission_count,
        }
