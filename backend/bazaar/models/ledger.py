from __future__ import annotations

from ..extensions import db
from bazaar.time_utils import to_utc_z, cents_to_amount


class Transaction(db.Model):
    """
    Point movement log entry.

    IMMUTABLE CORE: Type, parties and amount are written once. Only the status
    columns advance (pending -> completed -> refunded, or pending -> cancelled),
    and every advance appends a TransactionStatusHistory row.

    amount_points is the points moved; cash_amount_cents is the physical cash
    that changed hands alongside it (0 for pure point movements).
    Balance snapshots are the values read inside the same atomic unit.
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.Index("ix_transactions_event_type", "event_id", "transaction_type"),
        db.Index("ix_transactions_event_status", "event_id", "status"),
        db.Index("ix_transactions_from_user", "from_user_id"),
        db.Index("ix_transactions_to_user", "to_user_id"),
        db.Index("ix_transactions_merchant", "merchant_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False)
    event_id = db.Column(db.Integer, db.ForeignKey("events.id"), nullable=False)

    transaction_type = db.Column(db.String(32), nullable=False)
    status = db.Column(db.String(16), nullable=False)

    amount_points = db.Column(db.Integer, nullable=False)
    cash_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    actor_role = db.Column(db.String(32), nullable=False)
    from_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    to_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    merchant_id = db.Column(db.Integer, db.ForeignKey("merchants.id"), nullable=True)
    point_card_id = db.Column(db.Integer, db.ForeignKey("point_cards.id"), nullable=True)

    from_balance_before = db.Column(db.Integer, nullable=True)
    from_balance_after = db.Column(db.Integer, nullable=True)
    to_balance_before = db.Column(db.Integer, nullable=True)
    to_balance_after = db.Column(db.Integer, nullable=True)

    collected_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    collector_role = db.Column(db.String(32), nullable=True)

    note = db.Column(db.Text, nullable=True)
    refund_reason = db.Column(db.Text, nullable=True)
    cancel_reason = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    refunded_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    history = db.relationship(
        "TransactionStatusHistory",
        backref="transaction",
        lazy="selectin",
        order_by="TransactionStatusHistory.id",
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Transaction id={self.id} type={self.transaction_type} status={self.status}>"

    def to_dict(self, include_history: bool = False) -> dict:
        data = {
            "id": self.id,
            "event_id": self.event_id,
            "transaction_type": self.transaction_type,
            "status": self.status,
            "amount": self.amount_points,
            "cash_amount": cents_to_amount(self.cash_amount_cents),
            "actor_user_id": self.actor_user_id,
            "actor_role": self.actor_role,
            "from_user_id": self.from_user_id,
            "to_user_id": self.to_user_id,
            "merchant_id": self.merchant_id,
            "point_card_id": self.point_card_id,
            "balances": {
                "from_before": self.from_balance_before,
                "from_after": self.from_balance_after,
                "to_before": self.to_balance_before,
                "to_after": self.to_balance_after,
            },
            "collected_by": self.collected_by_user_id,
            "collector_role": self.collector_role,
            "note": self.note,
            "refund_reason": self.refund_reason,
            "cancel_reason": self.cancel_reason,
            "created_at": to_utc_z(self.created_at),
            "completed_at": to_utc_z(self.completed_at),
            "refunded_at": to_utc_z(self.refunded_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
        }
        if include_history:
            data["history"] = [entry.to_dict() for entry in self.history]
        return data


class TransactionStatusHistory(db.Model):
    """Append-only status trail of a transaction."""
    __tablename__ = "transaction_status_history"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=False, index=True)
    from_status = db.Column(db.String(16), nullable=True)
    to_status = db.Column(db.String(16), nullable=False)
    changed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    changed_by_role = db.Column(db.String(32), nullable=False)
    reason = db.Column(db.Text, nullable=True)
    changed_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def to_dict(self) -> dict:
        return {
            "from_status": self.from_status,
            "to_status": self.to_status,
            "changed_by": self.changed_by_user_id,
            "changed_by_role": self.changed_by_role,
            "reason": self.reason,
            "changed_at": to_utc_z(self.changed_at),
        }
