from __future__ import annotations

from ..extensions import db
from bazaar.time_utils import to_utc_z


class Merchant(db.Model):
    """
    Stall run by one merchant owner and up to MAX_ASSISTANTS_PER_MERCHANT
    assistants.

    REVENUE: All revenue is in points. Every completed payment is attributed
    to whoever collected it, so
    total_revenue_points == owner_collected_points + assistants_collected_points.
    """
    __tablename__ = "merchants"
    __table_args__ = (
        db.UniqueConstraint("event_id", "owner_id", name="uq_merchants_event_owner"),
        db.Index("ix_merchants_event", "event_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False)
    event_id = db.Column(db.Integer, db.ForeignKey("events.id"), nullable=False)
    owner_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    stall_name = db.Column(db.String(128), nullable=False)
    description = db.Column(db.Text, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    total_revenue_points = db.Column(db.Integer, nullable=False, default=0)
    transaction_count = db.Column(db.Integer, nullable=False, default=0)
    owner_collected_points = db.Column(db.Integer, nullable=False, default=0)
    assistants_collected_points = db.Column(db.Integer, nullable=False, default=0)
    refunded_points = db.Column(db.Integer, nullable=False, default=0)
    refund_count = db.Column(db.Integer, nullable=False, default=0)

    stats_date = db.Column(db.Date, nullable=True)
    today_revenue_points = db.Column(db.Integer, nullable=False, default=0)
    today_transaction_count = db.Column(db.Integer, nullable=False, default=0)
    today_owner_collected_points = db.Column(db.Integer, nullable=False, default=0)
    today_assistants_collected_points = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )

    owner = db.relationship("User", foreign_keys=[owner_id])

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Merchant id={self.id} stall={self.stall_name!r}>"

    def to_dict(self, include_assistants: bool = False) -> dict:
        data = {
            "id": self.id,
            "event_id": self.event_id,
            "owner_id": self.owner_id,
            "stall_name": self.stall_name,
            "description": self.description,
            "is_active": self.is_active,
            "revenue_stats": {
                "total_revenue": self.total_revenue_points,
                "transaction_count": self.transaction_count,
                "owner_collected": self.owner_collected_points,
                "assistants_collected": self.assistants_collected_points,
                "refunded": self.refunded_points,
                "refund_count": self.refund_count,
            },
            "daily_revenue": {
                "date": self.stats_date.isoformat() if self.stats_date else None,
                "revenue": self.today_revenue_points,
                "transaction_count": self.today_transaction_count,
                "owner_collected": self.today_owner_collected_points,
                "assistants_collected": self.today_assistants_collected_points,
            },
            "created_at": to_utc_z(self.created_at),
        }
        if include_assistants:
            data["assistants"] = [a.to_dict() for a in self.assistants if a.is_active]
        return data


class MerchantAssistant(db.Model):
    """
    Assistant assignment plus the assistant's personal collection statistics.

    A user assists at most one stall per event (unique user_id + event_id).
    Removal deactivates the row so collection history survives.
    """
    __tablename__ = "merchant_assistants"
    __table_args__ = (
        db.UniqueConstraint("event_id", "user_id", name="uq_merchant_assistants_event_user"),
        db.Index("ix_merchant_assistants_merchant", "merchant_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(db.Integer, db.ForeignKey("events.id"), nullable=False)
    merchant_id = db.Column(db.Integer, db.ForeignKey("merchants.id"), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    collected_points = db.Column(db.Integer, nullable=False, default=0)
    transaction_count = db.Column(db.Integer, nullable=False, default=0)
    refunded_points = db.Column(db.Integer, nullable=False, default=0)
    stats_date = db.Column(db.Date, nullable=True)
    today_collected_points = db.Column(db.Integer, nullable=False, default=0)
    today_transaction_count = db.Column(db.Integer, nullable=False, default=0)

    assigned_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    removed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    merchant = db.relationship("Merchant", backref=db.backref("assistants", lazy=True))
    user = db.relationship("User")

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "merchant_id": self.merchant_id,
            "user_id": self.user_id,
            "is_active": self.is_active,
            "statistics": {
                "collected": self.collected_points,
                "transaction_count": self.transaction_count,
                "refunded": self.refunded_points,
                "today_collected": self.today_collected_points,
                "today_transaction_count": self.today_transaction_count,
            },
            "assigned_at": to_utc_z(self.assigned_at),
            "removed_at": to_utc_z(self.removed_at),
        }
