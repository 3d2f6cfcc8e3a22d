from __future__ import annotations

from ..extensions import db
from bazaar.time_utils import to_utc_z, cents_to_amount


# Derived read-models. Rows are overwritten wholesale by the statistics
# aggregator; nothing else writes them and they are never authoritative.


class _RollupColumns:
    member_count = db.Column(db.Integer, nullable=False, default=0)
    active_count = db.Column(db.Integer, nullable=False, default=0)
    total_received_points = db.Column(db.Integer, nullable=False, default=0)
    current_balance_points = db.Column(db.Integer, nullable=False, default=0)
    total_sold_points = db.Column(db.Integer, nullable=False, default=0)
    pending_collection_cents = db.Column(db.Integer, nullable=False, default=0)
    pending_submission_cents = db.Column(db.Integer, nullable=False, default=0)
    total_submitted_cents = db.Column(db.Integer, nullable=False, default=0)
    collection_rate_bps = db.Column(db.Integer, nullable=False, default=0)
    users_with_warnings = db.Column(db.Integer, nullable=False, default=0)
    high_risk_count = db.Column(db.Integer, nullable=False, default=0)
    computed_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def rollup_dict(self) -> dict:
        return {
            "member_count": self.member_count,
            "active_count": self.active_count,
            "total_received_points": self.total_received_points,
            "current_balance_points": self.current_balance_points,
            "total_sold_points": self.total_sold_points,
            "pending_collection": cents_to_amount(self.pending_collection_cents),
            "pending_submission": cents_to_amount(self.pending_submission_cents),
            "total_submitted": cents_to_amount(self.total_submitted_cents),
            "collection_rate_bps": self.collection_rate_bps,
            "collection_alerts": {
                "users_with_warnings": self.users_with_warnings,
                "high_risk_count": self.high_risk_count,
            },
            "computed_at": to_utc_z(self.computed_at),
        }


class DepartmentStats(_RollupColumns, db.Model):
    __tablename__ = "department_stats"
    __table_args__ = (
        db.UniqueConstraint("event_id", "department_code", name="uq_department_stats_event_dept"),
    )

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(db.Integer, db.ForeignKey("events.id"), nullable=False)
    department_code = db.Column(db.String(64), nullable=False)

    def to_dict(self) -> dict:
        data = {"event_id": self.event_id, "department_code": self.department_code}
        data.update(self.rollup_dict())
        return data


class SellerManagerStats(_RollupColumns, db.Model):
    __tablename__ = "seller_manager_stats"
    __table_args__ = (
        db.UniqueConstraint("event_id", "manager_id", name="uq_seller_manager_stats_event_manager"),
    )

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(db.Integer, db.ForeignKey("events.id"), nullable=False)
    manager_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    managed_department_count = db.Column(db.Integer, nullable=False, default=0)
    points_allocated = db.Column(db.Integer, nullable=False, default=0)

    def to_dict(self) -> dict:
        data = {
            "event_id": self.event_id,
            "manager_id": self.manager_id,
            "managed_department_count": self.managed_department_count,
            "points_allocated": self.points_allocated,
        }
        data.update(self.rollup_dict())
        return data


class EventPointStats(db.Model):
    """Tenant-wide point circulation snapshot."""
    __tablename__ = "event_point_stats"

    event_id = db.Column(db.Integer, db.ForeignKey("events.id"), primary_key=True)
    customer_points = db.Column(db.Integer, nullable=False, default=0)
    seller_points = db.Column(db.Integer, nullable=False, default=0)
    outstanding_card_points = db.Column(db.Integer, nullable=False, default=0)
    merchant_revenue_points = db.Column(db.Integer, nullable=False, default=0)
    points_minted = db.Column(db.Integer, nullable=False, default=0)
    customer_count = db.Column(db.Integer, nullable=False, default=0)
    computed_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def to_dict(self) -> dict:
        return {
            "event_id": self.event_id,
            "customer_points": self.customer_points,
            "seller_points": self.seller_points,
            "outstanding_card_points": self.outstanding_card_points,
            "merchant_revenue_points": self.merchant_revenue_points,
            "points_minted": self.points_minted,
            "customer_count": self.customer_count,
            "computed_at": to_utc_z(self.computed_at),
        }
