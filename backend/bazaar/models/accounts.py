from __future__ import annotations

from ..extensions import db
from bazaar.time_utils import to_utc_z, cents_to_amount


# Role-specific ledger records. One row per (user, role), keyed by user id.
# Every row is version-checked: a concurrent writer that loses the race gets
# StaleDataError at flush and the whole operation body re-runs.


class SellerAccount(db.Model):
    """
    Seller sub-record: points allocated by a seller manager and the cash
    collected from reselling them.

    pending_collection_cents is cash physically held by the seller and not yet
    handed in; pending_submission_cents is cash handed in but not yet confirmed.
    """
    __tablename__ = "seller_accounts"
    __table_args__ = (
        db.Index("ix_seller_accounts_event", "event_id"),
    )

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), primary_key=True)
    event_id = db.Column(db.Integer, db.ForeignKey("events.id"), nullable=False)

    available_points = db.Column(db.Integer, nullable=False, default=0)
    total_received_points = db.Column(db.Integer, nullable=False, default=0)
    total_sold_points = db.Column(db.Integer, nullable=False, default=0)
    sale_count = db.Column(db.Integer, nullable=False, default=0)

    pending_collection_cents = db.Column(db.Integer, nullable=False, default=0)
    pending_submission_cents = db.Column(db.Integer, nullable=False, default=0)
    total_submitted_cents = db.Column(db.Integer, nullable=False, default=0)
    disputed_cents = db.Column(db.Integer, nullable=False, default=0)
    submission_count = db.Column(db.Integer, nullable=False, default=0)

    last_received_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_sale_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    user = db.relationship("User", backref=db.backref("seller_account", uselist=False, lazy=True))

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "available_points": self.available_points,
            "total_received_points": self.total_received_points,
            "total_sold_points": self.total_sold_points,
            "sale_count": self.sale_count,
            "pending_collection": cents_to_amount(self.pending_collection_cents),
            "pending_submission": cents_to_amount(self.pending_submission_cents),
            "total_submitted": cents_to_amount(self.total_submitted_cents),
            "disputed": cents_to_amount(self.disputed_cents),
            "submission_count": self.submission_count,
            "last_received_at": to_utc_z(self.last_received_at),
            "last_sale_at": to_utc_z(self.last_sale_at),
        }


class SellerManagerAccount(db.Model):
    """
    Seller manager sub-record.

    Seller managers are uncapped point sources: allocating or selling points
    never decrements a manager balance. Every point handed out is matched 1:1
    by cash the manager now holds (cash_on_hand_cents).
    """
    __tablename__ = "seller_manager_accounts"
    __table_args__ = (
        db.Index("ix_seller_manager_accounts_event", "event_id"),
    )

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), primary_key=True)
    event_id = db.Column(db.Integer, db.ForeignKey("events.id"), nullable=False)

    total_allocations = db.Column(db.Integer, nullable=False, default=0)
    total_points_allocated = db.Column(db.Integer, nullable=False, default=0)
    direct_sales_count = db.Column(db.Integer, nullable=False, default=0)
    direct_sales_points = db.Column(db.Integer, nullable=False, default=0)

    cash_on_hand_cents = db.Column(db.Integer, nullable=False, default=0)
    from_point_purchase_cents = db.Column(db.Integer, nullable=False, default=0)
    pending_from_sellers_cents = db.Column(db.Integer, nullable=False, default=0)
    confirmed_from_sellers_cents = db.Column(db.Integer, nullable=False, default=0)
    pending_submission_cents = db.Column(db.Integer, nullable=False, default=0)
    total_submitted_cents = db.Column(db.Integer, nullable=False, default=0)
    disputed_cents = db.Column(db.Integer, nullable=False, default=0)
    submission_count = db.Column(db.Integer, nullable=False, default=0)

    last_allocation_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    user = db.relationship("User", backref=db.backref("seller_manager_account", uselist=False, lazy=True))

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "total_allocations": self.total_allocations,
            "total_points_allocated": self.total_points_allocated,
            "direct_sales_count": self.direct_sales_count,
            "direct_sales_points": self.direct_sales_points,
            "cash_stats": {
                "cash_on_hand": cents_to_amount(self.cash_on_hand_cents),
                "from_point_purchase": cents_to_amount(self.from_point_purchase_cents),
                "pending_from_sellers": cents_to_amount(self.pending_from_sellers_cents),
                "confirmed_from_sellers": cents_to_amount(self.confirmed_from_sellers_cents),
                "pending_submission": cents_to_amount(self.pending_submission_cents),
                "total_submitted": cents_to_amount(self.total_submitted_cents),
                "disputed": cents_to_amount(self.disputed_cents),
                "submission_count": self.submission_count,
            },
            "last_allocation_at": to_utc_z(self.last_allocation_at),
        }


class PointSellerAccount(db.Model):
    """
    Point seller sub-record: issues point cards and sells points directly.

    today_* counters belong to stats_date; they are rolled over lazily by the
    ledger the first time the account is written on a new day.
    """
    __tablename__ = "point_seller_accounts"
    __table_args__ = (
        db.Index("ix_point_seller_accounts_event", "event_id"),
    )

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), primary_key=True)
    event_id = db.Column(db.Integer, db.ForeignKey("events.id"), nullable=False)

    # cashManagement
    cash_on_hand_cents = db.Column(db.Integer, nullable=False, default=0)
    pending_submission_cents = db.Column(db.Integer, nullable=False, default=0)
    total_submitted_cents = db.Column(db.Integer, nullable=False, default=0)
    disputed_cents = db.Column(db.Integer, nullable=False, default=0)
    submission_count = db.Column(db.Integer, nullable=False, default=0)

    # totalStats
    cards_issued = db.Column(db.Integer, nullable=False, default=0)
    card_points_issued = db.Column(db.Integer, nullable=False, default=0)
    direct_sales_count = db.Column(db.Integer, nullable=False, default=0)
    direct_sales_points = db.Column(db.Integer, nullable=False, default=0)
    total_cash_received_cents = db.Column(db.Integer, nullable=False, default=0)

    # todayStats
    stats_date = db.Column(db.Date, nullable=True)
    today_cards_issued = db.Column(db.Integer, nullable=False, default=0)
    today_card_points_issued = db.Column(db.Integer, nullable=False, default=0)
    today_direct_sales_count = db.Column(db.Integer, nullable=False, default=0)
    today_direct_sales_points = db.Column(db.Integer, nullable=False, default=0)
    today_cash_received_cents = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    user = db.relationship("User", backref=db.backref("point_seller_account", uselist=False, lazy=True))

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "cash_management": {
                "cash_on_hand": cents_to_amount(self.cash_on_hand_cents),
                "pending_submission": cents_to_amount(self.pending_submission_cents),
                "total_submitted": cents_to_amount(self.total_submitted_cents),
                "disputed": cents_to_amount(self.disputed_cents),
                "submission_count": self.submission_count,
            },
            "total_stats": {
                "cards_issued": self.cards_issued,
                "card_points_issued": self.card_points_issued,
                "direct_sales_count": self.direct_sales_count,
                "direct_sales_points": self.direct_sales_points,
                "cash_received": cents_to_amount(self.total_cash_received_cents),
            },
            "today_stats": {
                "date": self.stats_date.isoformat() if self.stats_date else None,
                "cards_issued": self.today_cards_issued,
                "card_points_issued": self.today_card_points_issued,
                "direct_sales_count": self.today_direct_sales_count,
                "direct_sales_points": self.today_direct_sales_points,
                "cash_received": cents_to_amount(self.today_cash_received_cents),
            },
        }


class CustomerAccount(db.Model):
    """Customer points account."""
    __tablename__ = "customer_accounts"
    __table_args__ = (
        db.Index("ix_customer_accounts_event", "event_id"),
    )

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), primary_key=True)
    event_id = db.Column(db.Integer, db.ForeignKey("events.id"), nullable=False)

    available_points = db.Column(db.Integer, nullable=False, default=0)
    total_received_points = db.Column(db.Integer, nullable=False, default=0)
    total_spent_points = db.Column(db.Integer, nullable=False, default=0)
    transferred_in_points = db.Column(db.Integer, nullable=False, default=0)
    transferred_out_points = db.Column(db.Integer, nullable=False, default=0)
    transaction_count = db.Column(db.Integer, nullable=False, default=0)
    last_activity_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    user = db.relationship("User", backref=db.backref("customer_account", uselist=False, lazy=True))

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "available_points": self.available_points,
            "total_received_points": self.total_received_points,
            "total_spent_points": self.total_spent_points,
            "transferred_in_points": self.transferred_in_points,
            "transferred_out_points": self.transferred_out_points,
            "transaction_count": self.transaction_count,
            "last_activity_at": to_utc_z(self.last_activity_at),
        }


class CollectorAccount(db.Model):
    """
    Cash stats for a pool collector (cashier or finance manager).

    A user holding both collector roles has one row per role.
    """
    __tablename__ = "collector_accounts"
    __table_args__ = (
        db.UniqueConstraint("user_id", "role", name="uq_collector_accounts_user_role"),
        db.Index("ix_collector_accounts_event", "event_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    event_id = db.Column(db.Integer, db.ForeignKey("events.id"), nullable=False)
    role = db.Column(db.String(32), nullable=False)

    total_collected_cents = db.Column(db.Integer, nullable=False, default=0)
    total_collections = db.Column(db.Integer, nullable=False, default=0)
    stats_date = db.Column(db.Date, nullable=True)
    today_collected_cents = db.Column(db.Integer, nullable=False, default=0)
    today_collections = db.Column(db.Integer, nullable=False, default=0)
    last_collection_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "role": self.role,
            "total_collected": cents_to_amount(self.total_collected_cents),
            "total_collections": self.total_collections,
            "today_collected": cents_to_amount(self.today_collected_cents),
            "today_collections": self.today_collections,
            "stats_date": self.stats_date.isoformat() if self.stats_date else None,
            "last_collection_at": to_utc_z(self.last_collection_at),
        }
