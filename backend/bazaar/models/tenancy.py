from __future__ import annotations

from ..extensions import db
from bazaar.time_utils import to_utc_z


class Organization(db.Model):
    """
    Multi-tenant root: every fair operator is an Organization.

    WHY: Shared-database multi-tenancy with strict isolation. An organization
    runs one or more events; ledger data never crosses the event boundary.
    """
    __tablename__ = "organizations"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(32), nullable=False, unique=True, index=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Organization id={self.id} code={self.code!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Event(db.Model):
    """
    Tenant scope: an (organization, event) pair.

    MULTI-TENANT: Every user, transaction, submission, card, stall and
    statistics row carries org_id + event_id. Queries must always filter by
    event_id taken from the verified caller, never from the payload.

    CONFIG: Per-event operating limits live on the event row so that the
    transfer engine reads them inside the same snapshot as the balances.
    Thresholds are basis points (3000 = 30%).
    """
    __tablename__ = "events"
    __table_args__ = (
        db.UniqueConstraint("org_id", "code", name="uq_events_org_code"),
        db.Index("ix_events_org_id", "org_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False)
    code = db.Column(db.String(32), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    max_points_per_allocation = db.Column(db.Integer, nullable=False, default=100)
    max_points_per_direct_sale = db.Column(db.Integer, nullable=False, default=100)
    max_points_per_card = db.Column(db.Integer, nullable=False, default=100)
    max_points_per_grant = db.Column(db.Integer, nullable=False, default=100)
    point_card_validity_days = db.Column(db.Integer, nullable=True, default=30)  # NULL = cards never expire
    collection_warning_threshold_bps = db.Column(db.Integer, nullable=False, default=3000)
    collection_high_risk_threshold_bps = db.Column(db.Integer, nullable=False, default=5000)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )

    organization = db.relationship("Organization", backref=db.backref("events", lazy=True))

    def __repr__(self) -> str:
        return f"<Event id={self.id} org_id={self.org_id} code={self.code!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "code": self.code,
            "name": self.name,
            "is_active": self.is_active,
            "limits": {
                "max_points_per_allocation": self.max_points_per_allocation,
                "max_points_per_direct_sale": self.max_points_per_direct_sale,
                "max_points_per_card": self.max_points_per_card,
                "max_points_per_grant": self.max_points_per_grant,
                "point_card_validity_days": self.point_card_validity_days,
            },
            "collection_warning_threshold_bps": self.collection_warning_threshold_bps,
            "collection_high_risk_threshold_bps": self.collection_high_risk_threshold_bps,
            "created_at": to_utc_z(self.created_at),
        }
