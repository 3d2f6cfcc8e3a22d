from __future__ import annotations

from ..extensions import db
from bazaar.time_utils import to_utc_z, cents_to_amount


class PointCard(db.Model):
    """
    Bearer point card sold by a point seller.

    BALANCE: initial == current + spent at all times; current never drops
    below zero. is_empty is set as soon as current reaches zero.
    A card absorbed into a customer account by top-up is destroyed.
    """
    __tablename__ = "point_cards"
    __table_args__ = (
        db.UniqueConstraint("event_id", "card_number", name="uq_point_cards_event_number"),
        db.Index("ix_point_cards_issuer", "issuer_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False)
    event_id = db.Column(db.Integer, db.ForeignKey("events.id"), nullable=False)
    card_number = db.Column(db.String(32), nullable=False)

    issuer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    cash_received_cents = db.Column(db.Integer, nullable=False, default=0)

    initial_points = db.Column(db.Integer, nullable=False)
    current_points = db.Column(db.Integer, nullable=False)
    spent_points = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    is_expired = db.Column(db.Boolean, nullable=False, default=False)
    is_destroyed = db.Column(db.Boolean, nullable=False, default=False)
    is_empty = db.Column(db.Boolean, nullable=False, default=False)

    transaction_count = db.Column(db.Integer, nullable=False, default=0)
    issued_at = db.Column(db.DateTime(timezone=True), nullable=False)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True)
    first_used_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=True)
    destroyed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    issuer = db.relationship("User")

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<PointCard {self.card_number} current={self.current_points}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "card_number": self.card_number,
            "issuer_id": self.issuer_id,
            "cash_received": cents_to_amount(self.cash_received_cents),
            "balance": {
                "initial": self.initial_points,
                "current": self.current_points,
                "spent": self.spent_points,
            },
            "status": {
                "is_active": self.is_active,
                "is_expired": self.is_expired,
                "is_destroyed": self.is_destroyed,
                "is_empty": self.is_empty,
            },
            "transaction_count": self.transaction_count,
            "issued_at": to_utc_z(self.issued_at),
            "expires_at": to_utc_z(self.expires_at),
            "first_used_at": to_utc_z(self.first_used_at),
            "last_used_at": to_utc_z(self.last_used_at),
        }
