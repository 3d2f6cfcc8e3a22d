from __future__ import annotations

from ..extensions import db
from bazaar.time_utils import to_utc_z


class SecurityEvent(db.Model):
    """
    Security event audit log with tenant context.

    MULTI-TENANT: Events carry org_id and event_id so they can be filtered per
    tenant. Both are nullable for events raised before a caller is resolved.

    WHY: Track PIN failures, lockouts, PIN resets and permission denials for
    later review.

    IMMUTABLE: Never update. Only the maintenance retention command deletes.
    """
    __tablename__ = "security_events"
    __table_args__ = (
        db.Index("ix_security_events_user_type", "user_id", "event_type"),
        db.Index("ix_security_events_event_occurred", "event_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=True, index=True)
    event_id = db.Column(db.Integer, db.ForeignKey("events.id"), nullable=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    event_type = db.Column(db.String(64), nullable=False, index=True)  # PIN_FAILED, PIN_LOCKED, PERMISSION_DENIED, ...
    resource = db.Column(db.String(128), nullable=True)  # e.g. "/api/points/allocate"
    action = db.Column(db.String(64), nullable=True)     # e.g. capability code

    success = db.Column(db.Boolean, nullable=False, index=True)
    reason = db.Column(db.Text, nullable=True)

    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(512), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "event_id": self.event_id,
            "user_id": self.user_id,
            "event_type": self.event_type,
            "resource": self.resource,
            "action": self.action,
            "success": self.success,
            "reason": self.reason,
            "ip_address": self.ip_address,
            "occurred_at": to_utc_z(self.occurred_at),
        }
