from __future__ import annotations

from ..extensions import db
from bazaar.time_utils import to_utc_z


class User(db.Model):
    """
    Participant in one event.

    MULTI-TENANT: Unique per (event_id, auth_uid) and (event_id, phone).
    auth_uid is the identity assigned by the external login provider; the
    resolver finds users through that secondary index, never by primary key.

    SECURITY BLOCK: pin_* columns hold the transaction PIN. pin_hash_method
    selects between the legacy salted sha256 digest and bcrypt.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.UniqueConstraint("event_id", "auth_uid", name="uq_users_event_auth_uid"),
        db.UniqueConstraint("event_id", "phone", name="uq_users_event_phone"),
        db.Index("ix_users_event_department", "event_id", "department_code"),
        db.Index("ix_users_event_identity_tag", "event_id", "identity_tag"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    event_id = db.Column(db.Integer, db.ForeignKey("events.id"), nullable=False, index=True)

    auth_uid = db.Column(db.String(128), nullable=False)
    phone = db.Column(db.String(32), nullable=False)
    display_name = db.Column(db.String(128), nullable=False)
    department_code = db.Column(db.String(64), nullable=True)
    identity_tag = db.Column(db.String(64), nullable=True)  # e.g. student, staff, visitor

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    # Transaction PIN
    pin_hash = db.Column(db.String(255), nullable=True)
    pin_salt = db.Column(db.String(64), nullable=True)  # legacy sha256 only
    pin_hash_method = db.Column(db.String(16), nullable=True)  # bcrypt | sha256
    pin_failed_attempts = db.Column(db.Integer, nullable=False, default=0)
    pin_locked_until = db.Column(db.DateTime(timezone=True), nullable=True)
    pin_last_failed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    pin_updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )

    role_links = db.relationship(
        "UserRole",
        backref="user",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def roles(self) -> frozenset[str]:
        return frozenset(link.role for link in self.role_links)

    def has_role(self, role: str) -> bool:
        return role in self.roles

    @property
    def has_pin(self) -> bool:
        return bool(self.pin_hash)

    def __repr__(self) -> str:
        return f"<User id={self.id} event_id={self.event_id} auth_uid={self.auth_uid!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "event_id": self.event_id,
            "auth_uid": self.auth_uid,
            "phone": self.phone,
            "display_name": self.display_name,
            "department_code": self.department_code,
            "identity_tag": self.identity_tag,
            "roles": sorted(self.roles),
            "is_active": self.is_active,
            "has_pin": self.has_pin,
            "pin_locked_until": to_utc_z(self.pin_locked_until),
            "created_at": to_utc_z(self.created_at),
        }


class UserRole(db.Model):
    """Role tag held by a user. Tags come from the closed set in bazaar.permissions.roles."""
    __tablename__ = "user_roles"
    __table_args__ = (
        db.UniqueConstraint("user_id", "role", name="uq_user_roles_user_role"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    role = db.Column(db.String(32), nullable=False, index=True)


class ManagedDepartment(db.Model):
    """Department placed under a seller manager's scope."""
    __tablename__ = "managed_departments"
    __table_args__ = (
        db.UniqueConstraint("manager_id", "department_code", name="uq_managed_departments_manager_dept"),
        db.Index("ix_managed_departments_event_dept", "event_id", "department_code"),
    )

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(db.Integer, db.ForeignKey("events.id"), nullable=False)
    manager_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    department_code = db.Column(db.String(64), nullable=False)


class CallerCredential(db.Model):
    """
    Bearer credential issued by the login collaborator.

    SECURITY: Only the SHA-256 of the token is stored. The credential names an
    external identity and a tenant; it deliberately carries no roles, which
    are always re-read from the user record.
    """
    __tablename__ = "caller_credentials"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False)
    event_id = db.Column(db.Integer, db.ForeignKey("events.id"), nullable=False)
    auth_uid = db.Column(db.String(128), nullable=False)
    token_hash = db.Column(db.String(64), nullable=False, unique=True, index=True)

    issued_at = db.Column(db.DateTime(timezone=True), nullable=False)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)

    @property
    def is_revoked(self) -> bool:
        return self.revoked_at is not None
