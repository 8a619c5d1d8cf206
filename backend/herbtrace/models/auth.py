from __future__ import annotations

from ..extensions import db
from herbtrace.time_utils import to_utc_z, utcnow


class User(db.Model):
    """
    Supply-chain participant accounts for authentication and attribution.

    user_id is the stable business identifier (e.g. "farmer001") recorded as
    actor_id on events and farmer_id on batches. id is the surrogate key.

    WHY: Every event must be attributable to one actor. No shared logins.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.Index("ix_users_role", "role"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    user_id = db.Column(db.String(50), nullable=False, unique=True, index=True)
    username = db.Column(db.String(50), nullable=False, unique=True)
    email = db.Column(db.String(255), nullable=False, unique=True)

    # Bcrypt hashed password
    password_hash = db.Column(db.String(255), nullable=False)

    # farmer / processor / laboratory / regulator / retailer / consumer / admin
    role = db.Column(db.String(32), nullable=False)
    organization = db.Column(db.String(100), nullable=False)

    # Permission codes granted on top of the role defaults (see permissions.py)
    extra_permissions = db.Column(db.JSON, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    last_login_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<User user_id={self.user_id!r} role={self.role!r}>"

    def to_dict(self) -> dict:
        from ..permissions import permissions_for_user

        return {
            "userId": self.user_id,
            "username": self.username,
            "email": self.email,
            "role": self.role,
            "organization": self.organization,
            "permissions": sorted(permissions_for_user(self)),
            "isActive": self.is_active,
            "createdAt": to_utc_z(self.created_at),
            "lastLoginAt": to_utc_z(self.last_login_at) if self.last_login_at else None,
        }


class SessionToken(db.Model):
    """
    Server-side session records.

    Only the SHA-256 hash of the bearer token is stored. Sessions expire
    absolutely (expires_at) and after inactivity (see session_service).
    """
    __tablename__ = "session_tokens"
    __table_args__ = (
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_pk = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    token_hash = db.Column(db.String(64), nullable=False, unique=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)

    is_revoked = db.Column(db.Boolean, nullable=False, default=False)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    revoked_reason = db.Column(db.String(255), nullable=True)

    user_agent = db.Column(db.String(255), nullable=True)
    ip_address = db.Column(db.String(64), nullable=True)

    user = db.relationship("User", backref=db.backref("sessions", lazy=True, cascade="all, delete-orphan"))
