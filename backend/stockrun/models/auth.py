from __future__ import annotations

from ..extensions import db
from stockrun.time_utils import to_utc_z


ROLE_ADMIN = "ADMIN"
ROLE_SECRETARY = "SECRETARY"
ROLE_MANAGER = "MANAGER"
ROLE_SALES_REP = "SALES_REP"
ROLE_DRIVER = "DRIVER"

ALL_ROLES = (ROLE_ADMIN, ROLE_SECRETARY, ROLE_MANAGER, ROLE_SALES_REP, ROLE_DRIVER)

# Roles whose devices report their position while logged in
FIELD_ROLES = (ROLE_SALES_REP, ROLE_DRIVER)


class User(db.Model):
    """
    User accounts for authentication, attribution, and field-staff location.

    LOCATION STATE:
    - location_sharing: True while the user's tracker is publishing fixes
    - location_*: last published fix (kept when sharing stops, cleared only
      by the operator demo/clear utility)

    WHY: Dashboards read these columns; only the owning user's tracker and
    operator utilities write them.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.Index("ix_users_role_sharing", "role", "location_sharing"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)
    phone = db.Column(db.String(32), nullable=True)

    # Bcrypt hashed password
    password_hash = db.Column(db.String(255), nullable=False)

    # ADMIN, SECRETARY, MANAGER, SALES_REP, DRIVER
    role = db.Column(db.String(16), nullable=False, index=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    last_login_at = db.Column(db.DateTime(timezone=True), nullable=True)

    location_sharing = db.Column(db.Boolean, nullable=False, default=False)
    location_latitude = db.Column(db.Float, nullable=True)
    location_longitude = db.Column(db.Float, nullable=True)
    location_recorded_at = db.Column(db.DateTime(timezone=True), nullable=True)
    location_accuracy_m = db.Column(db.Float, nullable=True)

    @property
    def is_field_staff(self) -> bool:
        return self.role in FIELD_ROLES

    @property
    def current_location(self) -> dict | None:
        if self.location_latitude is None or self.location_longitude is None:
            return None
        return {
            "latitude": self.location_latitude,
            "longitude": self.location_longitude,
            "timestamp": to_utc_z(self.location_recorded_at),
            "accuracy_m": self.location_accuracy_m,
        }

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email!r} role={self.role}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "role": self.role,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "last_login_at": to_utc_z(self.last_login_at) if self.last_login_at else None,
            "location_sharing": self.location_sharing,
            "current_location": self.current_location,
        }


class SessionToken(db.Model):
    """
    Authentication session tokens.

    SECURITY:
    - Only the SHA-256 hash of the token is stored
    - Absolute and idle timeouts are enforced by session_service
    """
    __tablename__ = "session_tokens"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    token_hash = db.Column(db.String(64), nullable=False, unique=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=False)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)

    is_revoked = db.Column(db.Boolean, nullable=False, default=False)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    revoked_reason = db.Column(db.String(255), nullable=True)

    user_agent = db.Column(db.String(255), nullable=True)
    ip_address = db.Column(db.String(64), nullable=True)

    user = db.relationship("User", backref=db.backref("sessions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
            "last_used_at": to_utc_z(self.last_used_at),
            "expires_at": to_utc_z(self.expires_at),
            "is_revoked": self.is_revoked,
        }
