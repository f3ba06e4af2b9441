from __future__ import annotations

from ..extensions import db
from oms.time_utils import to_utc_z


ROLE_DEV_ADMIN = "DEV_ADMIN"      # platform operator, no tenant
ROLE_SUPER_ADMIN = "SUPER_ADMIN"  # tenant owner
ROLE_ADMIN = "ADMIN"              # tenant employee
VALID_ROLES = {ROLE_DEV_ADMIN, ROLE_SUPER_ADMIN, ROLE_ADMIN}


class User(db.Model):
    """
    User accounts for login and attribution.

    MULTI-TENANT: Users live in the central database and are scoped by
    tenant_id. Platform operators (DEV_ADMIN) have no tenant.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.Index("ix_users_tenant_id", "tenant_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.String(64), db.ForeignKey("tenants.id"), nullable=True)

    username = db.Column(db.String(255), nullable=False, unique=True, index=True)
    email = db.Column(db.String(255), nullable=True)

    # Bcrypt hashed password
    password_hash = db.Column(db.String(255), nullable=False)

    role = db.Column(db.String(32), nullable=False, default=ROLE_ADMIN)

    # Dashboard page ids this user may open (ADMIN only; owners see everything)
    permissions = db.Column(db.JSON, nullable=False, default=list)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    last_login_at = db.Column(db.DateTime(timezone=True), nullable=True)

    tenant = db.relationship("Tenant", backref=db.backref("users", lazy=True))

    def __repr__(self) -> str:
        return f"<User id={self.id} username={self.username!r} tenant_id={self.tenant_id!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "username": self.username,
            "email": self.email,
            "role": self.role,
            "permissions": list(self.permissions or []),
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "last_login_at": to_utc_z(self.last_login_at) if self.last_login_at else None,
        }
