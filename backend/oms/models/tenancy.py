from __future__ import annotations

from ..extensions import db
from oms.time_utils import to_utc_z


COURIER_MODES = ("STANDARD", "EXISTING_WAYBILL")


class Tenant(db.Model):
    """
    Multi-tenant root: every shop is a Tenant.

    MULTI-TENANT:
    - Tenants live in the central database; their products and orders live in
      the store addressed by store_url (or the shared default store when null)
    - Every store row carries tenant_id, so tenants sharing the default store
      remain isolated by query scoping
    - Tenants are soft-deactivated (is_active=False), never hard-deleted while
      orders reference them
    """
    __tablename__ = "tenants"

    id = db.Column(db.String(64), primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    primary_domain = db.Column(db.String(255), nullable=True, index=True)

    # Dedicated store endpoint (SQLAlchemy URL); null -> shared default store
    store_url = db.Column(db.String(512), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    # Branding
    shop_name = db.Column(db.String(255), nullable=True)
    logo_url = db.Column(db.String(512), nullable=True)
    shop_address = db.Column(db.String(512), nullable=True)
    shop_phone = db.Column(db.String(64), nullable=True)
    show_bill_qr = db.Column(db.Boolean, nullable=False, default=True)

    # Courier credentials
    courier_api_key = db.Column(db.String(255), nullable=True)
    courier_client_id = db.Column(db.String(255), nullable=True)
    courier_mode = db.Column(db.String(32), nullable=False, default="STANDARD")

    # Financial defaults (minor units)
    delivery_fee_cents = db.Column(db.Integer, nullable=False, default=35000)
    return_fee_cents = db.Column(db.Integer, nullable=False, default=15000)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    domains = db.relationship(
        "TenantDomain",
        backref="tenant",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="TenantDomain.id",
    )

    def __repr__(self) -> str:
        return f"<Tenant id={self.id!r} name={self.name!r}>"

    def to_dict(self, include_secrets: bool = False) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "primary_domain": self.primary_domain,
            "store_url": self.store_url if include_secrets else None,
            "has_dedicated_store": bool(self.store_url),
            "is_active": self.is_active,
            "domains": [d.to_dict() for d in self.domains],
            "settings": {
                "shop_name": self.shop_name,
                "logo_url": self.logo_url,
                "shop_address": self.shop_address,
                "shop_phone": self.shop_phone,
                "show_bill_qr": self.show_bill_qr,
                "courier_client_id": self.courier_client_id,
                "courier_mode": self.courier_mode,
                "has_courier_api_key": bool(self.courier_api_key),
                "delivery_fee_cents": self.delivery_fee_cents,
                "return_fee_cents": self.return_fee_cents,
            },
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_secrets:
            data["settings"]["courier_api_key"] = self.courier_api_key
        return data


class TenantDomain(db.Model):
    """Alias host for a tenant (custom domain). Only active records resolve."""
    __tablename__ = "tenant_domains"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "host", name="uq_tenant_domains_tenant_host"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.String(64), db.ForeignKey("tenants.id"), nullable=False, index=True)
    host = db.Column(db.String(255), nullable=False, index=True)
    record_type = db.Column(db.String(8), nullable=False, default="CNAME")  # CNAME | A
    is_active = db.Column(db.Boolean, nullable=False, default=False)

    def to_dict(self) -> dict:
        return {
            "host": self.host,
            "type": self.record_type,
            "is_active": self.is_active,
        }
