from __future__ import annotations

import enum

import sqlalchemy as sa
from sqlalchemy.orm import relationship

from .base import StoreModel
from oms.time_utils import utcnow, to_utc_z


class OrderStatus(str, enum.Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    RETURNED = "RETURNED"
    RETURN_TRANSFER = "RETURN_TRANSFER"
    RETURN_AS_ON_SYSTEM = "RETURN_AS_ON_SYSTEM"
    RETURN_HANDOVER = "RETURN_HANDOVER"
    RETURN_COMPLETED = "RETURN_COMPLETED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


class Order(StoreModel):
    """
    Customer order.

    MULTI-TENANT: Lives in the tenant's store and is scoped by tenant_id.

    Status only changes through the lifecycle service. stock_deducted_at and
    restocked_at record that the ledger side effects happened, so each runs
    at most once per order.
    """
    __tablename__ = "orders"
    __table_args__ = (
        sa.Index("ix_orders_tenant_status_created", "tenant_id", "status", "created_at"),
        sa.Index("ix_orders_tenant_tracking", "tenant_id", "tracking_number"),
        sa.Index("ix_orders_tenant_phone", "tenant_id", "customer_phone"),
    )

    id = sa.Column(sa.String(64), primary_key=True)
    tenant_id = sa.Column(sa.String(64), nullable=False, index=True)

    customer_name = sa.Column(sa.String(255), nullable=False)
    customer_phone = sa.Column(sa.String(64), nullable=False)
    customer_phone2 = sa.Column(sa.String(64), nullable=True)
    customer_address = sa.Column(sa.String(512), nullable=False, default="")
    customer_city = sa.Column(sa.String(128), nullable=True)

    parcel_weight = sa.Column(sa.String(16), nullable=True)
    parcel_description = sa.Column(sa.String(255), nullable=True)

    total_amount_cents = sa.Column(sa.Integer, nullable=False, default=0)

    status = sa.Column(sa.String(32), nullable=False, default=OrderStatus.PENDING.value)
    tracking_number = sa.Column(sa.String(64), nullable=True)
    courier_status = sa.Column(sa.String(255), nullable=True)

    is_printed = sa.Column(sa.Boolean, nullable=False, default=False)
    opened_by = sa.Column(sa.String(255), nullable=True)

    created_at = sa.Column(sa.DateTime, nullable=False, default=utcnow)
    confirmed_at = sa.Column(sa.DateTime, nullable=True)
    shipped_at = sa.Column(sa.DateTime, nullable=True)
    delivered_at = sa.Column(sa.DateTime, nullable=True)
    return_completed_at = sa.Column(sa.DateTime, nullable=True)

    stock_deducted_at = sa.Column(sa.DateTime, nullable=True)
    restocked_at = sa.Column(sa.DateTime, nullable=True)

    lines = relationship(
        "OrderLine",
        back_populates="order",
        order_by="OrderLine.line_no",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    logs = relationship(
        "OrderLog",
        back_populates="order",
        order_by="OrderLog.id",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Order id={self.id!r} status={self.status} tenant_id={self.tenant_id!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "customer_phone2": self.customer_phone2,
            "customer_address": self.customer_address,
            "customer_city": self.customer_city,
            "parcel_weight": self.parcel_weight,
            "parcel_description": self.parcel_description,
            "items": [line.to_dict() for line in self.lines],
            "total_amount_cents": self.total_amount_cents,
            "status": self.status,
            "tracking_number": self.tracking_number,
            "courier_status": self.courier_status,
            "is_printed": self.is_printed,
            "opened_by": self.opened_by,
            "created_at": to_utc_z(self.created_at),
            "confirmed_at": to_utc_z(self.confirmed_at),
            "shipped_at": to_utc_z(self.shipped_at),
            "delivered_at": to_utc_z(self.delivered_at),
            "return_completed_at": to_utc_z(self.return_completed_at),
            "logs": [log.to_dict() for log in self.logs],
        }


class OrderLine(StoreModel):
    __tablename__ = "order_lines"
    __table_args__ = (
        sa.CheckConstraint("quantity > 0", name="ck_order_lines_quantity_pos"),
        sa.Index("ix_order_lines_product", "product_id"),
        {"sqlite_autoincrement": True},
    )

    id = sa.Column(sa.Integer, primary_key=True)
    order_id = sa.Column(sa.String(64), sa.ForeignKey("orders.id"), nullable=False, index=True)
    line_no = sa.Column(sa.Integer, nullable=False, default=0)

    product_id = sa.Column(sa.String(64), nullable=False)
    name = sa.Column(sa.String(255), nullable=False, default="")
    quantity = sa.Column(sa.Integer, nullable=False)
    unit_price_cents = sa.Column(sa.Integer, nullable=False, default=0)

    order = relationship("Order", back_populates="lines")

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "name": self.name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
        }


class OrderLog(StoreModel):
    """Append-only audit entry. Never updated or deleted on its own."""
    __tablename__ = "order_logs"
    __table_args__ = ({"sqlite_autoincrement": True},)

    id = sa.Column(sa.Integer, primary_key=True)
    order_id = sa.Column(sa.String(64), sa.ForeignKey("orders.id"), nullable=False, index=True)
    message = sa.Column(sa.String(512), nullable=False)
    actor = sa.Column(sa.String(255), nullable=False, default="System")
    created_at = sa.Column(sa.DateTime, nullable=False, default=utcnow)

    order = relationship("Order", back_populates="logs")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "message": self.message,
            "timestamp": to_utc_z(self.created_at),
            "user": self.actor,
        }
