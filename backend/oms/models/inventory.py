from __future__ import annotations

import sqlalchemy as sa
from sqlalchemy.orm import relationship

from .base import StoreModel
from oms.time_utils import utcnow, to_utc_z


class Product(StoreModel):
    """
    Product master data with its stock batches.

    MULTI-TENANT: Lives in the tenant's store and is scoped by tenant_id.
    SKUs are unique within a tenant, not globally.

    Stock is never a stored field: live stock is the sum of batch quantities.
    version_id is an optimistic concurrency token; every ledger mutation
    touches updated_at so two writers racing on the same product cannot both
    commit.
    """
    __tablename__ = "products"
    __table_args__ = (
        sa.UniqueConstraint("tenant_id", "sku", name="uq_products_tenant_sku"),
        sa.Index("ix_products_tenant_name", "tenant_id", "name"),
    )

    id = sa.Column(sa.String(64), primary_key=True)
    tenant_id = sa.Column(sa.String(64), nullable=False, index=True)

    sku = sa.Column(sa.String(64), nullable=False)
    name = sa.Column(sa.String(255), nullable=False)

    # Fixed selling price, minor units
    price_cents = sa.Column(sa.Integer, nullable=False, default=0)

    is_active = sa.Column(sa.Boolean, nullable=False, default=True)

    version_id = sa.Column(sa.Integer, nullable=False, default=1)
    created_at = sa.Column(sa.DateTime, nullable=False, default=utcnow)
    updated_at = sa.Column(sa.DateTime, nullable=False, default=utcnow)

    batches = relationship(
        "StockBatch",
        back_populates="product",
        order_by="StockBatch.created_at",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id!r} sku={self.sku!r} tenant_id={self.tenant_id!r}>"

    def to_dict(self, include_batches: bool = True) -> dict:
        # Imported here: inventory_service imports this module.
        from oms.services.inventory_service import (
            live_stock,
            cost_value_cents,
            average_unit_cost_cents,
        )

        data = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "sku": self.sku,
            "name": self.name,
            "price_cents": self.price_cents,
            "is_active": self.is_active,
            "stock": live_stock(self),
            "cost_value_cents": cost_value_cents(self),
            "average_unit_cost_cents": average_unit_cost_cents(self),
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_batches:
            data["batches"] = [b.to_dict() for b in self.batches]
        return data


class StockBatch(StoreModel):
    """
    A discrete stock receipt.

    AUDIT: Batches are never deleted, even at zero quantity. quantity is the
    only mutable field and only the FIFO ledger changes it; unit_cost_cents
    and created_at are fixed at creation.
    """
    __tablename__ = "stock_batches"
    __table_args__ = (
        sa.CheckConstraint("quantity >= 0", name="ck_stock_batches_quantity_nonneg"),
        sa.Index("ix_stock_batches_product_created", "product_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = sa.Column(sa.Integer, primary_key=True)
    product_id = sa.Column(sa.String(64), sa.ForeignKey("products.id"), nullable=False)

    quantity = sa.Column(sa.Integer, nullable=False)
    original_quantity = sa.Column(sa.Integer, nullable=False)
    unit_cost_cents = sa.Column(sa.Integer, nullable=False, default=0)

    # Consumption order is by this timestamp, oldest first
    created_at = sa.Column(sa.DateTime, nullable=False, default=utcnow)

    is_return = sa.Column(sa.Boolean, nullable=False, default=False)
    # Order a return batch was restocked from
    order_id = sa.Column(sa.String(64), nullable=True, index=True)

    product = relationship("Product", back_populates="batches")

    def __repr__(self) -> str:
        return f"<StockBatch id={self.id} product_id={self.product_id!r} qty={self.quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "original_quantity": self.original_quantity,
            "unit_cost_cents": self.unit_cost_cents,
            "created_at": to_utc_z(self.created_at),
            "is_return": self.is_return,
            "order_id": self.order_id,
        }
