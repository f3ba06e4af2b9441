# backend/oms/services/products_service.py
"""
Products Service with Multi-Tenant Support

MULTI-TENANT: All product operations are tenant-scoped.
- SKU uniqueness is checked within the tenant only
- delete_product is a soft delete; stock batches are audit history and stay
"""
from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from ..errors import ConflictError, ValidationError
from ..models import Product, new_id
from ..validation import ModelValidationPolicy, validate_payload, enforce_rules_product
from oms.time_utils import utcnow
from . import inventory_service

logger = logging.getLogger(__name__)

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={"sku", "name", "price_cents", "is_active"},
    required_on_create={"sku", "name"},
    ignored_fields={"id", "tenant_id", "batches", "stock"},
)


def list_products(
    session: Session,
    tenant_id: str,
    *,
    include_inactive: bool = False,
    search: str | None = None,
) -> list[Product]:
    query = session.query(Product).filter(Product.tenant_id == tenant_id)
    if not include_inactive:
        query = query.filter(Product.is_active.is_(True))
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(Product.name.ilike(pattern) | Product.sku.ilike(pattern))
    return query.order_by(Product.name.asc(), Product.id.asc()).all()


def _sku_taken(session: Session, tenant_id: str, sku: str, exclude_id: str | None) -> bool:
    query = session.query(Product.id).filter(Product.tenant_id == tenant_id, Product.sku == sku)
    if exclude_id:
        query = query.filter(Product.id != exclude_id)
    return query.first() is not None


def upsert_product(session: Session, tenant_id: str, payload: dict) -> Product:
    """
    Create or update a product.

    Raises:
        ValidationError: sku/name missing or malformed fields
        ConflictError: SKU already used by another product of this tenant
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    product_id = str(payload.get("id") or "").strip()
    product = None
    if product_id:
        product = session.query(Product).filter_by(id=product_id).first()
        if product is not None and product.tenant_id != tenant_id:
            raise ConflictError(f"Product id {product_id} is already in use")

    patch = validate_payload(
        model=Product, payload=payload, policy=PRODUCT_POLICY, partial=product is not None,
    )
    enforce_rules_product(patch)

    for key in ("sku", "name"):
        if key in patch and not patch[key]:
            raise ValidationError(f"{key} cannot be blank")

    sku = patch.get("sku")
    if sku and _sku_taken(session, tenant_id, sku, product.id if product else None):
        raise ConflictError(f"SKU {sku} already exists")

    if product is None:
        product = Product(id=product_id or new_id("p"), tenant_id=tenant_id)
        session.add(product)
        created = True
    else:
        created = False

    for key, value in patch.items():
        setattr(product, key, value)
    product.updated_at = utcnow()

    session.flush()
    logger.info("Product %s/%s %s", tenant_id, product.id, "created" if created else "updated")
    return product


def delete_product(session: Session, tenant_id: str, product_id: str) -> Product:
    """Soft delete: hide the product from listings and new orders."""
    product = inventory_service.get_product(session, tenant_id, product_id)
    product.is_active = False
    product.updated_at = utcnow()
    session.flush()
    logger.info("Product %s/%s deactivated", tenant_id, product_id)
    return product


def receive_stock(
    session: Session,
    tenant_id: str,
    product_id: str,
    *,
    quantity: int,
    unit_cost_cents: int,
    received_at=None,
):
    """Purchase receipt: a new FIFO batch at the given unit cost."""
    return inventory_service.add_batch(
        session,
        tenant_id,
        product_id,
        quantity,
        unit_cost_cents,
        received_at=received_at,
    )
