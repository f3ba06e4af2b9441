# Overview: Flask API routes for products operations; parses input and returns JSON responses.

"""
Product and stock routes.

MULTI-TENANT: All product operations are scoped to the resolved tenant and
run against that tenant's store.

SECURITY: All routes require a tenant role; writes are open to every tenant
role because receiving stock is day-to-day warehouse work.
"""
from flask import Blueprint, request, jsonify, g

from ..decorators import require_tenant, require_role
from ..models import ROLE_DEV_ADMIN, ROLE_SUPER_ADMIN, ROLE_ADMIN
from ..services import products_service, inventory_service
from ..services.store_router import get_store
from ..validation import enforce_rules_stock_receive, ValidationError

TENANT_ROLES = (ROLE_DEV_ADMIN, ROLE_SUPER_ADMIN, ROLE_ADMIN)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
@require_tenant
@require_role(*TENANT_ROLES)
def list_products_route():
    """
    List products with live stock and batch detail.

    Query params:
    - include_inactive: bool (default false)
    - search: substring of name or SKU
    """
    include_inactive = request.args.get("include_inactive", "false").lower() == "true"
    with get_store(g.tenant).session_scope() as session:
        products = products_service.list_products(
            session,
            g.tenant.tenant_id,
            include_inactive=include_inactive,
            search=request.args.get("search"),
        )
        data = [p.to_dict() for p in products]
    return jsonify(data)


@products_bp.post("")
@require_tenant
@require_role(*TENANT_ROLES)
def upsert_product_route():
    """Create a product (or update when the body carries an existing id)."""
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    payload = {k: v for k, v in payload.items() if k != "tenantId"}

    with get_store(g.tenant).session_scope() as session:
        product = products_service.upsert_product(session, g.tenant.tenant_id, payload)
        data = product.to_dict()
    return jsonify(data), 201


@products_bp.put("/<product_id>")
@require_tenant
@require_role(*TENANT_ROLES)
def update_product_route(product_id: str):
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    payload = {k: v for k, v in payload.items() if k != "tenantId"}
    payload["id"] = product_id

    with get_store(g.tenant).session_scope() as session:
        inventory_service.get_product(session, g.tenant.tenant_id, product_id)
        product = products_service.upsert_product(session, g.tenant.tenant_id, payload)
        data = product.to_dict()
    return jsonify(data)


@products_bp.delete("/<product_id>")
@require_tenant
@require_role(*TENANT_ROLES)
def delete_product_route(product_id: str):
    """Deactivate a product. Its stock batches remain as history."""
    with get_store(g.tenant).session_scope() as session:
        products_service.delete_product(session, g.tenant.tenant_id, product_id)
    return jsonify({"ok": True})


@products_bp.post("/<product_id>/batches")
@require_tenant
@require_role(*TENANT_ROLES)
def receive_stock_route(product_id: str):
    """
    Receive stock as a new FIFO batch.

    Body: {"quantity": int > 0, "unit_cost_cents": int >= 0, "received_at": ISO-8601 (optional)}
    """
    receipt = enforce_rules_stock_receive(request.get_json(silent=True) or {})

    with get_store(g.tenant).session_scope() as session:
        batch = products_service.receive_stock(
            session, g.tenant.tenant_id, product_id, **receipt,
        )
        data = batch.to_dict()
    return jsonify(data), 201


@products_bp.get("/history")
@require_tenant
@require_role(*TENANT_ROLES)
def stock_history_route():
    """Stock movements (IN / RESTOCK / OUT), newest first."""
    limit = request.args.get("limit", type=int)
    with get_store(g.tenant).session_scope() as session:
        history = inventory_service.stock_history(session, g.tenant.tenant_id, limit=limit)
    return jsonify(history)
