# Overview: Flask API routes for orders operations; parses input and returns JSON responses.

"""
Order routes: capture, listing and lifecycle moves.

MULTI-TENANT: Every route resolves the tenant first and works inside one
unit of work on that tenant's store; a failed move rolls back entirely.

Lifecycle moves are POSTs on /api/orders/<id>/<action>. The courier call in
/ship uses an httpx.Client built here with COURIER_TIMEOUT_SECONDS.
"""

import httpx
from flask import Blueprint, current_app, request, jsonify, g

from ..decorators import require_tenant, require_role
from ..errors import Forbidden
from ..models import ROLE_DEV_ADMIN, ROLE_SUPER_ADMIN, ROLE_ADMIN
from ..services import order_service, lifecycle_service
from ..services.shipping_service import CourierEndpoints
from ..services.store_router import get_store
from ..validation import ValidationError

TENANT_ROLES = (ROLE_DEV_ADMIN, ROLE_SUPER_ADMIN, ROLE_ADMIN)
OWNER_ROLES = (ROLE_DEV_ADMIN, ROLE_SUPER_ADMIN)

orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def courier_endpoints() -> CourierEndpoints:
    return CourierEndpoints(
        new_waybill_url=current_app.config["COURIER_NEW_WAYBILL_URL"],
        existing_waybill_url=current_app.config["COURIER_EXISTING_WAYBILL_URL"],
    )


def courier_client() -> httpx.Client:
    """Client for one courier call. COURIER_TRANSPORT (tests) replaces the network."""
    return httpx.Client(
        timeout=current_app.config["COURIER_TIMEOUT_SECONDS"],
        transport=current_app.config.get("COURIER_TRANSPORT"),
    )


@orders_bp.get("")
@require_tenant
@require_role(*TENANT_ROLES)
def list_orders_route():
    """
    Paginated order list, newest first.

    Query params:
    - page, limit
    - search: id / customer name / phone / tracking number
    - status: an order status, ALL, TODAY_SHIPPED or LOGISTICS_ALL
    - productId, startDate, endDate
    """
    with get_store(g.tenant).session_scope() as session:
        result = order_service.list_orders(
            session,
            g.tenant.tenant_id,
            search=request.args.get("search"),
            status=request.args.get("status"),
            product_id=request.args.get("productId"),
            start=request.args.get("startDate"),
            end=request.args.get("endDate"),
            page=request.args.get("page", 1, type=int),
            limit=request.args.get("limit", order_service.DEFAULT_PAGE_LIMIT, type=int),
        )
    return jsonify(result)


@orders_bp.get("/customer-history")
@require_tenant
@require_role(*TENANT_ROLES)
def customer_history_route():
    with get_store(g.tenant).session_scope() as session:
        history = order_service.customer_history(
            session, g.tenant.tenant_id, request.args.get("phone"),
        )
    return jsonify(history)


@orders_bp.get("/<order_id>")
@require_tenant
@require_role(*TENANT_ROLES)
def get_order_route(order_id: str):
    with get_store(g.tenant).session_scope() as session:
        data = order_service.get_order(session, g.tenant.tenant_id, order_id).to_dict()
    return jsonify(data)


@orders_bp.post("")
@require_tenant
@require_role(*TENANT_ROLES)
def upsert_orders_route():
    """
    Save one order or a batch.

    Body: {"order": {...}} -> the saved order
          {"orders": [...]} -> per-record results; one bad record does not
                               block the others
    """
    data = request.get_json(silent=True) or {}

    with get_store(g.tenant).session_scope() as session:
        if "orders" in data:
            results = order_service.bulk_upsert_orders(
                session, g.tenant.tenant_id, data["orders"], actor=g.actor,
            )
            body = {"results": results, "ok": all(r["ok"] for r in results)}
            return jsonify(body)

        payload = data.get("order")
        if not isinstance(payload, dict):
            raise ValidationError("order object required")
        order = order_service.upsert_order(session, g.tenant.tenant_id, payload, actor=g.actor)
        body = order.to_dict()
    return jsonify(body)


@orders_bp.delete("")
@require_tenant
@require_role(*TENANT_ROLES)
def delete_orders_route():
    """
    Delete orders.

    Query params:
    - id: comma-separated order ids
    - purge=true: delete every order of the tenant (owners only)
    """
    if request.args.get("purge") == "true":
        if g.tenant.role not in OWNER_ROLES:
            raise Forbidden(required_roles=OWNER_ROLES)
        with get_store(g.tenant).session_scope() as session:
            count = order_service.purge_orders(session, g.tenant.tenant_id)
        return jsonify({"ok": True, "count": count})

    ids = [i for i in (request.args.get("id") or "").split(",") if i.strip()]
    if not ids:
        return jsonify({"error": "Missing Target"}), 400

    with get_store(g.tenant).session_scope() as session:
        count = order_service.delete_orders(session, g.tenant.tenant_id, ids)
    return jsonify({"ok": True, "count": count})


# =============================================================================
# LIFECYCLE
# =============================================================================

_SIMPLE_MOVES = {
    "confirm": lifecycle_service.confirm_order,
    "deliver": lifecycle_service.mark_delivered,
    "reject": lifecycle_service.reject_order,
    "cancel": lifecycle_service.cancel_order,
}


@orders_bp.post("/<order_id>/<action>")
@require_tenant
@require_role(*TENANT_ROLES)
def order_action_route(order_id: str, action: str):
    """confirm | deliver | reject | cancel"""
    move = _SIMPLE_MOVES.get(action)
    if move is None:
        return jsonify({"error": f"Unknown action: {action}"}), 404

    with get_store(g.tenant).session_scope() as session:
        order = move(session, g.tenant.tenant_id, order_id, actor=g.actor)
        data = order.to_dict()
    current_app.logger.info("Order %s: %s by %s", order_id, action, g.actor)
    return jsonify(data)


@orders_bp.post("/<order_id>/ship")
@require_tenant
@require_role(*TENANT_ROLES)
def ship_order_route(order_id: str):
    """
    Hand the order to the courier.

    502 with the courier's reason when the carrier refuses or is unreachable;
    the order stays CONFIRMED.
    """
    with courier_client() as client:
        with get_store(g.tenant).session_scope() as session:
            order = lifecycle_service.ship_order(
                session,
                g.tenant,
                order_id,
                client=client,
                endpoints=courier_endpoints(),
                actor=g.actor,
            )
            data = order.to_dict()
    return jsonify(data)


@orders_bp.post("/<order_id>/return-status")
@require_tenant
@require_role(*TENANT_ROLES)
def advance_return_route(order_id: str):
    """Body: {"status": RETURNED | RETURN_TRANSFER | ... | RETURN_COMPLETED}"""
    data = request.get_json(silent=True) or {}
    with get_store(g.tenant).session_scope() as session:
        order = lifecycle_service.advance_return(
            session, g.tenant.tenant_id, order_id, data.get("status"), actor=g.actor,
        )
        body = order.to_dict()
    return jsonify(body)


@orders_bp.post("/scan-return")
@require_tenant
@require_role(*TENANT_ROLES)
def scan_return_route():
    """Body: {"trackingOrId": waybill number or order id}"""
    data = request.get_json(silent=True) or {}
    with get_store(g.tenant).session_scope() as session:
        order = lifecycle_service.scan_return(
            session, g.tenant.tenant_id, data.get("trackingOrId"), actor=g.actor,
        )
        body = order.to_dict()
    return jsonify(body)
