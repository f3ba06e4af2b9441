# Overview: Service-layer operations for orders; encapsulates business logic and store work.

"""
Order repository: listing, capture and maintenance of tenant orders.

MULTI-TENANT: every query filters on tenant_id, including lookups by id.

UPSERT RULES:
- A new order always starts PENDING (a payload status other than PENDING is
  ignored)
- An existing order's status is never changed here; status moves belong to
  lifecycle_service
- Line items can only be replaced while the order is PENDING
- total_amount_cents defaults to the sum of quantity x unit price
"""

from __future__ import annotations

import logging
from datetime import datetime, time

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ..errors import ConflictError, NotFound, OmsError, ValidationError
from ..models import Order, OrderLine, OrderStatus, Product, new_id
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_order,
    clean_order_items,
)
from oms.time_utils import utcnow, parse_date_range
from .shipping_service import digits_only

logger = logging.getLogger(__name__)


ORDER_POLICY = ModelValidationPolicy(
    writable_fields={
        "customer_name", "customer_phone", "customer_phone2", "customer_address",
        "customer_city", "parcel_weight", "parcel_description", "total_amount_cents",
        "tracking_number", "is_printed", "opened_by", "created_at",
    },
    required_on_create={"customer_name", "customer_phone"},
    ignored_fields={"id", "tenant_id", "items", "status", "logs"},
)

# Statuses the logistics desk works on
LOGISTICS_STATUSES = (
    OrderStatus.SHIPPED.value,
    OrderStatus.DELIVERED.value,
    OrderStatus.RETURNED.value,
    OrderStatus.RETURN_TRANSFER.value,
    OrderStatus.RETURN_AS_ON_SYSTEM.value,
    OrderStatus.RETURN_HANDOVER.value,
    OrderStatus.RETURN_COMPLETED.value,
)

# Counted as a failed purchase in customer history
CUSTOMER_RETURN_STATUSES = (
    OrderStatus.RETURNED.value,
    OrderStatus.REJECTED.value,
    OrderStatus.RETURN_COMPLETED.value,
)

DEFAULT_PAGE_LIMIT = 50
MAX_PAGE_LIMIT = 5000
PHONE_MATCH_DIGITS = 8


def get_order(session: Session, tenant_id: str, order_id: str) -> Order:
    order = session.query(Order).filter_by(tenant_id=tenant_id, id=order_id).first()
    if order is None:
        raise NotFound(f"Order {order_id} not found")
    return order


def list_orders(
    session: Session,
    tenant_id: str,
    *,
    search: str | None = None,
    status: str | None = None,
    product_id: str | None = None,
    start=None,
    end=None,
    page: int = 1,
    limit: int = DEFAULT_PAGE_LIMIT,
) -> dict:
    """
    Paginated order listing, newest first.

    status accepts any OrderStatus plus the pseudo-filters:
    - ALL            no status filter
    - TODAY_SHIPPED  shipped since midnight UTC today
    - LOGISTICS_ALL  every status from SHIPPED onward (returns included)

    start/end bound created_at inclusively; a bare end date covers the whole day.

    Returns:
        {"data": [...], "total": int, "page": int, "limit": int}
    """
    page = max(int(page or 1), 1)
    limit = min(max(int(limit or DEFAULT_PAGE_LIMIT), 1), MAX_PAGE_LIMIT)

    query = session.query(Order).filter(Order.tenant_id == tenant_id)

    status = (status or "ALL").strip().upper()
    if status == "TODAY_SHIPPED":
        midnight = datetime.combine(utcnow().date(), time.min)
        query = query.filter(Order.shipped_at >= midnight)
    elif status == "LOGISTICS_ALL":
        query = query.filter(Order.status.in_(LOGISTICS_STATUSES))
    elif status != "ALL":
        try:
            query = query.filter(Order.status == OrderStatus(status).value)
        except ValueError:
            raise ValidationError(f"Unknown order status: {status}")

    if product_id:
        query = query.filter(
            Order.lines.any(OrderLine.product_id == product_id)
        )

    try:
        start_dt, end_dt = parse_date_range(start, end)
    except ValueError:
        raise ValidationError("startDate/endDate must be ISO-8601 dates")
    if start_dt:
        query = query.filter(Order.created_at >= start_dt)
    if end_dt:
        query = query.filter(Order.created_at <= end_dt)

    if search:
        pattern = f"%{search.strip().lower()}%"
        query = query.filter(or_(
            func.lower(Order.id).like(pattern),
            func.lower(Order.customer_name).like(pattern),
            func.lower(Order.customer_phone).like(pattern),
            func.lower(Order.tracking_number).like(pattern),
        ))

    total = query.count()
    orders = (
        query.order_by(Order.created_at.desc(), Order.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "data": [o.to_dict() for o in orders],
        "total": total,
        "page": page,
        "limit": limit,
    }


def _build_lines(session: Session, tenant_id: str, items: list[dict]) -> list[OrderLine]:
    product_ids = {item["product_id"] for item in items}
    products = {
        p.id: p
        for p in session.query(Product)
        .filter(Product.tenant_id == tenant_id, Product.id.in_(product_ids))
        .all()
    }

    lines = []
    for line_no, item in enumerate(items, start=1):
        product = products.get(item["product_id"])
        if product is None:
            raise ValidationError(f"Unknown product: {item['product_id']}")
        if not product.is_active:
            raise ValidationError(f"Product {product.sku} is no longer active")
        lines.append(OrderLine(
            line_no=line_no,
            product_id=product.id,
            name=item["name"] or product.name,
            quantity=item["quantity"],
            unit_price_cents=(
                item["unit_price_cents"]
                if item["unit_price_cents"] is not None
                else product.price_cents
            ),
        ))
    return lines


def _lines_total(lines: list[OrderLine]) -> int:
    return sum(line.quantity * line.unit_price_cents for line in lines)


def upsert_order(session: Session, tenant_id: str, payload: dict, *, actor: str | None = None) -> Order:
    """
    Create or update one order.

    Raises:
        ValidationError: malformed payload, unknown product
        ConflictError: items changed on a non-PENDING order, or the id is
            taken by another tenant in a shared store
    """
    from .lifecycle_service import append_log

    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    order_id = str(payload.get("id") or "").strip()
    order = None
    if order_id:
        order = session.query(Order).filter_by(id=order_id).first()
        if order is not None and order.tenant_id != tenant_id:
            raise ConflictError(f"Order id {order_id} is already in use")

    items = None
    if "items" in payload:
        items = clean_order_items(payload["items"])

    patch = validate_payload(
        model=Order, payload=payload, policy=ORDER_POLICY, partial=order is not None,
    )
    enforce_rules_order(patch)

    if order is None:
        order = Order(
            id=order_id or new_id("o"),
            tenant_id=tenant_id,
            status=OrderStatus.PENDING.value,
            customer_address="",
        )
        if payload.get("status") not in (None, "", OrderStatus.PENDING.value):
            logger.info("Ignoring status %r on new order %s", payload.get("status"), order.id)
        for key, value in patch.items():
            setattr(order, key, value)
        order.lines = _build_lines(session, tenant_id, items or [])
        if "total_amount_cents" not in patch or patch["total_amount_cents"] is None:
            order.total_amount_cents = _lines_total(order.lines)
        if order.created_at is None:
            order.created_at = utcnow()
        session.add(order)
        append_log(order, "Order Created", actor)
        session.flush()
        logger.info("Order %s/%s created", tenant_id, order.id)
        return order

    if items is not None:
        if order.status != OrderStatus.PENDING.value:
            raise ConflictError("Order items can only be edited while the order is PENDING")
        order.lines = _build_lines(session, tenant_id, items)
        if "total_amount_cents" not in patch:
            order.total_amount_cents = _lines_total(order.lines)

    for key, value in patch.items():
        if key == "created_at":
            continue
        setattr(order, key, value)

    session.flush()
    logger.info("Order %s/%s updated", tenant_id, order.id)
    return order


def bulk_upsert_orders(
    session: Session,
    tenant_id: str,
    payloads: list[dict],
    *,
    actor: str | None = None,
) -> list[dict]:
    """
    Upsert many orders; each record succeeds or fails on its own.

    Returns one result per payload: {"id", "ok": True} or
    {"id", "ok": False, "error"}.
    """
    if not isinstance(payloads, list):
        raise ValidationError("orders must be a list")

    results = []
    for payload in payloads:
        record_id = payload.get("id") if isinstance(payload, dict) else None
        nested = session.begin_nested()
        try:
            order = upsert_order(session, tenant_id, payload, actor=actor)
            nested.commit()
            results.append({"id": order.id, "ok": True})
        except OmsError as exc:
            nested.rollback()
            results.append({"id": record_id, "ok": False, "error": exc.message})

    failed = sum(1 for r in results if not r["ok"])
    logger.info(
        "Bulk upsert for %s: %d ok, %d failed", tenant_id, len(results) - failed, failed,
    )
    return results


def delete_orders(session: Session, tenant_id: str, order_ids: list[str]) -> int:
    """Delete the given orders (and their lines/logs). Returns the count deleted."""
    ids = [str(i).strip() for i in (order_ids or []) if str(i).strip()]
    if not ids:
        raise ValidationError("No order ids given")

    orders = (
        session.query(Order)
        .filter(Order.tenant_id == tenant_id, Order.id.in_(ids))
        .all()
    )
    for order in orders:
        session.delete(order)
    session.flush()
    logger.info("Deleted %d order(s) for %s", len(orders), tenant_id)
    return len(orders)


def purge_orders(session: Session, tenant_id: str) -> int:
    """Delete every order of the tenant. Stock batches are left untouched."""
    orders = session.query(Order).filter(Order.tenant_id == tenant_id).all()
    for order in orders:
        session.delete(order)
    session.flush()
    logger.warning("Purged %d order(s) for %s", len(orders), tenant_id)
    return len(orders)


def customer_history(session: Session, tenant_id: str, phone: str | None) -> dict:
    """
    How often a customer ordered and how many of those failed.

    Matches on the last 8 digits of the phone number, ignoring any
    separators the number was captured with.
    """
    last_digits = digits_only(phone)[-PHONE_MATCH_DIGITS:]
    if not last_digits:
        return {"order_count": 0, "return_count": 0}

    rows = (
        session.query(Order.customer_phone, Order.status)
        .filter(Order.tenant_id == tenant_id)
        .all()
    )
    matches = [status for stored, status in rows if digits_only(stored).endswith(last_digits)]
    return {
        "order_count": len(matches),
        "return_count": sum(1 for status in matches if status in CUSTOMER_RETURN_STATUSES),
    }
