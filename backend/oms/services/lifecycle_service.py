# Overview: Service-layer operations for the order lifecycle; encapsulates business logic and store work.

"""
Order Lifecycle Service

================================================================================
PURPOSE: Enforce the order state machine and the side effects of each move
================================================================================

STATE MACHINE:
    PENDING -> CONFIRMED -> SHIPPED -> DELIVERED
       |           |           |
       |           |           +-> RETURNED -> RETURN_TRANSFER -> RETURN_AS_ON_SYSTEM
       |           |                  |              |                  |
       |           |                  +--------------+------------------+-> RETURN_HANDOVER
       |           +-----------(scan)--------------------------------------> RETURN_COMPLETED
       +-> REJECTED / CANCELLED

    Terminal: DELIVERED, RETURN_COMPLETED, REJECTED, CANCELLED

SIDE EFFECTS:
    confirm            FIFO deduction of every line (all-or-nothing), once
    ship               courier dispatch; state only moves on success
    -> RETURN_COMPLETED  restock every line as a return batch, once

RULES (NON-NEGOTIABLE):
1. Every status change goes through TRANSITIONS; anything else raises
   InvalidTransition
2. Status and stock writes happen in the caller's single store transaction;
   a failed deduction leaves the order PENDING with no batch touched
3. stock_deducted_at / restocked_at make deduction and restock run at most
   once per order
4. Every move appends an OrderLog entry

All functions take the tenant store session (from StoreHandle.session_scope);
nothing commits here.
================================================================================
"""

from __future__ import annotations

import logging

import httpx
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..errors import InvalidTransition, NotFound, ValidationError
from ..models import Order, OrderLog, OrderStatus
from oms.time_utils import utcnow
from . import inventory_service, shipping_service
from .order_service import get_order

logger = logging.getLogger(__name__)

S = OrderStatus

TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    S.PENDING: frozenset({S.CONFIRMED, S.REJECTED, S.CANCELLED}),
    S.CONFIRMED: frozenset({S.SHIPPED, S.RETURN_COMPLETED}),
    S.SHIPPED: frozenset({
        S.DELIVERED, S.RETURNED, S.RETURN_TRANSFER, S.RETURN_AS_ON_SYSTEM, S.RETURN_HANDOVER,
        S.RETURN_COMPLETED,
    }),
    S.RETURNED: frozenset({
        S.RETURN_TRANSFER, S.RETURN_AS_ON_SYSTEM, S.RETURN_HANDOVER, S.RETURN_COMPLETED,
    }),
    S.RETURN_TRANSFER: frozenset({S.RETURN_AS_ON_SYSTEM, S.RETURN_HANDOVER, S.RETURN_COMPLETED}),
    S.RETURN_AS_ON_SYSTEM: frozenset({S.RETURN_HANDOVER, S.RETURN_COMPLETED}),
    S.RETURN_HANDOVER: frozenset({S.RETURN_COMPLETED}),
    S.DELIVERED: frozenset(),
    S.RETURN_COMPLETED: frozenset(),
    S.REJECTED: frozenset(),
    S.CANCELLED: frozenset(),
}

TERMINAL = frozenset({S.DELIVERED, S.RETURN_COMPLETED, S.REJECTED, S.CANCELLED})

# Targets an operator may pick when moving a parcel back through the return flow
RETURN_TARGETS = frozenset({
    S.RETURNED, S.RETURN_TRANSFER, S.RETURN_AS_ON_SYSTEM, S.RETURN_HANDOVER, S.RETURN_COMPLETED,
})

# Timestamp column stamped on arrival in a state
_STATE_TIMESTAMPS = {
    S.CONFIRMED: "confirmed_at",
    S.SHIPPED: "shipped_at",
    S.DELIVERED: "delivered_at",
    S.RETURN_COMPLETED: "return_completed_at",
}


def can_transition(from_status, to_status) -> bool:
    """True when the table allows from_status -> to_status."""
    try:
        current = OrderStatus(from_status)
        target = OrderStatus(to_status)
    except ValueError:
        return False
    return target in TRANSITIONS[current]


def parse_status(value) -> OrderStatus:
    try:
        return OrderStatus(str(value or "").strip().upper())
    except ValueError:
        raise ValidationError(f"Unknown order status: {value}")


def append_log(order: Order, message: str, actor: str | None = None) -> OrderLog:
    entry = OrderLog(message=message, actor=actor or "System", created_at=utcnow())
    order.logs.append(entry)
    return entry


def _require_transition(order: Order, target: OrderStatus) -> None:
    if not can_transition(order.status, target):
        raise InvalidTransition(order.status, target.value)


def _move(order: Order, target: OrderStatus, message: str, actor: str | None) -> None:
    previous = order.status
    order.status = target.value
    column = _STATE_TIMESTAMPS.get(target)
    if column:
        setattr(order, column, utcnow())
    append_log(order, message, actor)
    logger.info("Order %s/%s: %s -> %s", order.tenant_id, order.id, previous, target.value)


def _complete_return(session: Session, order: Order, message: str, actor: str | None) -> None:
    _move(order, S.RETURN_COMPLETED, message, actor)
    if order.restocked_at is not None:
        return
    for line in order.lines:
        inventory_service.restock(
            session, order.tenant_id, line.product_id, line.quantity, order_id=order.id,
        )
    order.restocked_at = utcnow()
    logger.info("Order %s/%s restocked %d line(s)", order.tenant_id, order.id, len(order.lines))


# =============================================================================
# OPERATIONS
# =============================================================================

def confirm_order(session: Session, tenant_id: str, order_id: str, *, actor: str | None = None) -> Order:
    """
    PENDING -> CONFIRMED with FIFO deduction of every line.

    Raises:
        InvalidTransition: order is not PENDING
        InsufficientStock: any line cannot be satisfied (nothing changes)
    """
    order = get_order(session, tenant_id, order_id)
    _require_transition(order, S.CONFIRMED)

    if not order.lines:
        raise ValidationError("Order has no items to confirm")

    if order.stock_deducted_at is None:
        inventory_service.deduct_fifo_many(
            session,
            tenant_id,
            [(line.product_id, line.quantity) for line in order.lines],
        )
        order.stock_deducted_at = utcnow()

    _move(order, S.CONFIRMED, "Order Confirmed", actor)
    session.flush()
    return order


def ship_order(
    session: Session,
    context,
    order_id: str,
    *,
    client: httpx.Client,
    endpoints: shipping_service.CourierEndpoints,
    actor: str | None = None,
) -> Order:
    """
    CONFIRMED -> SHIPPED after the courier accepts the parcel.

    On CourierError / TransportError / ValidationError the order is untouched
    and the error propagates. No retry.
    """
    order = get_order(session, context.tenant_id, order_id)
    _require_transition(order, S.SHIPPED)

    result = shipping_service.ship(order, context.courier, client=client, endpoints=endpoints)

    order.tracking_number = result.tracking_number
    _move(order, S.SHIPPED, f"Shipped (Waybill: {result.tracking_number})", actor)
    session.flush()
    return order


def mark_delivered(session: Session, tenant_id: str, order_id: str, *, actor: str | None = None) -> Order:
    order = get_order(session, tenant_id, order_id)
    _require_transition(order, S.DELIVERED)
    _move(order, S.DELIVERED, "Marked as Delivered", actor)
    session.flush()
    return order


def reject_order(session: Session, tenant_id: str, order_id: str, *, actor: str | None = None) -> Order:
    order = get_order(session, tenant_id, order_id)
    _require_transition(order, S.REJECTED)
    _move(order, S.REJECTED, "Order Rejected", actor)
    session.flush()
    return order


def cancel_order(session: Session, tenant_id: str, order_id: str, *, actor: str | None = None) -> Order:
    order = get_order(session, tenant_id, order_id)
    _require_transition(order, S.CANCELLED)
    _move(order, S.CANCELLED, "Order Cancelled", actor)
    session.flush()
    return order


def find_by_tracking_or_id(session: Session, tenant_id: str, key: str) -> Order:
    """Order whose id equals key, else whose tracking number matches it (any case)."""
    key = (key or "").strip()
    if not key:
        raise ValidationError("Tracking number or order id is required")

    order = session.query(Order).filter_by(tenant_id=tenant_id, id=key).first()
    if order is None:
        order = (
            session.query(Order)
            .filter(
                Order.tenant_id == tenant_id,
                func.lower(Order.tracking_number) == key.lower(),
            )
            .order_by(Order.created_at.desc())
            .first()
        )
    if order is None:
        raise NotFound(f"No order matches {key}")
    return order


def scan_return(session: Session, tenant_id: str, tracking_or_id: str, *, actor: str | None = None) -> Order:
    """
    Warehouse return scan: move straight to RETURN_COMPLETED and restock.

    An order already RETURN_COMPLETED is returned as-is (no second restock).
    """
    order = find_by_tracking_or_id(session, tenant_id, tracking_or_id)

    if order.status == S.RETURN_COMPLETED.value:
        logger.info("Return scan for %s/%s ignored: already completed", tenant_id, order.id)
        return order

    if order.status in TERMINAL:
        raise InvalidTransition(
            order.status,
            S.RETURN_COMPLETED.value,
            f"Order {order.id} is already closed ({order.status})",
        )
    _require_transition(order, S.RETURN_COMPLETED)
    _complete_return(session, order, "Return Scanned & Restocked", actor)
    session.flush()
    return order


def advance_return(
    session: Session,
    tenant_id: str,
    order_id: str,
    target,
    *,
    actor: str | None = None,
) -> Order:
    """Operator move along the return sub-states. Only RETURN_COMPLETED restocks."""
    target = parse_status(target)
    if target not in RETURN_TARGETS:
        raise ValidationError(f"{target.value} is not a return status")

    order = get_order(session, tenant_id, order_id)
    _require_transition(order, target)

    label = target.value.replace("_", " ").title()
    if target is S.RETURN_COMPLETED:
        _complete_return(session, order, f"Status changed to {label}", actor)
    else:
        _move(order, target, f"Status changed to {label}", actor)
    session.flush()
    return order


def apply_courier_update(session: Session, tenant_id: str, waybill: str, raw_status: str) -> Order:
    """
    Courier status callback.

    Records courier_status and a log entry. A mapped status move is applied
    when the table allows it; otherwise it is logged and ignored.
    """
    waybill = (waybill or "").strip()
    if not waybill:
        raise ValidationError("waybill is required")

    order = (
        session.query(Order)
        .filter(
            Order.tenant_id == tenant_id,
            func.lower(Order.tracking_number) == waybill.lower(),
        )
        .order_by(Order.created_at.desc())
        .first()
    )
    if order is None:
        raise NotFound(f"No order with waybill {waybill}")

    raw_status = (raw_status or "").strip()
    order.courier_status = raw_status or None

    mapped = shipping_service.map_courier_status(raw_status)
    target = OrderStatus(mapped) if mapped else None

    if target is None or target.value == order.status:
        append_log(order, f"Courier update: {raw_status}", "Courier")
    elif can_transition(order.status, target):
        _move(order, target, f"Courier update: {raw_status}", "Courier")
    else:
        append_log(order, f"Courier update ignored: {raw_status}", "Courier")
        logger.warning(
            "Courier update for %s/%s ignored: %s -> %s not allowed",
            tenant_id, order.id, order.status, target.value,
        )

    session.flush()
    return order
