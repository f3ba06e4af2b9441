# Overview: Service-layer operations for the FIFO inventory ledger; encapsulates business logic and store work.

"""
Inventory Ledger Invariants (authoritative)

Stock model:
- A product's stock is an ordered set of StockBatch rows; live stock is the
  SUM of batch quantities, never a stored field.
- Batches are consumed strictly by created_at ascending (oldest first); the
  batch id only breaks exact timestamp ties.
- Batches are never deleted, even at zero quantity (permanent audit history).
- unit_cost_cents and created_at are fixed at creation; only FIFO deduction
  changes quantity.

Business invariants:
- No batch quantity is ever negative.
- Deduction is all-or-nothing: the total is checked before any batch is
  touched, so an InsufficientStock failure leaves every batch as it was.
- Multi-product deduction (an order's lines) checks every product first.

Costing:
- average_unit_cost is the simple mean of unit costs across ALL batches
  (including empty ones), not quantity-weighted. The financial report uses
  the same figure for COGS.

All functions take the tenant store session and tenant_id; nothing commits
here. The caller's unit of work (StoreHandle.session_scope) commits or rolls
back the whole operation.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Sequence

from sqlalchemy.orm import Session

from ..errors import InsufficientStock, NotFound, ValidationError
from ..models import Product, StockBatch, Order, OrderStatus
from oms.time_utils import utcnow, to_utc_z
from .concurrency import lock_for_update

logger = logging.getLogger(__name__)


# =============================================================================
# DERIVED READS
# =============================================================================

def ordered_batches(product: Product) -> list[StockBatch]:
    """Batches in consumption order (oldest created_at first)."""
    return sorted(
        product.batches,
        key=lambda b: (b.created_at, b.id if b.id is not None else 0),
    )


def live_stock(product: Product) -> int:
    return sum(b.quantity for b in product.batches)


def cost_value_cents(product: Product) -> int:
    return sum(b.quantity * b.unit_cost_cents for b in product.batches)


def average_unit_cost(product: Product | None) -> Decimal:
    """Simple mean of batch unit costs; 0 for a missing or batchless product."""
    if product is None or not product.batches:
        return Decimal(0)
    total = sum(Decimal(b.unit_cost_cents) for b in product.batches)
    return total / len(product.batches)


def average_unit_cost_cents(product: Product | None) -> int:
    """average_unit_cost rounded to whole cents (half-up)."""
    return int(average_unit_cost(product).quantize(Decimal(1), rounding=ROUND_HALF_UP))


# =============================================================================
# FIFO PLANNING (pure)
# =============================================================================

def plan_fifo(quantities: Sequence[int], quantity: int, product_id: str = "") -> list[int]:
    """
    Plan a FIFO deduction over batch quantities already in consumption order.

    Returns how much to take from each batch (same length as `quantities`).

    Raises:
        InsufficientStock: when sum(quantities) < quantity
    """
    available = sum(quantities)
    if available < quantity:
        raise InsufficientStock(product_id, quantity, available)

    takes = []
    remaining = quantity
    for qty in quantities:
        take = min(qty, remaining) if remaining > 0 else 0
        takes.append(take)
        remaining -= take
    return takes


# =============================================================================
# LEDGER MUTATIONS
# =============================================================================

def get_product(
    session: Session,
    tenant_id: str,
    product_id: str,
    *,
    lock: bool = False,
) -> Product:
    query = session.query(Product).filter_by(id=product_id, tenant_id=tenant_id)
    if lock:
        query = lock_for_update(query)
    product = query.first()
    if product is None:
        raise NotFound(f"Product {product_id} not found")
    return product


def _require_positive(quantity) -> int:
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
        raise ValidationError("quantity must be a positive integer")
    return quantity


def _apply_fifo(product: Product, quantity: int) -> list[tuple[StockBatch, int]]:
    batches = ordered_batches(product)
    takes = plan_fifo([b.quantity for b in batches], quantity, product.id)
    consumed = []
    for batch, take in zip(batches, takes):
        if take:
            batch.quantity -= take
            consumed.append((batch, take))
    # Bumps version_id so a concurrent writer on this product fails at flush
    product.updated_at = utcnow()
    return consumed


def deduct_fifo(session: Session, tenant_id: str, product_id: str, quantity: int) -> None:
    """
    Consume `quantity` units oldest-batch-first.

    Raises:
        ValidationError: quantity not a positive integer
        NotFound: product not in this tenant
        InsufficientStock: total stock < quantity (nothing is modified)
    """
    deduct_fifo_many(session, tenant_id, [(product_id, quantity)])


def deduct_fifo_many(
    session: Session,
    tenant_id: str,
    lines: Iterable[tuple[str, int]],
) -> None:
    """
    All-or-nothing FIFO deduction for several (product_id, quantity) lines.

    Lines for the same product are summed; every product is checked before
    any batch is modified. Rows are locked in product id order so two
    confirms over the same products cannot deadlock.
    """
    wanted: "OrderedDict[str, int]" = OrderedDict()
    for product_id, quantity in lines:
        wanted[product_id] = wanted.get(product_id, 0) + _require_positive(quantity)

    products = {
        product_id: get_product(session, tenant_id, product_id, lock=True)
        for product_id in sorted(wanted)
    }

    for product_id, quantity in wanted.items():
        available = live_stock(products[product_id])
        if available < quantity:
            logger.info(
                "FIFO deduction refused for %s/%s: requested %s, available %s",
                tenant_id, product_id, quantity, available,
            )
            raise InsufficientStock(product_id, quantity, available)

    for product_id, quantity in wanted.items():
        consumed = _apply_fifo(products[product_id], quantity)
        logger.info(
            "FIFO deducted %s from %s/%s across %d batch(es)",
            quantity, tenant_id, product_id, len(consumed),
        )

    session.flush()


def add_batch(
    session: Session,
    tenant_id: str,
    product_id: str,
    quantity: int,
    unit_cost_cents: int,
    *,
    is_return: bool = False,
    order_id: str | None = None,
    received_at: datetime | None = None,
) -> StockBatch:
    """
    Append a stock batch (purchase receipt or return restock).

    received_at defaults to now; it is accepted for receipts recorded after
    the goods arrived and is what FIFO orders by.
    """
    _require_positive(quantity)
    if not isinstance(unit_cost_cents, int) or isinstance(unit_cost_cents, bool) or unit_cost_cents < 0:
        raise ValidationError("unit_cost_cents must be a non-negative integer")

    product = get_product(session, tenant_id, product_id, lock=True)

    batch = StockBatch(
        quantity=quantity,
        original_quantity=quantity,
        unit_cost_cents=unit_cost_cents,
        created_at=received_at or utcnow(),
        is_return=is_return,
        order_id=order_id,
    )
    product.batches.append(batch)
    product.updated_at = utcnow()
    session.flush()

    logger.info(
        "Added %s batch of %s to %s/%s at %s",
        "return" if is_return else "purchase", quantity, tenant_id, product_id, unit_cost_cents,
    )
    return batch


def restock(
    session: Session,
    tenant_id: str,
    product_id: str,
    quantity: int,
    *,
    order_id: str | None = None,
) -> StockBatch:
    """
    Return-originated batch. Costed at the product's current average unit
    cost so restocked units do not distort the average.
    """
    product = get_product(session, tenant_id, product_id)
    return add_batch(
        session,
        tenant_id,
        product_id,
        quantity,
        average_unit_cost_cents(product),
        is_return=True,
        order_id=order_id,
    )


# =============================================================================
# HISTORY
# =============================================================================

# Statuses whose orders have taken stock out of the ledger
DEDUCTED_STATUSES = {
    OrderStatus.CONFIRMED.value,
    OrderStatus.SHIPPED.value,
    OrderStatus.DELIVERED.value,
    OrderStatus.RETURNED.value,
    OrderStatus.RETURN_TRANSFER.value,
    OrderStatus.RETURN_AS_ON_SYSTEM.value,
    OrderStatus.RETURN_HANDOVER.value,
    OrderStatus.RETURN_COMPLETED.value,
}


def stock_history(session: Session, tenant_id: str, limit: int | None = None) -> list[dict]:
    """
    Stock movements, newest first.

    IN      purchase batch (original quantity)
    RESTOCK return batch
    OUT     order line whose stock was deducted, dated by confirmation
    """
    movements = []

    products = session.query(Product).filter_by(tenant_id=tenant_id).all()
    by_id = {p.id: p for p in products}
    for product in products:
        for batch in product.batches:
            movements.append({
                "id": f"b-{batch.id}",
                "date": batch.created_at,
                "type": "RESTOCK" if batch.is_return else "IN",
                "product_id": product.id,
                "product_name": product.name,
                "sku": product.sku,
                "quantity": batch.original_quantity,
                "reference": f"Return {batch.order_id}" if batch.is_return else "New Batch",
            })

    orders = (
        session.query(Order)
        .filter(Order.tenant_id == tenant_id, Order.stock_deducted_at.isnot(None))
        .all()
    )
    for order in orders:
        for line in order.lines:
            product = by_id.get(line.product_id)
            movements.append({
                "id": f"{order.id}-{line.product_id}",
                "date": order.confirmed_at or order.stock_deducted_at,
                "type": "OUT",
                "product_id": line.product_id,
                "product_name": line.name,
                "sku": product.sku if product else "UNKNOWN",
                "quantity": line.quantity,
                "reference": f"Order #{order.id[-6:]}",
            })

    movements.sort(key=lambda m: m["date"], reverse=True)
    if limit is not None:
        movements = movements[:limit]
    for m in movements:
        m["date"] = to_utc_z(m["date"])
    return movements
