# Overview: Service-layer operations for reporting; encapsulates business logic and store work.

from __future__ import annotations

from dataclasses import dataclass, fields
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable

from sqlalchemy.orm import Session

from ..errors import ValidationError
from ..models import Order, OrderStatus, Product
from ..validation import coerce_int
from oms.time_utils import parse_date_range, to_utc_z
from .inventory_service import average_unit_cost

DELIVERED = OrderStatus.DELIVERED.value
RETURNED_STATUSES = {OrderStatus.RETURNED.value, OrderStatus.RETURN_COMPLETED.value}

INVESTOR_SHARE = Decimal("0.5")
WORKER_SHARE = Decimal("0.5")

_CENT = Decimal(1)
_PCT = Decimal("0.01")


@dataclass(frozen=True)
class RateConfig:
    delivery_fee_cents: int = 0
    return_fee_cents: int = 0
    manual_expenses_cents: int = 0
    advertising_costs_cents: int = 0
    worker_count: int = 1


@dataclass(frozen=True)
class PnLReport:
    """Exact figures; rounding to cents happens in to_dict only."""
    gross_revenue: Decimal
    total_cogs: Decimal
    gross_profit: Decimal
    order_count: int
    delivered_count: int
    returned_count: int
    delivery_fees: Decimal
    return_fees: Decimal
    manual_expenses: Decimal
    advertising_costs: Decimal
    net_profit: Decimal
    investor_share: Decimal
    worker_share_pool: Decimal
    per_worker_profit: Decimal
    net_margin_pct: Decimal

    def to_dict(self) -> dict:
        def cents(value: Decimal) -> int:
            return int(value.quantize(_CENT, rounding=ROUND_HALF_UP))

        return {
            "gross_revenue_cents": cents(self.gross_revenue),
            "total_cogs_cents": cents(self.total_cogs),
            "gross_profit_cents": cents(self.gross_profit),
            "order_count": self.order_count,
            "delivered_count": self.delivered_count,
            "returned_count": self.returned_count,
            "delivery_fees_cents": cents(self.delivery_fees),
            "return_fees_cents": cents(self.return_fees),
            "manual_expenses_cents": cents(self.manual_expenses),
            "advertising_costs_cents": cents(self.advertising_costs),
            "net_profit_cents": cents(self.net_profit),
            "investor_share_cents": cents(self.investor_share),
            "worker_share_pool_cents": cents(self.worker_share_pool),
            "per_worker_profit_cents": cents(self.per_worker_profit),
            "net_margin_pct": float(self.net_margin_pct.quantize(_PCT, rounding=ROUND_HALF_UP)),
        }


def compute_pnl(orders: Iterable[Order], products: Iterable[Product], rates: RateConfig) -> PnLReport:
    """
    Profit & loss over an already-filtered set of orders.

    Revenue and COGS come from DELIVERED orders only. COGS prices each unit
    at the product's simple average batch cost; a product that no longer
    exists (or has no batches) contributes nothing.
    """
    by_id = {p.id: p for p in products}

    gross_revenue = Decimal(0)
    total_cogs = Decimal(0)
    order_count = 0
    delivered_count = 0
    returned_count = 0

    for order in orders:
        order_count += 1
        if order.status == DELIVERED:
            delivered_count += 1
            gross_revenue += Decimal(order.total_amount_cents or 0)
            for line in order.lines:
                total_cogs += line.quantity * average_unit_cost(by_id.get(line.product_id))
        elif order.status in RETURNED_STATUSES:
            returned_count += 1

    gross_profit = gross_revenue - total_cogs
    delivery_fees = Decimal(delivered_count * rates.delivery_fee_cents)
    return_fees = Decimal(returned_count * rates.return_fee_cents)
    manual = Decimal(rates.manual_expenses_cents)
    advertising = Decimal(rates.advertising_costs_cents)

    net_profit = gross_profit - delivery_fees - return_fees - manual - advertising

    investor_share = max(Decimal(0), net_profit * INVESTOR_SHARE)
    worker_pool = max(Decimal(0), net_profit * WORKER_SHARE)
    per_worker = worker_pool / max(1, rates.worker_count)

    margin = (net_profit / gross_revenue * 100) if gross_revenue else Decimal(0)

    return PnLReport(
        gross_revenue=gross_revenue,
        total_cogs=total_cogs,
        gross_profit=gross_profit,
        order_count=order_count,
        delivered_count=delivered_count,
        returned_count=returned_count,
        delivery_fees=delivery_fees,
        return_fees=return_fees,
        manual_expenses=manual,
        advertising_costs=advertising,
        net_profit=net_profit,
        investor_share=investor_share,
        worker_share_pool=worker_pool,
        per_worker_profit=per_worker,
        net_margin_pct=margin,
    )


def rates_from_params(params, context) -> RateConfig:
    """
    Build a RateConfig from query/body parameters.

    Fees fall back to the tenant's configured defaults.
    """
    defaults = {
        "delivery_fee_cents": context.delivery_fee_cents,
        "return_fee_cents": context.return_fee_cents,
        "manual_expenses_cents": 0,
        "advertising_costs_cents": 0,
        "worker_count": 1,
    }
    values = {}
    for f in fields(RateConfig):
        raw = params.get(f.name)
        value = defaults[f.name] if raw in (None, "") else coerce_int(f.name, raw)
        if value < 0:
            raise ValidationError(f"{f.name} must be >= 0")
        values[f.name] = value
    return RateConfig(**values)


def compute_report(session: Session, context, start=None, end=None, rates: RateConfig | None = None) -> dict:
    """
    Load the tenant's orders created within [start, end] and roll them up.

    A bare end date includes that entire day.
    """
    try:
        start_dt, end_dt = parse_date_range(start, end)
    except ValueError:
        raise ValidationError("start/end must be ISO-8601 dates")
    if start_dt and end_dt and start_dt > end_dt:
        raise ValidationError("start must not be after end")

    if rates is None:
        rates = RateConfig(
            delivery_fee_cents=context.delivery_fee_cents,
            return_fee_cents=context.return_fee_cents,
        )

    query = session.query(Order).filter(Order.tenant_id == context.tenant_id)
    if start_dt:
        query = query.filter(Order.created_at >= start_dt)
    if end_dt:
        query = query.filter(Order.created_at <= end_dt)
    orders = query.all()

    products = session.query(Product).filter(Product.tenant_id == context.tenant_id).all()

    report = compute_pnl(orders, products, rates).to_dict()
    report["period"] = {"start": to_utc_z(start_dt), "end": to_utc_z(end_dt)}
    report["rates"] = {f.name: getattr(rates, f.name) for f in fields(RateConfig)}
    return report
