# Overview: Flask API routes for the financial report.

from flask import Blueprint, request, jsonify, g

from ..decorators import require_tenant, require_role
from ..models import ROLE_DEV_ADMIN, ROLE_SUPER_ADMIN
from ..services import reporting_service
from ..services.store_router import get_store

finance_bp = Blueprint("finance", __name__, url_prefix="/api/finance")


@finance_bp.get("/report")
@require_tenant
@require_role(ROLE_DEV_ADMIN, ROLE_SUPER_ADMIN)
def report_route():
    """
    Profit & loss for orders created in [startDate, endDate].

    Query params: startDate, endDate, delivery_fee_cents, return_fee_cents,
    manual_expenses_cents, advertising_costs_cents, worker_count.
    Fees default to the tenant's settings.
    """
    rates = reporting_service.rates_from_params(request.args, g.tenant)
    with get_store(g.tenant).session_scope() as session:
        report = reporting_service.compute_report(
            session,
            g.tenant,
            start=request.args.get("startDate"),
            end=request.args.get("endDate"),
            rates=rates,
        )
    return jsonify(report)
