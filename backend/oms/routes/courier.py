# Overview: Courier status callback; finds the order by waybill across active tenants.

"""
Courier webhook.

The carrier posts status changes without telling us the tenant, so the
waybill is looked up in every active tenant's store. An unknown waybill is
still answered with 200; the carrier would otherwise keep retrying.
"""

import json

from flask import Blueprint, current_app, request, jsonify

from ..errors import NotFound, StoreUnavailable
from ..services import lifecycle_service, tenant_service
from ..services.store_router import get_store
from ..services.tenant_service import context_for

courier_bp = Blueprint("courier", __name__, url_prefix="/api/courier")


def _webhook_payload() -> dict:
    """JSON body, form fields, or a JSON document sent as the only form key."""
    payload = request.get_json(silent=True)
    if isinstance(payload, dict) and payload:
        return payload

    payload = request.form.to_dict()
    if len(payload) == 1 and not any(k in payload for k in ("waybill_id", "waybillId")):
        try:
            decoded = json.loads(next(iter(payload)))
        except ValueError:
            decoded = None
        if isinstance(decoded, dict):
            return decoded
    return payload


@courier_bp.post("/webhook")
def courier_webhook():
    payload = _webhook_payload()
    waybill = (
        payload.get("waybill_id")
        or payload.get("waybillId")
        or request.args.get("waybill_id")
    )
    raw_status = (
        payload.get("delivery_status")
        or payload.get("current_status")
        or payload.get("status")
        or request.args.get("delivery_status")
    )

    if not waybill:
        return jsonify({"error": "Bad Request: waybill_id missing"}), 400

    for tenant in tenant_service.list_tenants(include_inactive=False):
        context = context_for(tenant)
        try:
            with get_store(context).session_scope() as session:
                lifecycle_service.apply_courier_update(
                    session, context.tenant_id, str(waybill), str(raw_status or ""),
                )
        except NotFound:
            continue
        except StoreUnavailable:
            current_app.logger.warning("Courier webhook skipped tenant %s: store unavailable", tenant.id)
            continue
        return "Success", 200

    current_app.logger.info("Courier webhook for unknown waybill %s", waybill)
    return "Waybill Processed (Not in Registry)", 200
