# Overview: Courier adapter; turns an order into a carrier request and the carrier's answer into a result.

"""
Courier (carrier) adapter.

CONTRACT:
    ship(order, settings, client) -> ShipmentResult
    raises ValidationError  - credentials or waybill missing (no network call made)
    raises CourierError     - carrier answered with a non-success status code
    raises TransportError   - carrier unreachable, or answered with non-JSON

The carrier accepts a form-encoded POST on one of two endpoints, selected by
the tenant's courier mode, and answers {"status": <int>, "waybill_no": "..."}.
Status 200 is success; every other code is looked up in COURIER_ERRORS.

No retry and no timeout policy live here: the caller builds the httpx.Client
(with its own timeout) and decides whether to re-issue a failed shipment.
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

import httpx

from ..errors import CourierError, TransportError, ValidationError

logger = logging.getLogger(__name__)


MODE_STANDARD = "STANDARD"
MODE_EXISTING_WAYBILL = "EXISTING_WAYBILL"

COURIER_SUCCESS = 200

COURIER_ERRORS: dict[int, str] = {
    201: "Inactive Client",
    202: "Invalid Order ID (Numeric Required)",
    203: "Invalid Weight",
    204: "Invalid Parcel Description",
    205: "Invalid Name",
    206: "Contact Number 1 Invalid",
    207: "Contact Number 2 Invalid",
    208: "Invalid Address",
    209: "Invalid City Name",
    210: "Insert Failed, Try Again",
    211: "Invalid API Key",
    212: "Invalid or Inactive Client",
    213: "Invalid Exchange Value",
    214: "Courier Maintenance Mode",
}

DEFAULT_PARCEL_WEIGHT = "1"
DEFAULT_PARCEL_DESCRIPTION = "Standard Shipment"
MAX_DESCRIPTION_LENGTH = 50
MAX_ORDER_ID_DIGITS = 10
RAW_BODY_EXCERPT = 100

_NON_DIGITS = re.compile(r"\D")


@dataclass(frozen=True)
class CourierSettings:
    api_key: str = ""
    client_id: str = ""
    mode: str = MODE_STANDARD


@dataclass(frozen=True)
class CourierEndpoints:
    new_waybill_url: str
    existing_waybill_url: str

    def for_mode(self, mode: str) -> str:
        if mode == MODE_EXISTING_WAYBILL:
            return self.existing_waybill_url
        return self.new_waybill_url


@dataclass(frozen=True)
class ShipmentResult:
    tracking_number: str
    courier_code: int = COURIER_SUCCESS


def digits_only(value: str | None) -> str:
    return _NON_DIGITS.sub("", value or "")


def courier_order_id(order_id: str) -> str:
    """
    Numeric identifier the carrier requires.

    The last 10 digits of the order id; ids without digits get a stable
    10-digit number derived from a hash of the id.
    """
    digits = digits_only(order_id)[-MAX_ORDER_ID_DIGITS:]
    if digits:
        return digits
    digest = hashlib.sha1(order_id.encode("utf-8")).hexdigest()
    return str(int(digest, 16))[-MAX_ORDER_ID_DIGITS:].zfill(MAX_ORDER_ID_DIGITS)


def _description(order) -> str:
    text = order.parcel_description
    if not text and order.lines:
        text = order.lines[0].name
    return str(text or DEFAULT_PARCEL_DESCRIPTION)[:MAX_DESCRIPTION_LENGTH]


def _major_units(cents) -> int:
    return int((Decimal(cents or 0) / 100).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def build_courier_form(order, settings: CourierSettings) -> dict[str, str]:
    """Form fields for the carrier. Raises ValidationError before any I/O."""
    if not (settings.api_key or "").strip() or not (settings.client_id or "").strip():
        raise ValidationError("Courier credentials are not configured")

    form = {
        "api_key": settings.api_key.strip(),
        "client_id": settings.client_id.strip(),
        "order_id": courier_order_id(order.id),
        "parcel_weight": order.parcel_weight or DEFAULT_PARCEL_WEIGHT,
        "parcel_description": _description(order),
        "recipient_name": order.customer_name or "",
        "recipient_contact_1": digits_only(order.customer_phone),
    }
    phone2 = digits_only(order.customer_phone2)
    if phone2:
        form["recipient_contact_2"] = phone2
    form.update({
        "recipient_address": order.customer_address or "",
        "recipient_city": order.customer_city or "",
        # Carrier takes whole major units
        "amount": str(_major_units(order.total_amount_cents)),
        "exchange": "0",
    })

    if settings.mode == MODE_EXISTING_WAYBILL:
        waybill = (order.tracking_number or "").strip()
        if not waybill:
            raise ValidationError("Waybill number is required in existing-waybill mode")
        form["waybill_id"] = waybill

    return form


def interpret_courier_response(raw_body: str, fallback_tracking: str | None = None) -> ShipmentResult:
    """Map the carrier's body to a ShipmentResult or a typed failure."""
    try:
        payload = json.loads(raw_body)
    except ValueError:
        raise TransportError(f"Courier returned non-JSON response: {raw_body[:RAW_BODY_EXCERPT]}")

    if not isinstance(payload, dict):
        raise TransportError(f"Courier returned unexpected response: {raw_body[:RAW_BODY_EXCERPT]}")

    try:
        code = int(payload.get("status"))
    except (TypeError, ValueError):
        raise TransportError(f"Courier response missing status: {raw_body[:RAW_BODY_EXCERPT]}")

    if code != COURIER_SUCCESS:
        reason = COURIER_ERRORS.get(code, f"Courier error {code}: request refused")
        raise CourierError(code, reason)

    tracking = str(payload.get("waybill_no") or fallback_tracking or "").strip()
    if not tracking:
        raise TransportError("Courier accepted the parcel but returned no waybill number")
    return ShipmentResult(tracking_number=tracking)


def ship(
    order,
    settings: CourierSettings,
    *,
    client: httpx.Client,
    endpoints: CourierEndpoints,
) -> ShipmentResult:
    """Dispatch one order to the carrier. No state is changed here."""
    form = build_courier_form(order, settings)
    url = endpoints.for_mode(settings.mode)

    try:
        response = client.post(url, data=form)
    except httpx.HTTPError as exc:
        logger.warning("Courier request for order %s failed: %s", order.id, exc)
        raise TransportError(f"Courier unreachable: {exc}") from exc

    try:
        result = interpret_courier_response(response.text, fallback_tracking=order.tracking_number)
    except (CourierError, TransportError) as exc:
        logger.warning("Courier refused order %s: %s", order.id, exc)
        raise

    logger.info("Courier accepted order %s (waybill %s)", order.id, result.tracking_number)
    return result


# =============================================================================
# INBOUND STATUS UPDATES (courier webhook)
# =============================================================================

def map_courier_status(raw_status: str | None) -> str | None:
    """
    Map the carrier's free-text status to an order status, or None when the
    text does not correspond to a status move.
    """
    s = (raw_status or "").lower()
    if "delivered" in s:
        return "DELIVERED"
    if "return" in s and "transfer" in s:
        return "RETURN_TRANSFER"
    if "returned" in s:
        return "RETURNED"
    if "handover" in s:
        return "RETURN_HANDOVER"
    if "system" in s:
        return "RETURN_AS_ON_SYSTEM"
    return None
