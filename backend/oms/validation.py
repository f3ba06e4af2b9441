from __future__ import annotations
from datetime import datetime
from oms.time_utils import parse_iso_datetime

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text, DateTime

from .errors import ValidationError, ConflictError  # noqa: F401  (re-exported for routes)


# Maximum money value: 9,999,999.99 (999,999,999 cents)
MAX_AMOUNT_CENTS = 999_999_999

# Maximum units on one order line or one stock receipt
MAX_QUANTITY = 1_000_000


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for a create
    - ignored_fields: keys accepted in the payload but handled elsewhere
      (e.g. order items) and therefore left out of the cleaned patch
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore
    ignored_fields: set[str] | None = None


def _columns_by_key(model) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def coerce_int(key: str, value: Any) -> int:
    """Strict integer: rejects floats, bools, decimals and scientific notation."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{key} must be an integer")
        if 'e' in stripped.lower():
            raise ValidationError(f"{key} must be a plain integer (scientific notation not allowed)")
        if '.' in stripped:
            raise ValidationError(f"{key} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{key} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{key} must be an integer, not a decimal")
    raise ValidationError(f"{key} must be an integer")


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return coerce_int(col.key, value)

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        return bool(value)

    # Datetimes (accept ISO-8601 strings; normalize to naive UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            return dt.replace(tzinfo=None)
        raise ValidationError(f"{col.key} must be a datetime")

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    return value


def validate_payload(
    *,
    model,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if payload.get(f) in (None, ""))
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)
    ignored = policy.ignored_fields or set()

    for k in payload.keys():
        if k in ignored:
            continue
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        if k in ignored:
            continue
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable and k in required:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def _check_amount(key: str, value) -> None:
    if value is None:
        return
    if value < 0:
        raise ValidationError(f"{key} must be >= 0")
    if value > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{key} cannot exceed {MAX_AMOUNT_CENTS}")


def enforce_rules_product(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    _check_amount("price_cents", patch.get("price_cents"))


def enforce_rules_order(patch: dict) -> None:
    _check_amount("total_amount_cents", patch.get("total_amount_cents"))


def enforce_rules_stock_receive(payload: dict) -> dict:
    """RECEIVE requires quantity > 0 and unit_cost_cents >= 0."""
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    if payload.get("quantity") is None:
        raise ValidationError("quantity is required")
    if payload.get("unit_cost_cents") is None:
        raise ValidationError("unit_cost_cents is required")

    quantity = coerce_int("quantity", payload["quantity"])
    unit_cost = coerce_int("unit_cost_cents", payload["unit_cost_cents"])
    if quantity <= 0:
        raise ValidationError("quantity must be > 0")
    if quantity > MAX_QUANTITY:
        raise ValidationError(f"quantity cannot exceed {MAX_QUANTITY}")
    _check_amount("unit_cost_cents", unit_cost)

    received_at = None
    if payload.get("received_at"):
        try:
            received_at = parse_iso_datetime(payload["received_at"])
        except ValueError:
            raise ValidationError("received_at must be an ISO-8601 datetime")
        received_at = received_at.replace(tzinfo=None) if received_at else None

    return {"quantity": quantity, "unit_cost_cents": unit_cost, "received_at": received_at}


def clean_order_items(items) -> list[dict]:
    """
    Normalize an order's line items.

    Each item needs product_id and a positive integer quantity; name and
    unit_price_cents are optional (filled from the product by the caller).
    """
    if not isinstance(items, list):
        raise ValidationError("items must be a list")

    cleaned = []
    for idx, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationError(f"items[{idx}] must be an object")

        product_id = str(item.get("product_id") or "").strip()
        if not product_id:
            raise ValidationError(f"items[{idx}].product_id is required")

        if item.get("quantity") is None:
            raise ValidationError(f"items[{idx}].quantity is required")
        quantity = coerce_int(f"items[{idx}].quantity", item["quantity"])
        if quantity <= 0:
            raise ValidationError(f"items[{idx}].quantity must be > 0")
        if quantity > MAX_QUANTITY:
            raise ValidationError(f"items[{idx}].quantity cannot exceed {MAX_QUANTITY}")

        unit_price = item.get("unit_price_cents")
        if unit_price is not None:
            unit_price = coerce_int(f"items[{idx}].unit_price_cents", unit_price)
            _check_amount(f"items[{idx}].unit_price_cents", unit_price)

        name = item.get("name")
        cleaned.append({
            "product_id": product_id,
            "quantity": quantity,
            "name": str(name).strip() if name else None,
            "unit_price_cents": unit_price,
        })
    return cleaned
