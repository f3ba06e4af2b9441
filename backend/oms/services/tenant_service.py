"""
Multi-Tenant Service: Tenant Resolution and Registry Maintenance

Every request must be mapped to exactly one tenant before any store query
runs. The resulting TenantContext is an immutable snapshot handed to the
StoreRouter and to the services; it never carries ORM state across requests.

RESOLUTION ORDER:
1. Explicit tenant id (query/body/header) wins
2. Otherwise the request host is matched against each active tenant's
   primary domain and its ACTIVE alias domains
   - case-insensitive, surrounding whitespace and any :port ignored
   - a leading "www." is ignored on both sides
3. No match -> NotFound

USAGE:
    from oms.services.tenant_service import resolve_tenant

    context = resolve_tenant(host=request.host)
    store = get_store(context)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace

from ..extensions import db
from ..errors import NotFound, ValidationError
from ..models import Tenant, TenantDomain, COURIER_MODES
from .shipping_service import CourierSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TenantContext:
    """Snapshot of a resolved tenant, safe to pass between layers."""
    tenant_id: str
    name: str
    store_url: str | None
    courier: CourierSettings = field(default_factory=CourierSettings)
    delivery_fee_cents: int = 0
    return_fee_cents: int = 0
    role: str | None = None

    def with_role(self, role: str | None) -> "TenantContext":
        return replace(self, role=role)


def context_for(tenant: Tenant) -> TenantContext:
    return TenantContext(
        tenant_id=tenant.id,
        name=tenant.name,
        store_url=tenant.store_url or None,
        courier=CourierSettings(
            api_key=tenant.courier_api_key or "",
            client_id=tenant.courier_client_id or "",
            mode=tenant.courier_mode or "STANDARD",
        ),
        delivery_fee_cents=tenant.delivery_fee_cents,
        return_fee_cents=tenant.return_fee_cents,
    )


def normalize_host(host: str | None) -> str:
    """Lowercase, strip port and a leading 'www.'."""
    if not host:
        return ""
    h = host.strip().lower()
    if ":" in h:
        h = h.split(":", 1)[0]
    if h.startswith("www."):
        h = h[4:]
    return h.rstrip(".")


def _tenant_matches_host(tenant: Tenant, wanted: str) -> bool:
    if tenant.primary_domain and normalize_host(tenant.primary_domain) == wanted:
        return True
    return any(
        d.is_active and normalize_host(d.host) == wanted
        for d in tenant.domains
    )


def resolve_tenant(host: str | None = None, tenant_id: str | None = None) -> TenantContext:
    """
    Resolve a request to its tenant.

    Raises:
        NotFound: unknown/inactive tenant id, or no tenant owns the host
    """
    if tenant_id:
        tenant = db.session.query(Tenant).filter_by(id=tenant_id).first()
        if tenant is None or not tenant.is_active:
            logger.warning("Tenant resolution failed for id %r", tenant_id)
            raise NotFound("Tenant not found")
        return context_for(tenant)

    wanted = normalize_host(host)
    if not wanted:
        raise NotFound("Tenant not found")

    tenants = (
        db.session.query(Tenant)
        .filter(Tenant.is_active.is_(True))
        .order_by(Tenant.id)
        .all()
    )
    for tenant in tenants:
        if _tenant_matches_host(tenant, wanted):
            return context_for(tenant)

    logger.warning("Tenant resolution failed for host %r", host)
    raise NotFound("Tenant not found")


# =============================================================================
# REGISTRY MAINTENANCE (platform operators)
# =============================================================================

TENANT_SETTING_FIELDS = {
    "shop_name", "logo_url", "shop_address", "shop_phone", "show_bill_qr",
    "courier_api_key", "courier_client_id", "courier_mode",
    "delivery_fee_cents", "return_fee_cents",
}


def list_tenants(include_inactive: bool = True) -> list[Tenant]:
    query = db.session.query(Tenant)
    if not include_inactive:
        query = query.filter(Tenant.is_active.is_(True))
    return query.order_by(Tenant.name).all()


def get_tenant(tenant_id: str) -> Tenant:
    tenant = db.session.query(Tenant).filter_by(id=tenant_id).first()
    if tenant is None:
        raise NotFound("Tenant not found")
    return tenant


def upsert_tenant(payload: dict, admin_user: dict | None = None) -> Tenant:
    """
    Create or update a tenant, replacing its domain records.

    payload keys: id (required), name, primary_domain, store_url, is_active,
    domains=[{host, type, is_active}], settings={...TENANT_SETTING_FIELDS}.

    When admin_user={username, password[, email]} is given, the tenant's
    SUPER_ADMIN account is created or updated alongside.
    """
    from .auth_service import upsert_tenant_owner

    tenant_id = str(payload.get("id") or "").strip()
    if not tenant_id:
        raise ValidationError("Tenant id is required")

    tenant = db.session.query(Tenant).filter_by(id=tenant_id).first()
    if tenant is None:
        name = str(payload.get("name") or "").strip()
        if not name:
            raise ValidationError("Tenant name is required")
        tenant = Tenant(id=tenant_id, name=name, is_active=True)
        db.session.add(tenant)

    if "name" in payload and payload["name"]:
        tenant.name = str(payload["name"]).strip()
    if "primary_domain" in payload:
        tenant.primary_domain = normalize_host(payload["primary_domain"]) or None
    if "store_url" in payload:
        tenant.store_url = (payload["store_url"] or "").strip() or None
    if "is_active" in payload:
        tenant.is_active = bool(payload["is_active"])

    settings = payload.get("settings") or {}
    for key, value in settings.items():
        if key not in TENANT_SETTING_FIELDS:
            raise ValidationError(f"Unknown tenant setting: {key}")
        if key == "courier_mode" and value not in COURIER_MODES:
            raise ValidationError(f"courier_mode must be one of: {', '.join(COURIER_MODES)}")
        if key in ("delivery_fee_cents", "return_fee_cents"):
            if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                raise ValidationError(f"{key} must be a non-negative integer")
        if isinstance(value, str):
            value = value.strip()
        setattr(tenant, key, value)

    if "domains" in payload:
        # Old rows must be gone before re-inserting the same hosts
        tenant.domains = []
        db.session.flush()
        tenant.domains = [
            TenantDomain(
                host=normalize_host(d.get("host")),
                record_type=(d.get("type") or "CNAME").upper(),
                is_active=bool(d.get("is_active", False)),
            )
            for d in (payload["domains"] or [])
            if normalize_host(d.get("host"))
        ]

    db.session.flush()

    if admin_user:
        upsert_tenant_owner(tenant.id, admin_user)

    db.session.commit()
    logger.info("Tenant %s saved", tenant.id)
    return tenant


def deactivate_tenant(tenant_id: str) -> Tenant:
    """Soft-deactivate: the tenant stops resolving, its data stays intact."""
    tenant = get_tenant(tenant_id)
    tenant.is_active = False
    db.session.commit()
    logger.info("Tenant %s deactivated", tenant_id)
    return tenant
