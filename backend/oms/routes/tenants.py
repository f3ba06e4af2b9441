# Overview: Flask API routes for the tenant registry and tenant teams.

"""
Tenant registry and team management routes.

MULTI-TENANT:
- /api/tenants is platform-operator territory (DEV_ADMIN) except /resolve,
  which the dashboard calls before anyone is logged in
- /api/users is scoped to the resolved tenant and reserved for its owner
"""

from flask import Blueprint, request, jsonify, g

from ..decorators import require_tenant, require_role
from ..errors import Forbidden
from ..models import ROLE_DEV_ADMIN, ROLE_SUPER_ADMIN
from ..services import tenant_service, auth_service
from ..validation import ValidationError


tenants_bp = Blueprint("tenants", __name__, url_prefix="/api/tenants")
users_bp = Blueprint("users", __name__, url_prefix="/api/users")


def _public_tenant(tenant) -> dict:
    data = tenant.to_dict()
    data["settings"].pop("courier_api_key", None)
    data["settings"].pop("courier_client_id", None)
    return data


@tenants_bp.get("/resolve")
def resolve_route():
    """
    Which tenant owns this request.

    Query params: host (defaults to the request Host), tenantId.
    Returns branding only; credentials are never exposed here.
    """
    context = tenant_service.resolve_tenant(
        host=request.args.get("host") or request.host,
        tenant_id=request.args.get("tenantId"),
    )
    return jsonify(_public_tenant(tenant_service.get_tenant(context.tenant_id)))


@tenants_bp.get("")
@require_role(ROLE_DEV_ADMIN)
def list_tenants_route():
    include_inactive = request.args.get("include_inactive", "true").lower() != "false"
    tenants = tenant_service.list_tenants(include_inactive=include_inactive)
    return jsonify([t.to_dict(include_secrets=True) for t in tenants])


@tenants_bp.post("")
@require_role(ROLE_DEV_ADMIN)
def upsert_tenant_route():
    """
    Create or update a tenant.

    Body: {"tenant": {...}, "adminUser": {"username", "password", "email"}}
    """
    data = request.get_json(silent=True) or {}
    payload = data.get("tenant")
    if not isinstance(payload, dict):
        raise ValidationError("tenant object required")

    tenant = tenant_service.upsert_tenant(payload, admin_user=data.get("adminUser"))
    return jsonify(tenant.to_dict(include_secrets=True))


@tenants_bp.delete("/<tenant_id>")
@require_role(ROLE_DEV_ADMIN)
def deactivate_tenant_route(tenant_id: str):
    tenant = tenant_service.deactivate_tenant(tenant_id)
    return jsonify({"ok": True, "id": tenant.id, "is_active": tenant.is_active})


# =============================================================================
# TEAM (tenant users)
# =============================================================================

@users_bp.get("")
@require_tenant
@require_role(ROLE_DEV_ADMIN, ROLE_SUPER_ADMIN)
def list_users_route():
    users = auth_service.list_users(g.tenant.tenant_id)
    return jsonify([u.to_dict() for u in users])


@users_bp.post("")
@require_tenant
@require_role(ROLE_DEV_ADMIN, ROLE_SUPER_ADMIN)
def create_user_route():
    """
    Add a team member.

    Body: {"username", "password", "email", "role", "permissions": [page ids]}
    Owners may only create ADMIN users; DEV_ADMIN may pick any tenant role.
    """
    data = request.get_json(silent=True) or {}
    role = data.get("role") or "ADMIN"
    if g.tenant.role != ROLE_DEV_ADMIN and role != "ADMIN":
        raise Forbidden("Only ADMIN users can be created here")
    if role == ROLE_DEV_ADMIN:
        raise ValidationError("Platform operators cannot belong to a tenant")

    user = auth_service.create_user(
        g.tenant.tenant_id,
        data.get("username"),
        data.get("password"),
        email=data.get("email"),
        role=role,
        permissions=data.get("permissions"),
    )
    return jsonify(user.to_dict()), 201


@users_bp.delete("/<int:user_id>")
@require_tenant
@require_role(ROLE_DEV_ADMIN, ROLE_SUPER_ADMIN)
def delete_user_route(user_id: int):
    auth_service.delete_user(g.tenant.tenant_id, user_id)
    return jsonify({"ok": True})
