# Overview: Request decorators for API routes: tenant context and role checks.

from functools import wraps
from flask import request, jsonify, g

from .errors import Forbidden, NotFound
from .services.tenant_service import resolve_tenant


def _requested_tenant_id() -> str | None:
    tenant_id = request.args.get("tenantId") or request.headers.get("X-Tenant-Id")
    if tenant_id:
        return tenant_id
    body = request.get_json(silent=True)
    if isinstance(body, dict) and body.get("tenantId"):
        return str(body["tenantId"])
    return None


def require_tenant(f):
    """
    Resolve the tenant for this request and establish tenant context.

    MULTI-TENANT: Sets the following Flask g attributes:
    - g.tenant: TenantContext (with the upstream-supplied role)
    - g.actor: display name for order log attribution

    Resolution uses tenantId (query, JSON body or X-Tenant-Id header) and
    falls back to the Host header. Returns 404 when no active tenant matches.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            context = resolve_tenant(host=request.host, tenant_id=_requested_tenant_id())
        except NotFound as e:
            return jsonify({"error": e.message}), 404

        g.tenant = context.with_role(request.headers.get("X-User-Role"))
        g.actor = request.headers.get("X-User-Name") or "System"
        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles):
    """
    Require the caller's role (X-User-Role, set by the upstream auth layer)
    to be one of `roles`.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            role = request.headers.get("X-User-Role")
            if not role:
                return jsonify({"error": "Authentication required"}), 401

            if role not in roles:
                raise Forbidden(required_roles=roles)

            return f(*args, **kwargs)

        return decorated_function
    return decorator
