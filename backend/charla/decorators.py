# Overview: Request decorators for API routes.

from functools import wraps

from flask import g, jsonify, request

from .services.tenant_service import TenantAccessError, validate_tenant_active


def require_tenant(f):
    """
    Establish tenant context from the X-Tenant-Id header.

    Authentication happens upstream (gateway); this layer only trusts a
    tenant id that maps to an existing, active tenant.

    MULTI-TENANT: Sets g.tenant_id and g.tenant.

    SECURITY: Returns 401 if:
    - No X-Tenant-Id header, or it is not an integer
    - Tenant does not exist
    - Tenant deactivated
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw = (request.headers.get("X-Tenant-Id") or "").strip()
        if not raw:
            return jsonify({"error": "Tenant context required"}), 401
        if not raw.isdigit():
            return jsonify({"error": "Invalid tenant id"}), 401

        try:
            tenant = validate_tenant_active(int(raw))
        except TenantAccessError as e:
            return jsonify({"error": str(e)}), 401

        g.tenant_id = tenant.id
        g.tenant = tenant

        return f(*args, **kwargs)

    return decorated_function
