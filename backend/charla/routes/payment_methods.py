# backend/charla/routes/payment_methods.py
from flask import Blueprint, g, jsonify

from ..decorators import require_tenant
from ..services.catalog_service import list_payment_methods

payment_methods_bp = Blueprint("payment_methods", __name__, url_prefix="/api/payment-methods")


@payment_methods_bp.get("")
@require_tenant
def list_payment_methods_route():
    """Active payment methods available to the tenant (global + tenant-specific)."""
    methods = list_payment_methods(g.tenant_id)
    return jsonify({"payment_methods": [m.to_dict() for m in methods]}), 200
