"""
Multi-Tenant Service: Tenant Validation and Scoping Helpers

WHY: tenant_id is the system's only authorization boundary. Every read
and write of tenant-owned rows must be constrained to the caller's
tenant at the query layer.

SECURITY INVARIANTS:
1. Every request that touches tenant data has g.tenant_id set
2. Tenant-owned rows are only ever fetched through tenant_query()
   (or an explicit tenant_id filter)
3. Rows of another tenant are reported as not found, never as forbidden

USAGE:
    from charla.services.tenant_service import tenant_query

    sale = tenant_query(Sale, tenant_id).filter_by(id=sale_id).first()
"""

import logging

from flask import g, has_app_context

from ..extensions import db
from ..models import Tenant

logger = logging.getLogger(__name__)


class TenantAccessError(Exception):
    """Raised when the tenant context is missing, unknown or inactive."""
    pass


def get_current_tenant_id() -> int:
    """
    Get current tenant id from Flask g context.

    SECURITY: Raises TenantAccessError if tenant_id not set.
    This should never happen after @require_tenant, but is a safety check.
    """
    if not has_app_context() or getattr(g, "tenant_id", None) is None:
        raise TenantAccessError("Tenant context not established")
    return g.tenant_id


def validate_tenant_active(tenant_id: int) -> Tenant:
    """
    Validate that a tenant exists and is active.

    Raises:
        TenantAccessError if tenant doesn't exist or is inactive
    """
    tenant = db.session.get(Tenant, tenant_id)

    if not tenant:
        logger.warning("Request for unknown tenant %s", tenant_id)
        raise TenantAccessError("Tenant not found")

    if not tenant.is_active:
        raise TenantAccessError("Tenant is not active")

    return tenant


def tenant_query(model, tenant_id: int | None = None):
    """
    Base query scoped to one tenant.

    Args:
        model: SQLAlchemy model class (must have a tenant_id column)
        tenant_id: Tenant id (defaults to g.tenant_id)

    Usage:
        products = tenant_query(Product, tenant_id).filter_by(is_available=True).all()
    """
    if tenant_id is None:
        tenant_id = get_current_tenant_id()
    return db.session.query(model).filter(model.tenant_id == tenant_id)


def list_tenants(active_only: bool = False) -> list[Tenant]:
    query = db.session.query(Tenant)
    if active_only:
        query = query.filter_by(is_active=True)
    return query.order_by(Tenant.id).all()


def create_tenant(
    name: str,
    business_name: str | None = None,
    email: str | None = None,
    timezone: str = "UTC",
) -> Tenant:
    """Create a tenant. Does not commit."""
    name = (name or "").strip()
    if not name:
        raise ValueError("Tenant name is required")

    tenant = Tenant(
        name=name,
        business_name=business_name or name,
        email=email,
        timezone=timezone or "UTC",
        is_active=True,
    )
    db.session.add(tenant)
    db.session.flush()
    return tenant
