# backend/charla/routes/system.py
"""
System health endpoint.

Reports database connectivity and whether the oracle is configured, for
deployment debugging.
"""

import time

from flask import Blueprint, current_app

from ..extensions import db
from ..models import PaymentMethod, Tenant
from charla.time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api/system")


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        tenant_count = db.session.query(Tenant).count()
        method_count = db.session.query(PaymentMethod).filter_by(is_active=True).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy" if method_count else "degraded",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "tenants": tenant_count,
                "payment_methods": method_count,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        db.session.rollback()
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_oracle_config() -> dict:
    # Configuration only; no network call from a health probe
    configured = bool(current_app.config.get("OPENAI_API_KEY"))
    return {
        "status": "healthy" if configured else "degraded",
        "details": {
            "configured": configured,
            "model": current_app.config.get("OPENAI_MODEL"),
        },
    }


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: healthy or degraded (no payment methods seeded, oracle key missing)
    - 503: database unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    oracle_health = check_oracle_config()

    all_checks = [database_health, oracle_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status, http_status = "unhealthy", 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    total_elapsed_ms = (time.time() - start_time) * 1000

    response = {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
            "oracle": oracle_health,
        }
    }

    return response, http_status
