# backend/orderledger/routes/system.py
"""
System health endpoint.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import Order, ProductVariant
from ..services.inventory_ledger import verify_all
from ..time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """Check database connectivity and basic operations."""
    start_time = time.time()
    try:
        order_count = db.session.query(Order).count()
        variant_count = db.session.query(ProductVariant).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "orders": order_count,
                "variants": variant_count,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_ledger_health() -> dict:
    """
    Reconcile every variant's stock counter with its ledger.

    Drift is reported as degraded, not unhealthy: orders still flow, but
    someone needs to look at the listed variants.
    """
    start_time = time.time()
    try:
        failing = verify_all()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "degraded" if failing else "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "inconsistent_variants": [r["variant_id"] for r in failing],
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Ledger health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Ledger check error"
        }


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: healthy or degraded
    - 503: one or more checks unhealthy
    """
    start_time = time.time()

    checks = {
        "database": check_database_health(),
        "ledger": check_ledger_health(),
    }

    statuses = [c["status"] for c in checks.values()]
    if "unhealthy" in statuses:
        overall_status, http_status = "unhealthy", 503
    elif "degraded" in statuses:
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    return {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": checks,
    }, http_status
