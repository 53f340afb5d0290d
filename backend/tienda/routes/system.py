# backend/tienda/routes/system.py
"""
System health endpoint.

Checks database connectivity and reports whether the seed data that write
paths rely on (default unit of measure, anonymous customer) is present.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import Customer, Product, UnitOfMeasure, User
from tienda.time_utils import utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    start_time = time.time()
    try:
        product_count = db.session.query(Product).count()
        user_count = db.session.query(User).count()
        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "products": product_count,
                "users": user_count,
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


def check_seed_data() -> dict:
    """Degraded when `flask system init` has not been run."""
    try:
        unit_id = current_app.config["DEFAULT_UNIT_OF_MEASURE_ID"]
        customer_id = current_app.config["ANONYMOUS_CUSTOMER_ID"]
        missing = []
        if db.session.get(UnitOfMeasure, unit_id) is None:
            missing.append(f"unit of measure {unit_id}")
        if db.session.get(Customer, customer_id) is None:
            missing.append(f"anonymous customer {customer_id}")
    except Exception:
        current_app.logger.exception("Seed data check failed")
        return {"status": "unhealthy", "error": "Database error"}

    if missing:
        return {"status": "degraded", "warning": f"Missing seed data: {', '.join(missing)}"}
    return {"status": "healthy"}


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: database unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    seed_health = check_seed_data() if database_health["status"] == "healthy" else {"status": "unhealthy"}

    all_checks = [database_health, seed_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status, http_status = "unhealthy", 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    return {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "database": database_health,
            "seed_data": seed_health,
        }
    }, http_status
