# backend/app/routes/system.py
"""
System health and version endpoints.

Health reports database reachability plus the pricing/stock tables the
sale engine reads on every checkout.
"""

import sys
import time
from flask import Blueprint, current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Department, Ingredient, PricingConfig
from app.time_utils import utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        department_count = db.session.query(Department).count()
        ingredient_count = db.session.query(Ingredient).count()
        pricing_count = db.session.query(PricingConfig).count()

        elapsed_ms = (time.time() - start_time) * 1000

        # No departments means checkout cannot run at all
        status = "healthy" if department_count else "degraded"
        return {
            "status": status,
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "departments": department_count,
                "ingredients": ingredient_count,
                "pricing_configs": pricing_count,
            }
        }
    except SQLAlchemyError:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded (degraded is still operational)
    - 503: database unreachable
    """
    start_time = time.time()
    database_health = check_database_health()

    if database_health["status"] == "unhealthy":
        http_status = 503
    else:
        http_status = 200

    total_elapsed_ms = (time.time() - start_time) * 1000

    response = {
        "status": database_health["status"],
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round(total_elapsed_ms, 2),
        "commit_mode": "atomic" if current_app.config.get("SALE_COMMIT_ATOMIC", True) else "per_line",
        "checks": {
            "database": database_health,
        }
    }

    return response, http_status


@system_bp.get("/version")
def version():
    """Non-sensitive deployment info: no keys, credentials or paths."""
    env = "production" if not current_app.debug else "development"

    return {
        "api_version": "1.0.0",
        "environment": env,
        "python_version": sys.version.split()[0],
        "server_time": utcnow().isoformat() + "Z",
    }
