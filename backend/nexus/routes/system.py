# backend/nexus/routes/system.py
"""
System health endpoint.

Unauthenticated so load balancers and uptime probes can call it.
"""

import time
from flask import Blueprint, current_app
from sqlalchemy import text

from ..extensions import db
from ..models import Role
from ..services.auth_service import DEFAULT_ROLES
from nexus.time_utils import utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    """Run a trivial query and count configured roles."""
    start_time = time.time()
    try:
        db.session.execute(text("SELECT 1"))
        role_names = {name for (name,) in db.session.query(Role.name).all()}
        elapsed_ms = (time.time() - start_time) * 1000

        missing_roles = sorted(set(DEFAULT_ROLES) - role_names)
        result = {
            "status": "degraded" if missing_roles else "healthy",
            "latency_ms": round(elapsed_ms, 2),
        }
        if missing_roles:
            result["warning"] = f"Missing roles: {', '.join(missing_roles)}"
        return result
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded (roles not initialized yet)
    - 503: database unreachable
    """
    database_health = check_database_health()
    http_status = 503 if database_health["status"] == "unhealthy" else 200

    return {
        "status": database_health["status"],
        "timestamp": utcnow().isoformat() + "Z",
        "checks": {"database": database_health},
    }, http_status
