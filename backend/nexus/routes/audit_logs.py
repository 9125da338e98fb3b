# Overview: Flask API route for reading the audit trail.

from flask import Blueprint, jsonify

from ..responses import internal_error
from ..services import audit_service
from ..decorators import require_auth, require_role


audit_logs_bp = Blueprint("audit_logs", __name__, url_prefix="/api/audit-logs")


@audit_logs_bp.get("")
@require_auth
@require_role("admin")
def list_audit_logs_route():
    """Last 100 audit entries, newest first."""
    try:
        return jsonify(audit_service.list_recent(limit=100)), 200
    except Exception as e:
        return internal_error("Failed to fetch audit logs", e)
