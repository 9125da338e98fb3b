# Overview: JSON response helpers shared by route modules.

from flask import jsonify, current_app

from .errors import ErpError


def error_response(e: ErpError):
    return jsonify(e.to_dict()), e.status_code


def internal_error(message: str, exc: Exception):
    """Log the failure with traceback; only leak its text when EXPOSE_ERROR_DETAILS is on."""
    current_app.logger.exception(message)
    body = {"error": "Internal server error"}
    if current_app.config.get("EXPOSE_ERROR_DETAILS"):
        body["details"] = str(exc)
    return jsonify(body), 500
