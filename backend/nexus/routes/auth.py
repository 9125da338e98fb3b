# Overview: Flask API routes for login and current-user lookup.

from flask import Blueprint, request, jsonify, g

from ..errors import ErpError
from ..responses import error_response, internal_error
from ..services import auth_service
from ..decorators import require_auth


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    """
    Exchange email/password for a bearer token.

    Request body: {"email": str, "password": str}

    Returns:
        200: {"token": str, "user": {...}}
        400: Missing credentials
        401: Invalid credentials
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({"error": "Missing body"}), 400

    try:
        user, token = auth_service.authenticate(data.get("email"), data.get("password"))
        return jsonify({"token": token, "user": user.to_dict()}), 200
    except ErpError as e:
        return error_response(e)
    except Exception as e:
        return internal_error("Failed to login user", e)


@auth_bp.get("/me")
@require_auth
def me_route():
    return jsonify(g.current_user.to_dict()), 200
