# Overview: Request authentication and role decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .errors import AuthError
from .services import auth_service


def _is_authenticated() -> bool:
    return hasattr(g, 'current_user')


def require_auth(f):
    """
    Require a valid bearer JWT.

    Sets g.current_user to the authenticated, active User.

    SECURITY: Returns 401 if:
    - No Authorization header or not a Bearer token
    - Invalid, tampered or expired token
    - User no longer exists or is deactivated
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Unauthorized: Missing or invalid token"}), 401

        token = auth_header.split(" ", 1)[1].strip()

        try:
            g.current_user = auth_service.get_user_from_token(token)
        except AuthError as e:
            return jsonify(e.to_dict()), e.status_code

        return f(*args, **kwargs)

    return decorated_function


def require_role(*role_names: str):
    """
    Require the authenticated user to hold one of the given roles.

    Must be stacked under @require_auth.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            if g.current_user.role_name not in role_names:
                return jsonify({
                    "error": "Permission denied",
                    "required_roles": list(role_names),
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator
