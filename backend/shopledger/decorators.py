# Overview: Request decorators and error mapping shared by API routes.

from functools import wraps
from flask import request, jsonify, g

from .errors import LedgerError, ValidationError
from .services import auth_service


def require_auth(f):
    """
    Resolve the acting user from `Authorization: Bearer <token>`.

    Sets:
    - g.current_user: the active User owning the token
    - g.store_id: the user's store (tenant context for every service call)

    Returns 401 when the header is missing or the token is unknown/inactive.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authentication required"}), 401

        token = auth_header.split(" ", 1)[1].strip()
        user = auth_service.resolve_token(token)
        if not user:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_user = user
        g.store_id = user.store_id

        return f(*args, **kwargs)

    return decorated_function


def require_roles(*roles: str):
    """Restrict a route to the given roles (after @require_auth)."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            user = getattr(g, "current_user", None)
            if user is None:
                return jsonify({"error": "Authentication required"}), 401
            if user.role not in roles:
                return jsonify({
                    "error": "Permission denied",
                    "kind": "Unauthorized",
                    "details": {"required_roles": list(roles), "role": user.role},
                }), 403
            return f(*args, **kwargs)

        return decorated_function

    return decorator


def ledger_error_response(e: LedgerError):
    return jsonify(e.to_dict()), e.http_status


def json_body() -> dict:
    """Request JSON as a dict; an empty body is {}, any other JSON shape is rejected."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data
