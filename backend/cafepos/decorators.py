# Overview: Request authentication and role decorators for API routes.

from functools import wraps

from flask import g, jsonify, request

from .services import session_service


def _bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


def require_auth(f):
    """
    Require a valid bearer session.

    Sets:
    - g.current_user: the authenticated User
    - g.session_context: the SessionContext

    Returns 401 if the header is missing or the token is invalid, expired,
    idle for too long, or belongs to a deactivated user.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = _bearer_token()
        if not token:
            return jsonify({"error": "Authentication required"}), 401

        context = session_service.validate_session(token)
        if not context:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_user = context.user
        g.session_context = context
        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles: str):
    """
    Allow only users holding one of the given roles. Use after @require_auth.

    The billing services never check roles themselves.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            user = getattr(g, "current_user", None)
            if user is None:
                return jsonify({"error": "Authentication required"}), 401
            if user.role not in roles:
                return jsonify({
                    "error": "Permission denied",
                    "required_roles": list(roles),
                }), 403
            return f(*args, **kwargs)

        return decorated_function
    return decorator


def actor_name() -> str:
    """Display name recorded as cashier_name on orders and payments."""
    user = getattr(g, "current_user", None)
    if user is None:
        return "System"
    return user.full_name or user.username
