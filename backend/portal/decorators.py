# Overview: Request and permission decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .services import session_service, permission_service
from .services.permission_service import PermissionDeniedError


BEARER_PREFIX = "Bearer "


def bearer_token() -> str | None:
    """Token from the Authorization header, or None when absent or not a bearer."""
    header = request.headers.get("Authorization", "")
    if not header.startswith(BEARER_PREFIX):
        return None
    return header[len(BEARER_PREFIX):].strip() or None


def require_auth(f):
    """
    Resolve the bearer token into the caller's identity.

    On success the route sees:
    - g.current_user: the User
    - g.role: their Role (None when the stored role string is unknown)
    - g.partner_id: their active partner, None for provider staff and
      unlinked accounts
    - g.session_context: the SessionContext

    401 when the header is missing, or the token is unknown, revoked,
    expired, or owned by a deactivated user.
    """
    @wraps(f)
    def wrapper(*args, **kwargs):
        token = bearer_token()
        if token is None:
            return jsonify({"error": "Authentication required"}), 401

        context = session_service.validate_session(token)
        if context is None:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.session_context = context
        g.current_user = context.user
        g.role = context.role
        g.partner_id = context.partner_id
        return f(*args, **kwargs)

    return wrapper


def require_permission(permission_code: str):
    """
    Gate a route on one permission code. Stack below @require_auth.

    A denial is written to security_events and answered with 403 naming
    the missing permission.
    """
    def decorator(f):
        @wraps(f)
        def wrapper(*args, **kwargs):
            if getattr(g, "current_user", None) is None:
                return jsonify({"error": "Authentication required"}), 401

            try:
                permission_service.require_permission(
                    user=g.current_user,
                    permission_code=permission_code,
                    resource=request.path,
                    ip_address=request.remote_addr,
                    user_agent=request.headers.get("User-Agent"),
                    partner_id=g.partner_id,
                )
            except PermissionDeniedError as e:
                return jsonify({
                    "error": "Permission denied",
                    "required_permission": permission_code,
                    "message": str(e),
                }), 403

            return f(*args, **kwargs)

        return wrapper
    return decorator
