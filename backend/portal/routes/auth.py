# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

# backend/portal/routes/auth.py
"""
Authentication API routes

- Login issues a bearer token (see session_service)
- Registration is performed by administrators only (user:create)
- Failed and successful logins are recorded as security events
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..services import auth_service
from ..services import session_service
from ..services import permission_service
from ..services import partner_service
from ..services.auth_service import PasswordValidationError
from ..services.permission_service import PermissionDeniedError
from ..validation import ValidationError, ConflictError, NotFoundError, coerce_optional_int
from ..decorators import bearer_token, require_auth, require_permission


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


def _identity_payload(user) -> dict:
    return {
        "user": user.to_dict(),
        "permissions": sorted(permission_service.get_user_permissions(user)),
        "partner_id": partner_service.get_user_partner_id(user.id),
    }


@auth_bp.post("/login")
def login_route():
    """
    Authenticate user and create session token.

    Returns user info and session token on success.
    Token must be included in Authorization header for protected routes.
    """
    try:
        data = request.get_json(silent=True) or {}
        username = data.get("username") or data.get("email")
        password = data.get("password")

        if not all([username, password]):
            return jsonify({"error": "username/email and password required"}), 400

        user_agent = request.headers.get("User-Agent")
        ip_address = request.remote_addr

        user = auth_service.authenticate(username, password)

        if not user:
            permission_service.log_security_event(
                user_id=None,
                event_type="LOGIN_FAILED",
                success=False,
                resource=request.path,
                action="LOGIN",
                reason=f"Invalid credentials for {username}",
                ip_address=ip_address,
                user_agent=user_agent,
            )
            return jsonify({"error": "Invalid credentials"}), 401

        session, token = session_service.create_session(
            user_id=user.id,
            user_agent=user_agent,
            ip_address=ip_address
        )

        permission_service.log_security_event(
            user_id=user.id,
            event_type="LOGIN_SUCCESS",
            success=True,
            resource=request.path,
            action="LOGIN",
            ip_address=ip_address,
            user_agent=user_agent,
        )

        payload = _identity_payload(user)
        payload["token"] = token
        payload["expires_at"] = session.to_dict()["expires_at"]
        return jsonify(payload), 200

    except Exception:
        current_app.logger.exception("Login failed")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/logout")
@require_auth
def logout_route():
    """Revoke the presented token."""
    session_service.revoke_session(bearer_token())
    permission_service.log_security_event(
        user_id=g.current_user.id,
        event_type="LOGOUT",
        success=True,
        resource=request.path,
        action="LOGOUT",
        ip_address=request.remote_addr,
        user_agent=request.headers.get("User-Agent"),
        partner_id=g.partner_id,
    )
    return jsonify({"message": "Logged out"}), 200


@auth_bp.get("/me")
@require_auth
def me_route():
    return jsonify(_identity_payload(g.current_user)), 200


@auth_bp.post("/register")
@require_auth
@require_permission("user:create")
def register_route():
    """
    Create a user account.

    Requires: user:create
    Available to: super_admin (any role), partner_admin (partner_user or
    partner_customer, linked to its own partner)
    """
    try:
        data = request.get_json(silent=True) or {}
        for field in ("username", "email", "password", "role"):
            if not data.get(field):
                return jsonify({"error": f"{field} required"}), 400

        user, link = auth_service.register_user(
            g.current_user,
            username=data["username"],
            email=data["email"],
            password=data["password"],
            role=data["role"],
            display_name=data.get("display_name"),
            partner_id=coerce_optional_int(data.get("partner_id"), "partner_id"),
            actor_partner_id=g.partner_id,
        )
        return jsonify({
            "user": user.to_dict(),
            "membership": link.to_dict() if link else None,
        }), 201

    except PasswordValidationError as e:
        return jsonify({"error": str(e)}), 400
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except PermissionDeniedError as e:
        return jsonify({"error": str(e)}), 403
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to register user")
        return jsonify({"error": "Internal server error"}), 500
