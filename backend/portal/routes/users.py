# Overview: Flask API routes for user administration; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_permission
from ..services import user_service
from ..services.permission_service import PermissionDeniedError
from ..validation import ValidationError, ConflictError, NotFoundError


users_bp = Blueprint("users", __name__, url_prefix="/api/users")


@users_bp.get("")
@require_auth
@require_permission("user:view")
def list_users_route():
    """
    List users.

    Requires: user:view
    Partner roles only see members of their own partner.
    """
    include_inactive = request.args.get("include_inactive", "false").lower() == "true"
    try:
        users = user_service.list_users(g.current_user, g.partner_id, include_inactive=include_inactive)
        return jsonify({"users": [u.to_dict() for u in users]}), 200
    except PermissionDeniedError as e:
        return jsonify({"error": str(e)}), 403
    except Exception:
        current_app.logger.exception("Failed to list users")
        return jsonify({"error": "Internal server error"}), 500


@users_bp.get("/orphaned")
@require_auth
@require_permission("system:admin")
def orphaned_users_route():
    """Active partner-role users without an active partner link. super_admin only."""
    users = user_service.list_orphaned_users()
    return jsonify({"users": [u.to_dict() for u in users]}), 200


@users_bp.put("/<int:user_id>/role")
@require_auth
@require_permission("user:manage")
def change_role_route(user_id: int):
    """
    Change a user's role.

    Requires: user:manage
    The last super admin cannot be demoted; the last partner admin of a
    partner cannot be moved off partner_admin.
    """
    try:
        data = request.get_json(silent=True) or {}
        role = data.get("role")
        if not role:
            return jsonify({"error": "role required"}), 400

        user = user_service.change_role(g.current_user, user_id, role)
        return jsonify({"user": user.to_dict()}), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except PermissionDeniedError as e:
        return jsonify({"error": str(e)}), 403
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to change user role")
        return jsonify({"error": "Internal server error"}), 500


@users_bp.delete("/<int:user_id>")
@require_auth
@require_permission("user:manage")
def delete_user_route(user_id: int):
    """
    Deactivate a user (soft delete).

    Requires: user:manage
    """
    try:
        user = user_service.delete_user(g.current_user, user_id)
        return jsonify({"user": user.to_dict()}), 200

    except PermissionDeniedError as e:
        return jsonify({"error": str(e)}), 403
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to delete user")
        return jsonify({"error": "Internal server error"}), 500
