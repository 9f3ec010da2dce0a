# Overview: Flask API routes for the in-process notification buffer.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_permission
from ..services import notification_service, order_service
from ..services.permission_service import PermissionDeniedError
from ..validation import ValidationError, coerce_optional_int


notifications_bp = Blueprint("notifications", __name__, url_prefix="/api/notifications")


@notifications_bp.get("")
@require_auth
def list_notifications_route():
    """
    Recent order events visible to the caller, newest first.

    Query: limit
    Provider staff see every event; partner roles see their partner's;
    partner customers see events for their own orders.
    """
    try:
        limit = coerce_optional_int(request.args.get("limit"), "limit")
        events = order_service.visible_notifications(g.current_user, g.partner_id, limit)
        return jsonify({
            "notifications": [e.to_dict() for e in events],
            "capacity": notification_service.get_sink().capacity,
        }), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except PermissionDeniedError as e:
        return jsonify({"error": str(e)}), 403
    except Exception:
        current_app.logger.exception("Failed to list notifications")
        return jsonify({"error": "Internal server error"}), 500


@notifications_bp.delete("")
@require_auth
@require_permission("system:admin")
def clear_notifications_route():
    cleared = notification_service.get_sink().clear()
    return jsonify({"cleared": cleared}), 200
