# Overview: Flask API routes for orders; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_permission
from ..services import order_service
from ..services.permission_service import PermissionDeniedError
from ..validation import ValidationError, ConflictError, NotFoundError, coerce_int


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.post("/convert")
@require_auth
@require_permission("order:manage")
def convert_quote_route():
    """
    Convert an approved quote into a pending order.

    Requires: order:manage
    Body: {quote_id, shipping_address?, billing_address?, notes?, expected_delivery?}
    """
    try:
        data = request.get_json(silent=True) or {}
        if data.get("quote_id") in (None, ""):
            return jsonify({"error": "quote_id required"}), 400

        order = order_service.convert_quote(
            g.current_user,
            g.partner_id,
            coerce_int(data["quote_id"], "quote_id"),
            shipping_address=data.get("shipping_address"),
            billing_address=data.get("billing_address"),
            notes=data.get("notes"),
            expected_delivery=data.get("expected_delivery"),
        )
        return jsonify({"order": order.to_dict(include_items=True, include_history=True)}), 201

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except PermissionDeniedError as e:
        return jsonify({"error": str(e)}), 403
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to convert quote")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("")
@require_auth
@require_permission("order:view")
def list_orders_route():
    try:
        orders = order_service.list_orders(g.current_user, g.partner_id, status=request.args.get("status"))
        return jsonify({"orders": [o.to_dict() for o in orders]}), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except PermissionDeniedError as e:
        return jsonify({"error": str(e)}), 403
    except Exception:
        current_app.logger.exception("Failed to list orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>")
@require_auth
@require_permission("order:view")
def get_order_route(order_id: int):
    try:
        order = order_service.get_order(g.current_user, g.partner_id, order_id)
        return jsonify({"order": order.to_dict(include_items=True, include_history=True)}), 200

    except PermissionDeniedError as e:
        return jsonify({"error": str(e)}), 403
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to load order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>/history")
@require_auth
@require_permission("order:view")
def order_history_route(order_id: int):
    """Status history, oldest first."""
    try:
        history = order_service.get_history(g.current_user, g.partner_id, order_id)
        return jsonify({"order_id": order_id, "history": [h.to_dict() for h in history]}), 200

    except PermissionDeniedError as e:
        return jsonify({"error": str(e)}), 403
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to load order history")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.put("/<int:order_id>/status")
@require_auth
@require_permission("order:manage")
def update_order_status_route(order_id: int):
    """
    Update order status and append a history row.

    Requires: order:manage
    Body: {status, notes?}
    """
    try:
        data = request.get_json(silent=True) or {}
        if not data.get("status"):
            return jsonify({"error": "status required"}), 400

        order = order_service.update_status(
            g.current_user,
            g.partner_id,
            order_id,
            data["status"],
            notes=data.get("notes"),
        )
        return jsonify({"order": order.to_dict(include_history=True)}), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except PermissionDeniedError as e:
        return jsonify({"error": str(e)}), 403
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to update order status")
        return jsonify({"error": "Internal server error"}), 500
