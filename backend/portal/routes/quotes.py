# Overview: Flask API routes for quotes; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_permission
from ..services import quote_service
from ..services.permission_service import PermissionDeniedError
from ..validation import ValidationError, ConflictError, NotFoundError


quotes_bp = Blueprint("quotes", __name__, url_prefix="/api/quotes")


@quotes_bp.get("")
@require_auth
@require_permission("quote:view")
def list_quotes_route():
    """
    List quotes visible to the caller.

    Requires: quote:view
    Query: status
    """
    try:
        quotes = quote_service.list_quotes(g.current_user, g.partner_id, status=request.args.get("status"))
        return jsonify({"quotes": [q.to_dict() for q in quotes]}), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except PermissionDeniedError as e:
        return jsonify({"error": str(e)}), 403
    except Exception:
        current_app.logger.exception("Failed to list quotes")
        return jsonify({"error": "Internal server error"}), 500


@quotes_bp.post("")
@require_auth
@require_permission("quote:create")
def create_quote_route():
    """
    Create a draft quote.

    Requires: quote:create
    Body: {items: [{product_id, quantity, unit_price_cents?,
                    customer_unit_price_cents?, notes?}],
           valid_until, partner_id?, customer_user_id?, notes?}

    Provider staff may override unit prices. Partner sellers must supply
    customer_unit_price_cents, which cannot be below the partner price.
    """
    try:
        quote = quote_service.create_quote(g.current_user, g.partner_id, request.get_json(silent=True) or {})
        return jsonify({"quote": quote.to_dict(include_items=True)}), 201

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except PermissionDeniedError as e:
        return jsonify({"error": str(e)}), 403
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to create quote")
        return jsonify({"error": "Internal server error"}), 500


@quotes_bp.get("/<int:quote_id>")
@require_auth
@require_permission("quote:view")
def get_quote_route(quote_id: int):
    try:
        quote = quote_service.get_quote(g.current_user, g.partner_id, quote_id)
        return jsonify({"quote": quote.to_dict(include_items=True)}), 200

    except PermissionDeniedError as e:
        return jsonify({"error": str(e)}), 403
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to load quote")
        return jsonify({"error": "Internal server error"}), 500


@quotes_bp.put("/<int:quote_id>/status")
@require_auth
@require_permission("quote:view")
def update_quote_status_route(quote_id: int):
    """
    Move a quote through draft -> sent -> approved | rejected.

    Requires: quote:view plus quote:manage, or creator rights (draft/sent),
    or being the quote's customer (approved/rejected).
    """
    try:
        data = request.get_json(silent=True) or {}
        if not data.get("status"):
            return jsonify({"error": "status required"}), 400

        quote = quote_service.update_status(
            g.current_user,
            g.partner_id,
            quote_id,
            data["status"],
            notes=data.get("notes"),
        )
        return jsonify({"quote": quote.to_dict()}), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except PermissionDeniedError as e:
        return jsonify({"error": str(e)}), 403
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to update quote status")
        return jsonify({"error": "Internal server error"}), 500


@quotes_bp.delete("/<int:quote_id>")
@require_auth
@require_permission("quote:create")
def delete_quote_route(quote_id: int):
    """Delete a draft quote and its items."""
    try:
        quote_service.delete_quote(g.current_user, g.partner_id, quote_id)
        return jsonify({"message": "Quote deleted", "quote_id": quote_id}), 200

    except PermissionDeniedError as e:
        return jsonify({"error": str(e)}), 403
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to delete quote")
        return jsonify({"error": "Internal server error"}), 500
