# Overview: Flask API routes for partners, members and partner prices; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_permission
from ..services import catalog_service, partner_service
from ..services.permission_service import PermissionDeniedError
from ..validation import ValidationError, ConflictError, NotFoundError, coerce_int


partners_bp = Blueprint("partners", __name__, url_prefix="/api/partners")


@partners_bp.get("")
@require_auth
@require_permission("partner:view")
def list_partners_route():
    """
    List partners.

    Requires: partner:view
    Provider staff see every partner; partner roles see their own.
    """
    include_inactive = request.args.get("include_inactive", "false").lower() == "true"
    try:
        partners = partner_service.list_partners(g.current_user, g.partner_id, include_inactive=include_inactive)
        return jsonify({"partners": [p.to_dict() for p in partners]}), 200
    except PermissionDeniedError as e:
        return jsonify({"error": str(e)}), 403
    except Exception:
        current_app.logger.exception("Failed to list partners")
        return jsonify({"error": "Internal server error"}), 500


@partners_bp.post("")
@require_auth
@require_permission("partner:manage")
def create_partner_route():
    """
    Create partner.

    Requires: partner:manage
    """
    try:
        partner = partner_service.create_partner(request.get_json(silent=True) or {})
        return jsonify({"partner": partner.to_dict()}), 201

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to create partner")
        return jsonify({"error": "Internal server error"}), 500


@partners_bp.get("/<int:partner_id>")
@require_auth
@require_permission("partner:view")
def get_partner_route(partner_id: int):
    try:
        partner = partner_service.require_partner_access(g.current_user, g.partner_id, partner_id)
        return jsonify({"partner": partner.to_dict()}), 200
    except PermissionDeniedError as e:
        return jsonify({"error": str(e)}), 403
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to load partner")
        return jsonify({"error": "Internal server error"}), 500


@partners_bp.put("/<int:partner_id>")
@require_auth
@require_permission("partner:manage")
def update_partner_route(partner_id: int):
    try:
        partner = partner_service.update_partner(partner_id, request.get_json(silent=True) or {})
        return jsonify({"partner": partner.to_dict()}), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to update partner")
        return jsonify({"error": "Internal server error"}), 500


@partners_bp.delete("/<int:partner_id>")
@require_auth
@require_permission("partner:manage")
def delete_partner_route(partner_id: int):
    """Soft delete (deactivate)."""
    try:
        partner = partner_service.deactivate_partner(partner_id)
        return jsonify({"partner": partner.to_dict()}), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to deactivate partner")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# MEMBERS
# =============================================================================

@partners_bp.get("/<int:partner_id>/users")
@require_auth
@require_permission("partner:view")
def list_members_route(partner_id: int):
    try:
        partner_service.require_partner_access(g.current_user, g.partner_id, partner_id)
        members = partner_service.list_members(partner_id)
        return jsonify({"members": [m.to_dict() for m in members]}), 200
    except PermissionDeniedError as e:
        return jsonify({"error": str(e)}), 403
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to list partner members")
        return jsonify({"error": "Internal server error"}), 500


@partners_bp.post("/<int:partner_id>/users")
@require_auth
@require_permission("user:manage_partner")
def add_member_route(partner_id: int):
    """
    Add an existing user to a partner.

    Requires: user:manage_partner (partner admins: own partner only)
    Body: {user_id, role}
    """
    try:
        data = request.get_json(silent=True) or {}
        if data.get("user_id") in (None, "") or not data.get("role"):
            return jsonify({"error": "user_id and role required"}), 400

        link = partner_service.add_member(
            g.current_user,
            g.partner_id,
            partner_id,
            coerce_int(data["user_id"], "user_id"),
            data["role"],
        )
        return jsonify({"member": link.to_dict()}), 201

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except PermissionDeniedError as e:
        return jsonify({"error": str(e)}), 403
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to add partner member")
        return jsonify({"error": "Internal server error"}), 500


@partners_bp.put("/<int:partner_id>/users/<int:user_id>")
@require_auth
@require_permission("user:manage_partner")
def change_member_role_route(partner_id: int, user_id: int):
    """Change a member's partner role. The last partner admin cannot be demoted."""
    try:
        data = request.get_json(silent=True) or {}
        if not data.get("role"):
            return jsonify({"error": "role required"}), 400

        link = partner_service.change_member_role(g.current_user, g.partner_id, partner_id, user_id, data["role"])
        return jsonify({"member": link.to_dict()}), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except PermissionDeniedError as e:
        return jsonify({"error": str(e)}), 403
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to change partner member role")
        return jsonify({"error": "Internal server error"}), 500


@partners_bp.delete("/<int:partner_id>/users/<int:user_id>")
@require_auth
@require_permission("user:manage_partner")
def remove_member_route(partner_id: int, user_id: int):
    """Soft-remove a member. The last partner admin cannot be removed."""
    try:
        link = partner_service.remove_member(g.current_user, g.partner_id, partner_id, user_id)
        return jsonify({"member": link.to_dict()}), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except PermissionDeniedError as e:
        return jsonify({"error": str(e)}), 403
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to remove partner member")
        return jsonify({"error": "Internal server error"}), 500


@partners_bp.get("/me/customers")
@require_auth
def my_customers_route():
    """Customers of the caller's partner. partner_admin only."""
    try:
        links = partner_service.list_partner_customers(g.current_user, g.partner_id)
        return jsonify({"customers": [link.to_dict() for link in links]}), 200
    except PermissionDeniedError as e:
        return jsonify({"error": str(e)}), 403
    except Exception:
        current_app.logger.exception("Failed to list partner customers")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# PARTNER PRICES
# =============================================================================

@partners_bp.get("/<int:partner_id>/prices")
@require_auth
@require_permission("partner:view")
def list_prices_route(partner_id: int):
    try:
        partner_service.require_partner_access(g.current_user, g.partner_id, partner_id)
        prices = catalog_service.list_partner_prices(partner_id)
        return jsonify({"prices": [p.to_dict() for p in prices]}), 200
    except PermissionDeniedError as e:
        return jsonify({"error": str(e)}), 403
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to list partner prices")
        return jsonify({"error": "Internal server error"}), 500


@partners_bp.put("/<int:partner_id>/prices")
@require_auth
@require_permission("partner:manage")
def set_prices_route(partner_id: int):
    """
    Upsert partner price overrides.

    Requires: partner:manage
    Body: {prices: [{product_id, price_cents}]}
    Unknown products are skipped and reported.
    """
    try:
        partner = partner_service.get_active_partner(partner_id)
        if partner is None:
            return jsonify({"error": "Partner not found"}), 404

        data = request.get_json(silent=True) or {}
        saved, skipped = catalog_service.set_partner_prices(partner.id, data.get("prices"))
        return jsonify({
            "prices": [p.to_dict() for p in saved],
            "skipped": skipped,
        }), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to set partner prices")
        return jsonify({"error": "Internal server error"}), 500
