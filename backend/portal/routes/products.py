# Overview: Flask API routes for the product catalog; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_permission
from ..services import catalog_service, partner_service
from ..validation import ValidationError, ConflictError, NotFoundError


products_bp = Blueprint("products", __name__, url_prefix="/api/products")


def _product_payload(product, partner=None) -> dict:
    data = product.to_dict()
    if partner is not None:
        data["effective_partner_price_cents"] = catalog_service.resolve_partner_price_cents(partner, product)
    return data


@products_bp.get("")
@require_auth
@require_permission("product:view")
def list_products_route():
    """
    List active products.

    Requires: product:view
    Query: category, search (name or code substring)
    Partner-scoped callers also get effective_partner_price_cents.
    """
    products = catalog_service.list_products(
        category=request.args.get("category"),
        search=request.args.get("search"),
    )
    partner = partner_service.get_active_partner(g.partner_id) if g.partner_id else None
    return jsonify({"products": [_product_payload(p, partner) for p in products]}), 200


@products_bp.get("/<int:product_id>")
@require_auth
@require_permission("product:view")
def get_product_route(product_id: int):
    product = catalog_service.get_active_product(product_id)
    if product is None:
        return jsonify({"error": "Product not found"}), 404
    partner = partner_service.get_active_partner(g.partner_id) if g.partner_id else None
    return jsonify({"product": _product_payload(product, partner)}), 200


@products_bp.get("/<int:product_id>/dependencies")
@require_auth
@require_permission("product:view")
def product_dependencies_route(product_id: int):
    """Products required by this one, nearest first."""
    try:
        chain = catalog_service.get_dependency_chain(product_id)
        return jsonify({"product_id": product_id, "dependencies": [p.to_dict() for p in chain]}), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to load product dependencies")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.post("")
@require_auth
@require_permission("product:manage")
def create_product_route():
    """
    Create product.

    Requires: product:manage
    Body: {name, description, category, base_price_cents, code?,
           partner_price_cents?, stock_quantity?, dependency_id?}
    """
    try:
        product = catalog_service.create_product(request.get_json(silent=True) or {})
        return jsonify({"product": product.to_dict()}), 201

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.put("/<int:product_id>")
@require_auth
@require_permission("product:manage")
def update_product_route(product_id: int):
    try:
        product = catalog_service.update_product(product_id, request.get_json(silent=True) or {})
        return jsonify({"product": product.to_dict()}), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to update product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.delete("/<int:product_id>")
@require_auth
@require_permission("product:manage")
def delete_product_route(product_id: int):
    """Hard delete when unreferenced, otherwise deactivate."""
    try:
        outcome = catalog_service.delete_product(product_id)
        return jsonify({"product_id": product_id, "result": outcome}), 200

    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to delete product")
        return jsonify({"error": "Internal server error"}), 500
