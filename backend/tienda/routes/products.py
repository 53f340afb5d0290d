# Overview: Flask API routes for products operations; parses input and returns JSON responses.

# backend/tienda/routes/products.py
"""
Product management routes.

SECURITY: All routes require authentication.

Stock:
- PATCH /<id>/stock takes exactly one of {"increment": n}, {"decrement": n}
  or {"set": n} and applies it as a single UPDATE statement.
"""
from flask import Blueprint, request, jsonify, current_app, g

from ..services import products_service
from ..services import lot_service
from ..validation import (
    enforce_rules_stock_patch,
    ValidationError,
    NotFoundError,
    ConflictError,
)
from ..decorators import require_auth


products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
@require_auth
def list_products():
    """
    List products with optional search and pagination.

    Query params:
    - q: str (optional) - name contains
    - category_id: int (optional)
    - active: "true" to hide inactive products
    - page: int (optional) - page number (1-indexed). If omitted, returns all items.
    - per_page: int (optional) - items per page (default 20, max 100)
    """
    result = products_service.list_products(
        search=request.args.get("q"),
        category_id=request.args.get("category_id", type=int),
        active_only=request.args.get("active", "false").lower() == "true",
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
    )
    return jsonify(result), 200


@products_bp.post("")
@require_auth
def create_product_route():
    payload = request.get_json(silent=True) or {}

    try:
        created = products_service.create_product(payload, user_id=g.current_user.id)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify(created.to_dict()), 201


@products_bp.get("/catalog")
@require_auth
def sale_catalog_route():
    """Active products with stock, for the point of sale."""
    items = products_service.sale_catalog(search=request.args.get("q"))
    return jsonify({"items": items, "count": len(items)}), 200


@products_bp.get("/check")
@require_auth
def check_name_route():
    """GET /check?name=...&exclude_id=... -> {"exists": bool}"""
    name = (request.args.get("name") or "").strip()
    if not name:
        return jsonify({"error": "name is required"}), 400
    exists = products_service.name_exists(name, exclude_id=request.args.get("exclude_id", type=int))
    return jsonify({"name": name, "exists": exists}), 200


@products_bp.get("/barcode/<string:barcode>")
@require_auth
def barcode_lookup_route(barcode: str):
    try:
        detail = products_service.find_by_barcode(barcode)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404

    return jsonify({"detail": detail.to_dict(), "product": detail.product.to_dict()}), 200


@products_bp.get("/<int:product_id>")
@require_auth
def get_product_route(product_id: int):
    try:
        product = products_service.get_product(product_id)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    return jsonify(product.to_dict()), 200


@products_bp.put("/<int:product_id>")
@require_auth
def update_product_route(product_id: int):
    payload = request.get_json(silent=True) or {}

    try:
        product = products_service.update_product(product_id, payload, user_id=g.current_user.id)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to update product")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify(product.to_dict()), 200


@products_bp.patch("/<int:product_id>/stock")
@require_auth
def patch_stock_route(product_id: int):
    payload = request.get_json(silent=True) or {}

    try:
        op, amount = enforce_rules_stock_patch(payload)
        product = products_service.apply_stock_operation(product_id, op, amount)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to update stock")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify(product.to_dict()), 200


@products_bp.get("/<int:product_id>/lots")
@require_auth
def product_lots_route(product_id: int):
    """Lots of a product, soonest expiry first."""
    try:
        lots = lot_service.list_lots_for_product(product_id)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    return jsonify({"items": [lot.to_dict() for lot in lots], "count": len(lots)}), 200
