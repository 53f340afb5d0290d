# Overview: Flask API routes for catalog lookup tables (categories, suppliers, units of measure).

from flask import Blueprint, request, jsonify, current_app

from ..services import products_service
from ..validation import ValidationError, ConflictError
from ..decorators import require_auth


catalog_bp = Blueprint("catalog", __name__, url_prefix="/api")

LOOKUPS = {
    "categories": (products_service.list_categories, products_service.create_category),
    "suppliers": (products_service.list_suppliers, products_service.create_supplier),
    "units": (products_service.list_units, products_service.create_unit),
}


@catalog_bp.get("/<any(categories, suppliers, units):kind>")
@require_auth
def list_lookup_route(kind: str):
    list_fn, _ = LOOKUPS[kind]
    rows = list_fn()
    return jsonify({"items": [r.to_dict() for r in rows], "count": len(rows)}), 200


@catalog_bp.post("/<any(categories, suppliers, units):kind>")
@require_auth
def create_lookup_route(kind: str):
    _, create_fn = LOOKUPS[kind]
    payload = request.get_json(silent=True) or {}

    try:
        row = create_fn(payload)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to create %s", kind)
        return jsonify({"error": "Internal server error"}), 500

    return jsonify(row.to_dict()), 201
