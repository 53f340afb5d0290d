# Overview: Flask API routes for purchases; a purchase is registered with its line items and lots in one request.

# backend/tienda/routes/purchases.py
"""
Purchase routes.

POST body:
{
  "subtotal_cents": 10000, "discount_cents": 0, "total_cents": 10000,
  "lines": [
    {"product_id": 1, "bulk_quantity": 10, "units_per_bulk": 10, ...,
     "lots": [{"lot_number": "L1", "quantity": 60, "expires_at": "2027-01-01"},
              {"lot_number": "L2", "quantity": 40}]}
  ]
}

Errors:
- 400: bad field, missing lots, lot quantities not adding up
- 404: unknown product / unit of measure
- 409: lot number already used for the product
Nothing is persisted when any line fails.
"""
from flask import Blueprint, request, jsonify, current_app, g

from ..services import purchase_service
from ..models.auth import ROLE_ADMIN
from ..validation import ValidationError, NotFoundError, ConflictError
from ..decorators import require_auth, require_role


purchases_bp = Blueprint("purchases", __name__, url_prefix="/api/purchases")


@purchases_bp.post("")
@require_auth
def create_purchase_route():
    payload = request.get_json(silent=True) or {}
    lines = payload.get("lines")
    header = {k: v for k, v in payload.items() if k != "lines"}

    try:
        purchase = purchase_service.create_purchase(
            header=header,
            lines=lines,
            created_by_user_id=g.current_user.id,
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to create purchase")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify(purchase.to_dict(include_lines=True)), 201


@purchases_bp.get("")
@require_auth
def list_purchases_route():
    """Purchase history. Query params: start, end (ISO-8601, inclusive)."""
    try:
        start, end = purchase_service.parse_range(request.args.get("start"), request.args.get("end"))
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    purchases = purchase_service.list_purchases(start, end)
    return jsonify({
        "items": [p.to_dict(include_lines=True) for p in purchases],
        "count": len(purchases),
    }), 200


@purchases_bp.get("/<int:purchase_id>")
@require_auth
def get_purchase_route(purchase_id: int):
    try:
        purchase = purchase_service.get_purchase(purchase_id)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    return jsonify(purchase.to_dict(include_lines=True)), 200


@purchases_bp.get("/line-items/pending")
@require_auth
def pending_line_items_route():
    """The warehouse intake work list."""
    lines = purchase_service.list_pending_line_items()
    return jsonify({"items": [line.to_dict(include_lots=True) for line in lines], "count": len(lines)}), 200


@purchases_bp.patch("/line-items/<int:line_item_id>")
@require_auth
@require_role(ROLE_ADMIN)
def patch_line_item_route(line_item_id: int):
    payload = request.get_json(silent=True) or {}

    try:
        line = purchase_service.set_line_item_status(line_item_id, payload.get("status"))
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404

    return jsonify(line.to_dict(include_lots=True)), 200
