# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

# backend/tienda/routes/sales.py
"""Sales API routes"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import sales_service
from ..services.purchase_service import parse_range
from ..validation import ValidationError, NotFoundError, ConflictError, InsufficientStockError
from ..decorators import require_auth


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.post("")
@require_auth
def create_sale_route():
    """
    Record a completed sale.

    Body: {"customer_id"?, "amount_received_cents"?, ...,
           "lines": [{"product_id", "quantity", "unit_price_cents"?, "barcode"?}]}
    Without customer_id the sale goes to the anonymous customer.
    """
    data = request.get_json(silent=True) or {}
    lines = data.get("lines")
    header = {k: v for k, v in data.items() if k != "lines"}

    try:
        sale = sales_service.create_sale(sale=header, lines=lines, user_id=g.current_user.id)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except InsufficientStockError as e:
        return jsonify({"error": str(e), "insufficient_stock": True}), 409
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"sale": sale.to_dict()}), 201


@sales_bp.get("")
@require_auth
def list_sales_route():
    try:
        start, end = parse_range(request.args.get("start"), request.args.get("end"))
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    sales = sales_service.list_sales(start, end)
    return jsonify({"items": [s.to_dict(include_lines=False) for s in sales], "count": len(sales)}), 200


@sales_bp.get("/<int:sale_id>")
@require_auth
def get_sale_route(sale_id: int):
    try:
        sale = sales_service.get_sale(sale_id)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    return jsonify({"sale": sale.to_dict()}), 200
