# Overview: Flask API routes for customers.

from flask import Blueprint, request, jsonify, current_app, g

from ..services import customer_service
from ..validation import ValidationError, NotFoundError, ConflictError
from ..decorators import require_auth


customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


@customers_bp.get("")
@require_auth
def list_customers_route():
    customers = customer_service.list_customers(search=request.args.get("q"))
    return jsonify({"items": [c.to_dict() for c in customers], "count": len(customers)}), 200


@customers_bp.post("")
@require_auth
def create_customer_route():
    payload = request.get_json(silent=True) or {}

    try:
        customer = customer_service.create_customer(payload, created_by_user_id=g.current_user.id)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to create customer")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify(customer.to_dict()), 201


@customers_bp.get("/<string:carnet>")
@require_auth
def get_customer_by_carnet_route(carnet: str):
    try:
        customer = customer_service.get_by_carnet(carnet)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    return jsonify(customer.to_dict()), 200
