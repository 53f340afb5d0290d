# Overview: Flask API routes for the warehouse; intake, movements and lot administration.

# backend/tienda/routes/warehouse.py
"""
Warehouse routes.

Time semantics:
- API accepts ISO-8601 datetimes with Z/offsets; backend normalizes to UTC-naive internally.
- start/end filtering is inclusive.

Movement types: "INTAKE" / "EGRESS" (numeric 1 / 2 accepted).
"""
from flask import Blueprint, request, jsonify, current_app, g

from ..services import warehouse_service
from ..services import lot_service
from ..services.purchase_service import parse_range
from ..models.auth import ROLE_ADMIN
from ..validation import ValidationError, NotFoundError, ConflictError
from ..decorators import require_auth, require_role


warehouse_bp = Blueprint("warehouse", __name__, url_prefix="/api")


@warehouse_bp.post("/warehouse/receive")
@require_auth
def receive_route():
    """
    Receive part of a purchase line item into sellable stock.

    Body: {"purchase_line_item_id", "packages"?, "units"?, "lot_id"?,
           "unit_of_measure_id"?, "barcodes"?: [{"barcode", "quantity"?, "expires_at"?}]}
    """
    payload = request.get_json(silent=True) or {}
    if payload.get("purchase_line_item_id") is None:
        return jsonify({"error": "purchase_line_item_id is required"}), 400

    try:
        result = warehouse_service.receive_into_warehouse(
            purchase_line_item_id=payload["purchase_line_item_id"],
            packages=payload.get("packages", 0),
            units=payload.get("units", 0),
            lot_id=payload.get("lot_id"),
            unit_of_measure_id=payload.get("unit_of_measure_id"),
            barcodes=payload.get("barcodes"),
            received_by_user_id=g.current_user.id,
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to receive into warehouse")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify(result), 201


@warehouse_bp.post("/warehouse/intake")
@require_auth
def intake_record_route():
    """Record a physical arrival without moving stock to the shelf."""
    payload = request.get_json(silent=True) or {}
    if payload.get("purchase_line_item_id") is None:
        return jsonify({"error": "purchase_line_item_id is required"}), 400

    try:
        record = warehouse_service.record_intake(
            purchase_line_item_id=payload["purchase_line_item_id"],
            quantity_received=payload.get("quantity_received"),
            received_by_user_id=g.current_user.id,
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404

    return jsonify(record.to_dict()), 201


@warehouse_bp.get("/warehouse/intake-records")
@require_auth
def list_intake_records_route():
    records = warehouse_service.list_intake_records(
        purchase_line_item_id=request.args.get("purchase_line_item_id", type=int)
    )
    return jsonify({"items": [r.to_dict() for r in records], "count": len(records)}), 200


@warehouse_bp.post("/warehouse/movements")
@require_auth
def create_movement_route():
    """
    Record a movement against a purchase line item.

    Body: {"purchase_line_item_id", "quantity", "movement_type"?, "lot_id"?,
           "unit_of_measure_id"?, "package_count"?, "unit_count"?, "occurred_at"?}
    """
    payload = request.get_json(silent=True) or {}
    for key in ("purchase_line_item_id", "quantity"):
        if payload.get(key) is None:
            return jsonify({"error": f"{key} is required"}), 400

    try:
        movement = warehouse_service.create_movement(
            purchase_line_item_id=payload["purchase_line_item_id"],
            quantity=payload["quantity"],
            movement_type=payload.get("movement_type", "INTAKE"),
            unit_of_measure_id=payload.get("unit_of_measure_id"),
            lot_id=payload.get("lot_id"),
            package_count=payload.get("package_count", 0),
            unit_count=payload.get("unit_count", 0),
            occurred_at=payload.get("occurred_at"),
            created_by_user_id=g.current_user.id,
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to record movement")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify(movement.to_dict()), 201


@warehouse_bp.get("/warehouse/movements")
@require_auth
def list_movements_route():
    try:
        start, end = parse_range(request.args.get("start"), request.args.get("end"))
        movements = warehouse_service.list_movements(
            purchase_line_item_id=request.args.get("purchase_line_item_id", type=int),
            product_id=request.args.get("product_id", type=int),
            movement_type=request.args.get("movement_type"),
            start=start,
            end=end,
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    return jsonify({"items": [m.to_dict() for m in movements], "count": len(movements)}), 200


@warehouse_bp.patch("/lots/<int:lot_id>")
@require_auth
@require_role(ROLE_ADMIN)
def patch_lot_route(lot_id: int):
    """Administrative lot status change: {"status": "ACTIVE" | "INACTIVE"}."""
    payload = request.get_json(silent=True) or {}

    try:
        lot = lot_service.set_lot_status(lot_id, payload.get("status"))
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404

    return jsonify(lot.to_dict()), 200
