from flask import Blueprint, jsonify, request

from tienda.decorators import require_auth
from tienda.services import reporting_service
from tienda.validation import ValidationError, NotFoundError


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


@reports_bp.get("/warehouse-state")
@require_auth
def warehouse_state_report():
    return jsonify(reporting_service.warehouse_state_report()), 200


@reports_bp.get("/warehouse-movements")
@require_auth
def warehouse_movement_report():
    try:
        report = reporting_service.warehouse_movement_report(
            start=request.args.get("start"),
            end=request.args.get("end"),
        )
        return jsonify(report), 200
    except ValidationError as exc:
        return jsonify({"error": str(exc)}), 400


@reports_bp.get("/warehouse-history")
@require_auth
def warehouse_history_report():
    return jsonify(reporting_service.warehouse_history()), 200


@reports_bp.get("/products/<int:product_id>/lots")
@require_auth
def product_lot_report(product_id: int):
    try:
        return jsonify(reporting_service.product_lot_detail(product_id)), 200
    except NotFoundError as exc:
        return jsonify({"error": str(exc)}), 404


@reports_bp.get("/sales-by-product")
@require_auth
def sales_by_product_report():
    try:
        report = reporting_service.sales_by_product(
            start=request.args.get("start"),
            end=request.args.get("end"),
        )
        return jsonify(report), 200
    except ValidationError as exc:
        return jsonify({"error": str(exc)}), 400


@reports_bp.get("/sales-by-employee")
@require_auth
def sales_by_employee_report():
    try:
        report = reporting_service.sales_by_employee(
            start=request.args.get("start"),
            end=request.args.get("end"),
        )
        return jsonify(report), 200
    except ValidationError as exc:
        return jsonify({"error": str(exc)}), 400
