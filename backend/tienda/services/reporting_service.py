# Overview: Service-layer operations for reporting; read-only views over the lot ledger and sales.

from __future__ import annotations

from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import func
from sqlalchemy.orm import selectinload

from tienda.extensions import db
from tienda.models import Product, Purchase, PurchaseLineItem, Sale, SaleLine, User
from tienda.services.stock_reconciliation import (
    reconcile_line_item,
    reconcile_product,
    summarize_line_items,
    summarize_products,
)
from tienda.validation import ValidationError, NotFoundError
from tienda.time_utils import parse_iso_datetime, utcnow, to_utc_z

DEFAULT_MOVEMENT_REPORT_DAYS = 30


def _parse_range(start: str | None, end: str | None) -> tuple[datetime | None, datetime | None]:
    try:
        start_dt = parse_iso_datetime(start) if start else None
        end_dt = parse_iso_datetime(end) if end else None
    except ValueError:
        raise ValidationError("start and end must be ISO-8601 datetimes")
    if start_dt and end_dt and start_dt > end_dt:
        raise ValidationError("start must be before end")
    return start_dt, end_dt


def _warning_days() -> int:
    return int(current_app.config.get("EXPIRY_WARNING_DAYS", 30))


def _line_items_query():
    return db.session.query(PurchaseLineItem).options(
        selectinload(PurchaseLineItem.lots),
        selectinload(PurchaseLineItem.movements),
        selectinload(PurchaseLineItem.product),
        selectinload(PurchaseLineItem.purchase),
    )


def warehouse_state_report(now: datetime | None = None) -> dict:
    """Per-product warehouse stock with reorder and expiry alerts."""
    now = now or utcnow()
    warning_days = _warning_days()

    lines_by_product: dict[int, list] = {}
    for line in _line_items_query().all():
        lines_by_product.setdefault(line.product_id, []).append(line)

    products = db.session.query(Product).filter(Product.is_active.is_(True)).order_by(Product.name.asc()).all()
    stocks = [
        reconcile_product(product, lines_by_product.get(product.id, []), now, warning_days)
        for product in products
    ]

    return {
        "generated_at": to_utc_z(now),
        "warning_days": warning_days,
        "products": [s.to_dict() for s in stocks],
        "summary": summarize_products(stocks),
    }


def warehouse_movement_report(
    start: str | None = None,
    end: str | None = None,
    now: datetime | None = None,
) -> dict:
    """
    Ingress, egress and remaining per purchase line item bought in [start, end].

    The range defaults to the last 30 days.
    """
    now = now or utcnow()
    start_dt, end_dt = _parse_range(start, end)
    end_dt = end_dt or now
    start_dt = start_dt or (end_dt - timedelta(days=DEFAULT_MOVEMENT_REPORT_DAYS))
    warning_days = _warning_days()

    lines = (
        _line_items_query()
        .join(Purchase, Purchase.id == PurchaseLineItem.purchase_id)
        .filter(Purchase.created_at >= start_dt, Purchase.created_at <= end_dt)
        .order_by(Purchase.created_at.asc(), PurchaseLineItem.id.asc())
        .all()
    )

    rows = []
    stocks = []
    for line in lines:
        stock = reconcile_line_item(line, now, warning_days=warning_days)
        stocks.append(stock)
        lot_numbers = {lot.lot_id: lot.lot_number for lot in stock.lots}
        rows.append({
            "line_item_id": line.id,
            "purchase_id": line.purchase_id,
            "purchased_at": to_utc_z(line.purchase.created_at),
            "product_id": line.product_id,
            "product": line.product.name,
            "status": line.status,
            "ingress": {
                "packages": line.bulk_quantity,
                "units_per_package": line.units_per_bulk,
                "total": stock.total_purchased,
                "lots": [lot.to_dict() for lot in stock.lots],
            },
            "egress": [
                {
                    "id": m.id,
                    "movement_type": m.movement_type,
                    "occurred_at": to_utc_z(m.occurred_at),
                    "lot_id": m.lot_id,
                    "lot_number": lot_numbers.get(m.lot_id),
                    "packages": m.package_count,
                    "units": m.unit_count,
                    "total": m.total_quantity,
                }
                for m in line.movements
            ],
            "remaining": stock.to_dict()["remaining"],
        })

    return {
        "start": to_utc_z(start_dt),
        "end": to_utc_z(end_dt),
        "line_items": rows,
        "summary": summarize_line_items(stocks),
    }


def warehouse_history(now: datetime | None = None) -> dict:
    """Every purchase line item with what came in, what went out and what is left."""
    now = now or utcnow()
    lines = _line_items_query().order_by(PurchaseLineItem.created_at.desc(), PurchaseLineItem.id.desc()).all()

    rows = []
    for line in lines:
        stock = reconcile_line_item(line, now, warning_days=_warning_days())
        rows.append({
            "line_item_id": line.id,
            "purchase_id": line.purchase_id,
            "product_id": line.product_id,
            "product": line.product.name,
            "created_at": to_utc_z(line.created_at),
            "ingress": stock.total_purchased,
            "egress": stock.total_moved,
            "remaining": stock.remaining,
            "status": line.status,
        })
    return {"items": rows, "count": len(rows)}


def product_lot_detail(product_id: int, now: datetime | None = None) -> dict:
    """All lots of a product with remaining quantity and expiry bucket."""
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError(f"Product {product_id} not found")

    now = now or utcnow()
    lines = _line_items_query().filter(PurchaseLineItem.product_id == product_id).all()
    stock = reconcile_product(product, lines, now, _warning_days())

    lots = sorted(
        stock.lots,
        key=lambda lot: (lot.expires_at is None, lot.expires_at or datetime.max, lot.lot_id),
    )
    data = stock.to_dict()
    data["lots"] = [lot.to_dict() for lot in lots]
    return data


def sales_by_product(start: str | None = None, end: str | None = None) -> dict:
    """Quantity, revenue, average price, share of revenue and monthly trend per product."""
    start_dt, end_dt = _parse_range(start, end)

    query = db.session.query(
        SaleLine.product_id.label("product_id"),
        Product.name.label("name"),
        func.coalesce(func.sum(SaleLine.quantity), 0).label("quantity"),
        func.coalesce(func.sum(SaleLine.total_cents), 0).label("revenue_cents"),
    ).join(Sale, Sale.id == SaleLine.sale_id).join(Product, Product.id == SaleLine.product_id)
    trend_query = db.session.query(
        SaleLine.product_id.label("product_id"),
        func.strftime("%Y-%m", Sale.created_at).label("period"),
        func.coalesce(func.sum(SaleLine.quantity), 0).label("quantity"),
        func.coalesce(func.sum(SaleLine.total_cents), 0).label("revenue_cents"),
    ).join(Sale, Sale.id == SaleLine.sale_id)

    if start_dt:
        query = query.filter(Sale.created_at >= start_dt)
        trend_query = trend_query.filter(Sale.created_at >= start_dt)
    if end_dt:
        query = query.filter(Sale.created_at <= end_dt)
        trend_query = trend_query.filter(Sale.created_at <= end_dt)

    rows = query.group_by(SaleLine.product_id, Product.name).all()
    total_revenue = sum(int(r.revenue_cents or 0) for r in rows)

    trends: dict[int, list] = {}
    for t in trend_query.group_by(SaleLine.product_id, "period").order_by("period").all():
        trends.setdefault(t.product_id, []).append({
            "period": t.period,
            "quantity": int(t.quantity or 0),
            "revenue_cents": int(t.revenue_cents or 0),
        })

    items = []
    for r in rows:
        quantity = int(r.quantity or 0)
        revenue = int(r.revenue_cents or 0)
        items.append({
            "product_id": r.product_id,
            "name": r.name,
            "quantity_sold": quantity,
            "revenue_cents": revenue,
            "average_price_cents": revenue // quantity if quantity else 0,
            "share_percent": round(revenue * 100.0 / total_revenue, 2) if total_revenue else 0.0,
            "monthly": trends.get(r.product_id, []),
        })
    items.sort(key=lambda item: (-item["revenue_cents"], item["name"]))

    return {
        "start": to_utc_z(start_dt) if start_dt else None,
        "end": to_utc_z(end_dt) if end_dt else None,
        "items": items,
        "total_revenue_cents": total_revenue,
        "total_quantity": sum(item["quantity_sold"] for item in items),
    }


def sales_by_employee(start: str | None = None, end: str | None = None) -> dict:
    start_dt, end_dt = _parse_range(start, end)

    query = db.session.query(
        Sale.user_id.label("user_id"),
        func.count(Sale.id).label("sales_count"),
        func.coalesce(func.sum(Sale.total_cents), 0).label("revenue_cents"),
    ).filter(Sale.user_id.isnot(None))
    if start_dt:
        query = query.filter(Sale.created_at >= start_dt)
    if end_dt:
        query = query.filter(Sale.created_at <= end_dt)

    rows = query.group_by(Sale.user_id).all()
    users = {
        u.id: u
        for u in db.session.query(User).filter(User.id.in_([r.user_id for r in rows])).all()
    } if rows else {}

    items = [
        {
            "user_id": r.user_id,
            "name": users[r.user_id].full_name if r.user_id in users else None,
            "sales_count": int(r.sales_count or 0),
            "revenue_cents": int(r.revenue_cents or 0),
        }
        for r in rows
    ]
    items.sort(key=lambda item: -item["revenue_cents"])

    return {
        "start": to_utc_z(start_dt) if start_dt else None,
        "end": to_utc_z(end_dt) if end_dt else None,
        "items": items,
    }
