# Overview: Service-layer operations for sales; records a sale and takes its units off the shelf counter.

"""
Sales Service

create_sale() writes, in ONE transaction:
1. the Sale header (customer defaults to the anonymous customer)
2. one SaleLine per line
3. an atomic guarded decrement of Product.current_stock per line
4. ProductDetail -> SOLD for lines that carry a scanned barcode

Oversell raises InsufficientStockError and rolls everything back.

Sales do not create WarehouseMovements: the warehouse ledger covers
warehouse -> shelf, the counter covers the shelf, and
products_service.find_stock_drift() joins the two.
"""

from __future__ import annotations

import logging
from datetime import datetime

from ..extensions import db
from ..models import Product, ProductDetail, Sale, SaleLine
from ..models.catalog import PRODUCT_DETAIL_AVAILABLE, PRODUCT_DETAIL_SOLD
from ..validation import ValidationError, NotFoundError, ConflictError, coerce_int, enforce_rules_money
from .concurrency import atomic
from .customer_service import resolve_sale_customer
from .products_service import decrement_stock

logger = logging.getLogger(__name__)

HEADER_MONEY_FIELDS = {"subtotal_cents", "discount_cents", "total_cents", "amount_received_cents", "change_cents"}
LINE_MONEY_FIELDS = {"unit_price_cents", "discount_cents", "subtotal_cents", "total_cents"}


def _mark_barcode_sold(product_id: int, barcode: str) -> None:
    detail = (
        db.session.query(ProductDetail)
        .filter(
            ProductDetail.product_id == product_id,
            ProductDetail.barcode == barcode,
            ProductDetail.status == PRODUCT_DETAIL_AVAILABLE,
        )
        .order_by(ProductDetail.id.asc())
        .first()
    )
    if detail is None:
        raise ConflictError(f"Barcode {barcode!r} is not available for product {product_id}")
    detail.status = PRODUCT_DETAIL_SOLD


def _build_line(sale: Sale, data: dict) -> tuple[SaleLine, int]:
    """Returns (line, line_total_cents)."""
    if not isinstance(data, dict):
        raise ValidationError("Each sale line must be an object")
    if data.get("product_id") is None:
        raise ValidationError("product_id is required on every sale line")

    product_id = coerce_int("product_id", data["product_id"])
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError(f"Product {product_id} not found")
    if not product.is_active:
        raise ValidationError(f"Product {product.name!r} is inactive")

    quantity = coerce_int("quantity", data.get("quantity", 1))
    if quantity <= 0:
        raise ValidationError("quantity must be > 0")

    money = enforce_rules_money(data, LINE_MONEY_FIELDS)
    unit_price = money.get("unit_price_cents", product.sale_price_cents)
    discount = money.get("discount_cents", 0)
    subtotal = money.get("subtotal_cents", unit_price * quantity)
    total = money.get("total_cents", subtotal - discount)
    if total < 0:
        raise ValidationError(f"Line discount exceeds subtotal for {product.name!r}")

    barcode = str(data.get("barcode") or "").strip() or None

    line = SaleLine(
        sale=sale,
        product_id=product_id,
        quantity=quantity,
        unit_price_cents=unit_price,
        discount_cents=discount,
        subtotal_cents=subtotal,
        total_cents=total,
        barcode=barcode,
    )
    db.session.add(line)

    decrement_stock(product_id, quantity)
    if barcode:
        _mark_barcode_sold(product_id, barcode)

    return line, total


def create_sale(*, sale: dict, lines: list, user_id: int | None = None) -> Sale:
    """
    Record a sale.

    Raises:
        ValidationError: bad header or line data
        NotFoundError: unknown customer or product
        InsufficientStockError: a line asks for more than current_stock
        ConflictError: a scanned barcode is already sold
    """
    if not isinstance(sale, dict):
        raise ValidationError("sale must be an object")
    if not isinstance(lines, list) or not lines:
        raise ValidationError("A sale requires at least one line")

    money = enforce_rules_money(sale, HEADER_MONEY_FIELDS)
    customer = resolve_sale_customer(
        coerce_int("customer_id", sale["customer_id"]) if sale.get("customer_id") is not None else None
    )

    def _op():
        header = Sale(customer_id=customer.id, user_id=user_id)
        db.session.add(header)
        db.session.flush()

        lines_total = 0
        for data in lines:
            _, line_total = _build_line(header, data)
            lines_total += line_total

        header.subtotal_cents = money.get("subtotal_cents", lines_total)
        header.discount_cents = money.get("discount_cents", 0)
        header.total_cents = money.get("total_cents", header.subtotal_cents - header.discount_cents)
        received = money.get("amount_received_cents", header.total_cents)
        if received < header.total_cents:
            raise ValidationError("amount_received_cents is less than the sale total")
        header.amount_received_cents = received
        header.change_cents = money.get("change_cents", received - header.total_cents)

        db.session.flush()
        return header

    result = atomic(_op)
    logger.info("Sale %s recorded: %d line(s), total %d cents", result.id, len(lines), result.total_cents)
    return result


def get_sale(sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if sale is None:
        raise NotFoundError(f"Sale {sale_id} not found")
    return sale


def list_sales(start: datetime | None = None, end: datetime | None = None) -> list[Sale]:
    query = db.session.query(Sale)
    if start is not None:
        query = query.filter(Sale.created_at >= start)
    if end is not None:
        query = query.filter(Sale.created_at <= end)
    return query.order_by(Sale.created_at.desc(), Sale.id.desc()).all()
