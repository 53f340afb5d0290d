# Overview: Service-layer operations for purchases; creates a purchase, its line items and their lots atomically.

"""
Purchase Service

create_purchase() writes, in ONE database transaction:
1. the Purchase header
2. every PurchaseLineItem
3. the lots of each line item (see lot_service.register_lots)

A validation or conflict error on any line rolls back the whole purchase;
no partial purchase is ever persisted.

QUANTITY MODES (mutually exclusive per line):
- bulk: bulk_quantity packs x units_per_bulk units (units_per_bulk > 0)
- individual: individual_quantity units
"""

from __future__ import annotations

import logging
from datetime import datetime

from ..extensions import db
from ..models import Product, Purchase, PurchaseLineItem, UnitOfMeasure
from ..models.purchasing import LINE_STATUS_PENDING, LINE_STATUS_RECEIVED
from ..validation import ValidationError, NotFoundError, coerce_int, enforce_rules_money
from .concurrency import atomic
from .lot_service import register_lots
from tienda.time_utils import parse_iso_datetime

logger = logging.getLogger(__name__)

LINE_STATUSES = {LINE_STATUS_PENDING, LINE_STATUS_RECEIVED}

HEADER_MONEY_FIELDS = {"subtotal_cents", "discount_cents", "total_cents"}
LINE_MONEY_FIELDS = {
    "bulk_unit_price_cents",
    "bulk_discount_cents",
    "unit_price_cents",
    "individual_discount_cents",
    "subtotal_cents",
    "discount_cents",
    "total_cents",
}


def _optional_int(data: dict, key: str) -> int:
    value = data.get(key)
    if value is None:
        return 0
    return coerce_int(key, value)


def _build_line_item(purchase: Purchase, data: dict, created_by_user_id: int | None) -> PurchaseLineItem:
    if not isinstance(data, dict):
        raise ValidationError("Each purchase line must be an object")
    if data.get("product_id") is None:
        raise ValidationError("product_id is required on every purchase line")

    product_id = coerce_int("product_id", data["product_id"])
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError(f"Product {product_id} not found")
    if not product.is_active:
        raise ValidationError(f"Product {product.name!r} (id {product_id}) is inactive")

    bulk_quantity = _optional_int(data, "bulk_quantity")
    units_per_bulk = _optional_int(data, "units_per_bulk")
    individual_quantity = _optional_int(data, "individual_quantity")

    if bulk_quantity < 0 or units_per_bulk < 0 or individual_quantity < 0:
        raise ValidationError(f"Quantities for product {product_id} must be >= 0")
    if bulk_quantity and individual_quantity:
        raise ValidationError(
            f"Product {product_id}: bulk_quantity and individual_quantity are mutually exclusive"
        )
    if bulk_quantity and units_per_bulk <= 0:
        raise ValidationError(f"Product {product_id}: units_per_bulk must be > 0 when buying in bulk")
    if not bulk_quantity and not individual_quantity:
        raise ValidationError(f"Product {product_id}: a purchased quantity is required")

    bulk_unit_id = data.get("bulk_unit_of_measure_id")
    if bulk_unit_id is not None:
        bulk_unit_id = coerce_int("bulk_unit_of_measure_id", bulk_unit_id)
        if db.session.get(UnitOfMeasure, bulk_unit_id) is None:
            raise NotFoundError(f"Unit of measure {bulk_unit_id} not found")

    money = enforce_rules_money(data, LINE_MONEY_FIELDS)

    line = PurchaseLineItem(
        purchase_id=purchase.id,
        product_id=product_id,
        bulk_quantity=bulk_quantity,
        units_per_bulk=units_per_bulk,
        bulk_unit_of_measure_id=bulk_unit_id if bulk_quantity else None,
        individual_quantity=individual_quantity,
        status=LINE_STATUS_PENDING,
        created_by_user_id=created_by_user_id,
        **{key: money.get(key, 0) for key in LINE_MONEY_FIELDS},
    )
    db.session.add(line)
    db.session.flush()
    return line


def create_purchase(
    *,
    header: dict,
    lines: list,
    created_by_user_id: int | None = None,
) -> Purchase:
    """
    Create a purchase with its line items and lots atomically.

    Args:
        header: {"subtotal_cents", "discount_cents", "total_cents"}
        lines: [{"product_id", "bulk_quantity" | "individual_quantity", ..., "lots": [...]}]
        created_by_user_id: user registering the purchase

    Raises:
        ValidationError: bad header/line data, missing lots, lot quantity mismatch
        ConflictError: duplicate lot number for a product
        NotFoundError: unknown product or unit of measure
    """
    if not isinstance(header, dict):
        raise ValidationError("purchase header must be an object")
    if not isinstance(lines, list) or not lines:
        raise ValidationError("A purchase requires at least one line")

    money = enforce_rules_money(header, HEADER_MONEY_FIELDS)

    def _op():
        purchase = Purchase(
            created_by_user_id=created_by_user_id,
            **{key: money.get(key, 0) for key in HEADER_MONEY_FIELDS},
        )
        db.session.add(purchase)
        db.session.flush()

        for data in lines:
            line = _build_line_item(purchase, data, created_by_user_id)
            register_lots(line, data.get("lots"), created_by_user_id=created_by_user_id)

        return purchase

    purchase = atomic(_op)
    logger.info("Purchase %s created with %d line(s)", purchase.id, len(lines))
    return purchase


def get_purchase(purchase_id: int) -> Purchase:
    purchase = db.session.get(Purchase, purchase_id)
    if purchase is None:
        raise NotFoundError(f"Purchase {purchase_id} not found")
    return purchase


def list_purchases(start: datetime | None = None, end: datetime | None = None) -> list[Purchase]:
    """Purchase history, newest first. Range bounds are inclusive."""
    query = db.session.query(Purchase)
    if start is not None:
        query = query.filter(Purchase.created_at >= start)
    if end is not None:
        query = query.filter(Purchase.created_at <= end)
    return query.order_by(Purchase.created_at.desc(), Purchase.id.desc()).all()


def parse_range(start: str | None, end: str | None) -> tuple[datetime | None, datetime | None]:
    try:
        return parse_iso_datetime(start), parse_iso_datetime(end)
    except ValueError:
        raise ValidationError("start and end must be ISO-8601 datetimes")


def get_line_item(line_item_id: int) -> PurchaseLineItem:
    line = db.session.get(PurchaseLineItem, line_item_id)
    if line is None:
        raise NotFoundError(f"Purchase line item {line_item_id} not found")
    return line


def list_pending_line_items() -> list[PurchaseLineItem]:
    """Line items not yet fully received: the warehouse intake work list."""
    return (
        db.session.query(PurchaseLineItem)
        .filter(PurchaseLineItem.status == LINE_STATUS_PENDING)
        .order_by(PurchaseLineItem.created_at.asc(), PurchaseLineItem.id.asc())
        .all()
    )


def set_line_item_status(line_item_id: int, status: str) -> PurchaseLineItem:
    if status not in LINE_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(sorted(LINE_STATUSES))}")
    line = get_line_item(line_item_id)
    line.status = status
    db.session.commit()
    return line
