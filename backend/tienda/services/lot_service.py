# Overview: Service-layer operations for lots; batch registration at purchase time.

"""
Batch Registration

A purchase line item's quantity is split into one or more named lots.

INVARIANTS (checked before any lot row is written):
- at least one lot per line item
- SUM(lot quantity) == total purchased quantity of the line item
- lot_number is unique per product, across every line item of that product.
  The pre-check gives a readable error; the uq_lots_product_lot_number
  constraint closes the race between concurrent purchases.

Expiry dates:
- empty / null means "no expiry"
- lenient mode (default): unparseable or epoch-zero dates are stored as
  "no expiry" and logged
- strict mode (STRICT_EXPIRY_DATES): the same input raises ValidationError

register_lots() never commits; it runs inside the purchase transaction.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Lot, Product, PurchaseLineItem
from ..models.purchasing import LOT_STATUS_ACTIVE, LOT_STATUS_INACTIVE
from ..validation import ValidationError, ConflictError, NotFoundError, coerce_int
from .stock_reconciliation import total_purchased
from tienda.time_utils import parse_iso_datetime, to_utc_naive, is_epoch_zero

logger = logging.getLogger(__name__)

LOT_STATUSES = {LOT_STATUS_ACTIVE, LOT_STATUS_INACTIVE}
MAX_LOT_NUMBER_LENGTH = 64


def _product_label(product_id: int) -> str:
    product = db.session.get(Product, product_id)
    if product is None:
        return f"product {product_id}"
    return f"product {product.name!r} (id {product_id})"


def _invalid_expiry(value, strict: bool, reason: str):
    if strict:
        raise ValidationError(f"Invalid expiry date {value!r}: {reason}")
    logger.warning("Discarding expiry date %r (%s); stored without expiry", value, reason)
    return None


def normalize_expiry(value, *, strict: bool = False) -> datetime | None:
    """
    Normalize a caller-supplied expiry date to a UTC-naive datetime or None.

    Accepts datetimes, ISO-8601 strings and epoch milliseconds.
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        dt = to_utc_naive(value)
    elif isinstance(value, str):
        if not value.strip():
            return None
        try:
            dt = parse_iso_datetime(value)
        except ValueError:
            return _invalid_expiry(value, strict, "not an ISO-8601 date")
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            dt = datetime.fromtimestamp(value / 1000, tz=timezone.utc).replace(tzinfo=None)
        except (OverflowError, OSError, ValueError):
            return _invalid_expiry(value, strict, "timestamp out of range")
    else:
        return _invalid_expiry(value, strict, "unsupported type")

    if is_epoch_zero(dt):
        return _invalid_expiry(value, strict, "epoch zero")
    return dt


def _parse_lot_entries(entries, strict: bool) -> list[dict]:
    if not isinstance(entries, list):
        raise ValidationError("lots must be a list")

    parsed = []
    for index, entry in enumerate(entries, start=1):
        if not isinstance(entry, dict):
            raise ValidationError(f"lot #{index} must be an object")

        lot_number = str(entry.get("lot_number") or "").strip()
        if not lot_number:
            raise ValidationError(f"lot #{index}: lot_number is required")
        if len(lot_number) > MAX_LOT_NUMBER_LENGTH:
            raise ValidationError(f"lot #{index}: lot_number exceeds max length {MAX_LOT_NUMBER_LENGTH}")

        if entry.get("quantity") is None:
            raise ValidationError(f"lot #{index}: quantity is required")
        quantity = coerce_int("quantity", entry["quantity"])
        if quantity <= 0:
            raise ValidationError(f"lot #{index}: quantity must be > 0")

        parsed.append({
            "lot_number": lot_number,
            "quantity": quantity,
            "expires_at": normalize_expiry(entry.get("expires_at"), strict=strict),
        })
    return parsed


def register_lots(
    line_item: PurchaseLineItem,
    lots,
    *,
    created_by_user_id: int | None = None,
    strict_expiry: bool | None = None,
) -> list[Lot]:
    """
    Validate and create the lots of a freshly flushed purchase line item.

    Raises:
        ValidationError: empty list, bad entry, or quantities not summing to the purchased total
        ConflictError: a lot number already used for the same product
    """
    if strict_expiry is None:
        strict_expiry = bool(current_app.config.get("STRICT_EXPIRY_DATES", False))

    label = _product_label(line_item.product_id)

    if not lots:
        raise ValidationError(f"At least one lot is required for {label}")

    entries = _parse_lot_entries(lots, strict_expiry)

    expected = total_purchased(line_item)
    allocated = sum(e["quantity"] for e in entries)
    if allocated != expected:
        raise ValidationError(
            f"Lot quantities for {label} add up to {allocated} but {expected} units were purchased"
        )

    numbers = [e["lot_number"] for e in entries]
    repeated = sorted({n for n in numbers if numbers.count(n) > 1})
    if repeated:
        raise ConflictError(f"Lot numbers repeated for {label}: {', '.join(repeated)}")

    existing = db.session.query(Lot.lot_number).filter(
        Lot.product_id == line_item.product_id,
        Lot.lot_number.in_(numbers),
    ).all()
    if existing:
        taken = sorted(row.lot_number for row in existing)
        raise ConflictError(f"Lot numbers already exist for {label}: {', '.join(taken)}")

    created = []
    for entry in entries:
        lot = Lot(
            line_item=line_item,
            product_id=line_item.product_id,
            lot_number=entry["lot_number"],
            expires_at=entry["expires_at"],
            initial_quantity=entry["quantity"],
            status=LOT_STATUS_ACTIVE,
            created_by_user_id=created_by_user_id,
        )
        db.session.add(lot)
        created.append(lot)

    try:
        db.session.flush()
    except IntegrityError:
        raise ConflictError(f"Lot numbers already exist for {label}: {', '.join(numbers)}")

    return created


def list_lots_for_product(product_id: int) -> list[Lot]:
    """All lots of a product, soonest expiry first, lots without expiry last."""
    if db.session.get(Product, product_id) is None:
        raise NotFoundError(f"Product {product_id} not found")

    return (
        db.session.query(Lot)
        .filter(Lot.product_id == product_id)
        .order_by(Lot.expires_at.is_(None), Lot.expires_at.asc(), Lot.id.asc())
        .all()
    )


def get_lot(lot_id: int) -> Lot:
    lot = db.session.get(Lot, lot_id)
    if lot is None:
        raise NotFoundError(f"Lot {lot_id} not found")
    return lot


def set_lot_status(lot_id: int, status: str) -> Lot:
    """Administrative activate / deactivate. Depletion never changes status."""
    if status not in LOT_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(sorted(LOT_STATUSES))}")

    lot = get_lot(lot_id)
    lot.status = status
    db.session.commit()
    logger.info("Lot %s (%s) set to %s", lot.id, lot.lot_number, status)
    return lot
