# Overview: Service-layer operations for the warehouse; movement recording and the intake workflow.

"""
Movement Recording

A WarehouseMovement consumes quantity from a purchase line item and, when a
lot is attached, from that lot. Movements are append-only.

GUARD:
- quantity > remaining(line item)  -> InsufficientStockError
- quantity > remaining(lot)        -> InsufficientStockError
so derived remaining quantities never go negative. The line item row is
locked (SELECT ... FOR UPDATE) before its movements are read.

LOT SELECTION (when the caller does not name a lot), ACTIVE lots only:
- created_order  : first lot in creation order that still has stock;
                   when every lot is exhausted, the first lot
- nearest_expiry : FEFO, soonest expiry first, lots without expiry last
- explicit       : the caller must name the lot
A caller-supplied lot_id always wins, unless that lot is INACTIVE.

INTAKE WORKFLOW (receive_into_warehouse), one transaction:
1. IntakeRecord
2. WarehouseMovement of type INTAKE
3. Product.current_stock += quantity (atomic UPDATE)
4. ProductDetail rows for the scanned barcodes
5. line item status -> RECEIVED once the movement ledger leaves nothing remaining
"""

from __future__ import annotations

import logging
from datetime import datetime

from flask import current_app

from ..extensions import db
from ..models import IntakeRecord, Lot, ProductDetail, PurchaseLineItem, UnitOfMeasure, WarehouseMovement
from ..models.catalog import PRODUCT_DETAIL_AVAILABLE
from ..models.purchasing import LINE_STATUS_RECEIVED, LOT_STATUS_ACTIVE
from ..models.warehouse import MOVEMENT_INTAKE, MOVEMENT_EGRESS, MOVEMENT_TYPES
from ..validation import ValidationError, NotFoundError, InsufficientStockError, coerce_int
from .concurrency import atomic, lock_for_update
from .lot_service import normalize_expiry
from .products_service import increment_stock
from .stock_reconciliation import remaining_for_line, remaining_for_lot
from tienda.time_utils import utcnow, parse_iso_datetime, to_utc_naive

logger = logging.getLogger(__name__)

POLICY_CREATED_ORDER = "created_order"
POLICY_NEAREST_EXPIRY = "nearest_expiry"
POLICY_EXPLICIT = "explicit"
LOT_SELECTION_POLICIES = {POLICY_CREATED_ORDER, POLICY_NEAREST_EXPIRY, POLICY_EXPLICIT}

# Numeric codes used by older clients
MOVEMENT_TYPE_ALIASES = {1: MOVEMENT_INTAKE, 2: MOVEMENT_EGRESS, "1": MOVEMENT_INTAKE, "2": MOVEMENT_EGRESS}


def normalize_movement_type(value) -> str:
    if isinstance(value, (int, str)) and not isinstance(value, bool) and value in MOVEMENT_TYPE_ALIASES:
        return MOVEMENT_TYPE_ALIASES[value]
    if isinstance(value, str) and value.strip().upper() in MOVEMENT_TYPES:
        return value.strip().upper()
    raise ValidationError(f"movement_type must be one of: {', '.join(sorted(MOVEMENT_TYPES))}")


def _parse_occurred_at(value) -> datetime:
    if value is None:
        return utcnow()
    if isinstance(value, datetime):
        return to_utc_naive(value)
    if isinstance(value, str):
        try:
            dt = parse_iso_datetime(value)
        except ValueError:
            dt = None
        if dt is None:
            raise ValidationError("Invalid occurred_at format")
        return dt
    raise ValidationError("Invalid occurred_at format")


def _get_line_item(line_item_id, *, lock: bool = False) -> PurchaseLineItem:
    line_item_id = coerce_int("purchase_line_item_id", line_item_id)
    if lock:
        line = lock_for_update(db.session.query(PurchaseLineItem).filter_by(id=line_item_id)).first()
    else:
        line = db.session.get(PurchaseLineItem, line_item_id)
    if line is None:
        raise NotFoundError(f"Purchase line item {line_item_id} not found")
    return line


def _line_movements(line_item_id: int) -> list[WarehouseMovement]:
    # Read from the database, not the cached relationship
    return (
        db.session.query(WarehouseMovement)
        .filter(WarehouseMovement.purchase_line_item_id == line_item_id)
        .order_by(WarehouseMovement.id)
        .all()
    )


def _default_policy() -> str:
    return current_app.config.get("LOT_SELECTION_POLICY", POLICY_CREATED_ORDER)


def _expiry_sort_key(lot: Lot):
    return (lot.expires_at is None, lot.expires_at or datetime.max, lot.id)


def select_lot_for_movement(
    line_item: PurchaseLineItem,
    policy: str | None = None,
    *,
    lot_id: int | None = None,
    movements: list | None = None,
) -> Lot | None:
    """
    Pick the lot a movement is charged to.

    Returns None when the line item has no lots.

    Raises:
        ValidationError: unknown policy, explicit policy without lot_id,
            an inactive lot, or no active lot left to choose from
        NotFoundError: lot_id is not a lot of this line item
    """
    policy = policy or _default_policy()
    if policy not in LOT_SELECTION_POLICIES:
        raise ValidationError(f"Unknown lot selection policy {policy!r}")

    all_lots = list(line_item.lots)

    if lot_id is not None:
        for lot in all_lots:
            if lot.id == lot_id:
                if lot.status != LOT_STATUS_ACTIVE:
                    raise ValidationError(f"Lot {lot.lot_number} is {lot.status.lower()}")
                return lot
        raise NotFoundError(f"Lot {lot_id} not found on line item {line_item.id}")

    if policy == POLICY_EXPLICIT:
        raise ValidationError("lot_id is required by the explicit lot selection policy")

    if not all_lots:
        return None

    lots = [lot for lot in all_lots if lot.status == LOT_STATUS_ACTIVE]
    if not lots:
        raise ValidationError(f"Line item {line_item.id} has no active lot")

    if movements is None:
        movements = list(line_item.movements)
    with_stock = [lot for lot in lots if remaining_for_lot(lot, movements) > 0]

    if policy == POLICY_NEAREST_EXPIRY:
        candidates = with_stock or lots
        return sorted(candidates, key=_expiry_sort_key)[0]

    # created_order
    if with_stock:
        return with_stock[0]
    return lots[0]


def record_movement(
    *,
    purchase_line_item_id: int,
    quantity,
    movement_type=MOVEMENT_INTAKE,
    unit_of_measure_id: int | None = None,
    lot_id: int | None = None,
    package_count: int = 0,
    unit_count: int = 0,
    occurred_at=None,
    created_by_user_id: int | None = None,
    policy: str | None = None,
) -> WarehouseMovement:
    """
    Append a movement against a purchase line item. Flushes, does not commit.

    Raises:
        NotFoundError: unknown line item, lot or unit of measure
        ValidationError: non-positive quantity, unknown movement type
        InsufficientStockError: quantity exceeds what remains on the line item or lot
    """
    quantity = coerce_int("quantity", quantity)
    if quantity <= 0:
        raise ValidationError("quantity must be > 0")
    movement_type = normalize_movement_type(movement_type)
    package_count = coerce_int("package_count", package_count or 0)
    unit_count = coerce_int("unit_count", unit_count or 0)
    if package_count < 0 or unit_count < 0:
        raise ValidationError("package_count and unit_count must be >= 0")

    line = _get_line_item(purchase_line_item_id, lock=True)

    if unit_of_measure_id is None:
        unit_of_measure_id = current_app.config.get("DEFAULT_UNIT_OF_MEASURE_ID", 2)
    unit_of_measure_id = coerce_int("unit_of_measure_id", unit_of_measure_id)
    if db.session.get(UnitOfMeasure, unit_of_measure_id) is None:
        raise NotFoundError(f"Unit of measure {unit_of_measure_id} not found")

    if lot_id is not None:
        lot_id = coerce_int("lot_id", lot_id)

    movements = _line_movements(line.id)
    lot = select_lot_for_movement(line, policy, lot_id=lot_id, movements=movements)

    product_name = line.product.name if line.product else f"product {line.product_id}"
    line_remaining = remaining_for_line(line, movements)
    if quantity > line_remaining:
        raise InsufficientStockError(
            f"Insufficient stock on line item {line.id} ({product_name}): "
            f"{line_remaining} remaining, {quantity} requested"
        )
    if lot is not None:
        lot_remaining = remaining_for_lot(lot, movements)
        if quantity > lot_remaining:
            raise InsufficientStockError(
                f"Insufficient stock in lot {lot.lot_number} ({product_name}): "
                f"{lot_remaining} remaining, {quantity} requested"
            )

    movement = WarehouseMovement(
        line_item=line,
        product_id=line.product_id,
        lot=lot,
        package_count=package_count,
        unit_count=unit_count,
        total_quantity=quantity,
        movement_type=movement_type,
        unit_of_measure_id=unit_of_measure_id,
        occurred_at=_parse_occurred_at(occurred_at),
        created_by_user_id=created_by_user_id,
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def create_movement(**kwargs) -> WarehouseMovement:
    """record_movement() committed on its own (POST /warehouse/movements)."""
    movement = atomic(lambda: record_movement(**kwargs))
    logger.info(
        "Movement %s: %s %d on line item %s (lot %s)",
        movement.id,
        movement.movement_type,
        movement.total_quantity,
        movement.purchase_line_item_id,
        movement.lot_id,
    )
    return movement


def record_intake(*, purchase_line_item_id: int, quantity_received, received_by_user_id: int | None = None) -> IntakeRecord:
    quantity_received = coerce_int("quantity_received", quantity_received)
    if quantity_received <= 0:
        raise ValidationError("quantity_received must be > 0")
    line = _get_line_item(purchase_line_item_id)

    record = IntakeRecord(
        purchase_line_item_id=line.id,
        quantity_received=quantity_received,
        received_by_user_id=received_by_user_id,
    )
    db.session.add(record)
    db.session.commit()
    return record


def _resolve_quantity(line: PurchaseLineItem, packages, units) -> tuple[int, int, int]:
    packages = coerce_int("packages", packages or 0)
    units = coerce_int("units", units or 0)
    if packages < 0 or units < 0:
        raise ValidationError("packages and units must be >= 0")
    if packages and not line.units_per_bulk:
        raise ValidationError(f"Line item {line.id} was not bought in packages")
    total = packages * int(line.units_per_bulk or 0) + units
    if total <= 0:
        raise ValidationError("A received quantity is required")
    return packages, units, total


def receive_into_warehouse(
    *,
    purchase_line_item_id: int,
    packages=0,
    units=0,
    lot_id: int | None = None,
    unit_of_measure_id: int | None = None,
    barcodes: list | None = None,
    received_by_user_id: int | None = None,
    policy: str | None = None,
) -> dict:
    """
    Receive part of a purchase line item into sellable stock, atomically.

    Args:
        packages: number of packs received (bulk line items)
        units: loose units received
        barcodes: [{"barcode", "quantity"?, "expires_at"?}] for barcoded products

    Returns:
        {"intake_record", "movement", "line_item", "product_stock"}
    """
    line = _get_line_item(purchase_line_item_id)
    package_count, unit_count, quantity = _resolve_quantity(line, packages, units)
    barcodes = barcodes or []
    if not isinstance(barcodes, list):
        raise ValidationError("barcodes must be a list")
    strict_expiry = bool(current_app.config.get("STRICT_EXPIRY_DATES", False))

    def _op():
        record = IntakeRecord(
            line_item=line,
            quantity_received=quantity,
            received_by_user_id=received_by_user_id,
        )
        db.session.add(record)

        movement = record_movement(
            purchase_line_item_id=line.id,
            quantity=quantity,
            movement_type=MOVEMENT_INTAKE,
            unit_of_measure_id=unit_of_measure_id,
            lot_id=lot_id,
            package_count=package_count,
            unit_count=unit_count,
            created_by_user_id=received_by_user_id,
            policy=policy,
        )

        increment_stock(line.product_id, quantity)

        for entry in barcodes:
            if not isinstance(entry, dict) or not str(entry.get("barcode") or "").strip():
                raise ValidationError("Each barcode entry needs a barcode")
            detail_quantity = coerce_int("quantity", entry.get("quantity", 1))
            if detail_quantity <= 0:
                raise ValidationError("barcode quantity must be > 0")
            expires_at = normalize_expiry(entry.get("expires_at"), strict=strict_expiry)
            if expires_at is None and movement.lot is not None:
                expires_at = movement.lot.expires_at
            db.session.add(ProductDetail(
                product_id=line.product_id,
                lot_id=movement.lot_id,
                barcode=str(entry["barcode"]).strip(),
                expires_at=expires_at,
                quantity=detail_quantity,
                status=PRODUCT_DETAIL_AVAILABLE,
            ))

        db.session.flush()
        if remaining_for_line(line, _line_movements(line.id)) <= 0:
            line.status = LINE_STATUS_RECEIVED

        return record, movement

    record, movement = atomic(_op)
    db.session.refresh(line)
    logger.info(
        "Received %d unit(s) of line item %s into the warehouse (status %s)",
        quantity,
        line.id,
        line.status,
    )
    return {
        "intake_record": record.to_dict(),
        "movement": movement.to_dict(),
        "line_item": line.to_dict(include_lots=True),
        "product_stock": line.product.current_stock,
    }


def list_movements(
    *,
    purchase_line_item_id: int | None = None,
    product_id: int | None = None,
    movement_type=None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[WarehouseMovement]:
    query = db.session.query(WarehouseMovement)
    if purchase_line_item_id is not None:
        query = query.filter(WarehouseMovement.purchase_line_item_id == purchase_line_item_id)
    if product_id is not None:
        query = query.filter(WarehouseMovement.product_id == product_id)
    if movement_type is not None:
        query = query.filter(WarehouseMovement.movement_type == normalize_movement_type(movement_type))
    if start is not None:
        query = query.filter(WarehouseMovement.occurred_at >= start)
    if end is not None:
        query = query.filter(WarehouseMovement.occurred_at <= end)
    return query.order_by(WarehouseMovement.occurred_at.desc(), WarehouseMovement.id.desc()).all()


def list_intake_records(purchase_line_item_id: int | None = None) -> list[IntakeRecord]:
    query = db.session.query(IntakeRecord)
    if purchase_line_item_id is not None:
        query = query.filter(IntakeRecord.purchase_line_item_id == purchase_line_item_id)
    return query.order_by(IntakeRecord.received_at.desc(), IntakeRecord.id.desc()).all()
