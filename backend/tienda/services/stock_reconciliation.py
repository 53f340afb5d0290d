# Overview: Read-side stock projections over purchase line items, lots and warehouse movements.

"""
Stock Reconciliation (authoritative)

Pure functions: no database access, no hidden clock. Inputs are any objects
carrying the model attribute names (ORM rows in production, simple objects in
tests); outputs are frozen dataclasses. Calling any function twice with the
same inputs and the same `now` yields equal results.

Definitions:
- total purchased of a line item = bulk_quantity * units_per_bulk in bulk
  mode, individual_quantity otherwise.
- total moved = SUM(total_quantity) over every movement of the line item,
  whatever its type.
- remaining (line item) = total purchased - total moved.
- remaining (lot) = initial_quantity - SUM(total_quantity of movements whose
  lot_id is the lot).
- days until expiry = ceil((expires_at - now) / 1 day).
- expiry bucket: expired when days <= 0, near_expiry when
  0 < days <= warning_days, normal otherwise. A lot without expires_at is
  always normal: it never expires.

Empty input never raises: a product without purchases has zero stock, no
lots and no alerts.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional, Sequence

from tienda.time_utils import ceil_days_between, to_utc_z

EXPIRY_EXPIRED = "expired"
EXPIRY_NEAR = "near_expiry"
EXPIRY_NORMAL = "normal"

DEFAULT_WARNING_DAYS = 30


@dataclass(frozen=True)
class LotStock:
    lot_id: int
    lot_number: str
    expires_at: Optional[datetime]
    initial_quantity: int
    used: int
    remaining: int
    status: str
    expiry_status: str
    days_until_expiry: Optional[int]

    def to_dict(self) -> dict:
        return {
            "id": self.lot_id,
            "lot_number": self.lot_number,
            "expires_at": to_utc_z(self.expires_at),
            "initial_quantity": self.initial_quantity,
            "used_quantity": self.used,
            "remaining_quantity": self.remaining,
            "status": self.status,
            "expiry_status": self.expiry_status,
            "days_until_expiry": self.days_until_expiry,
        }


@dataclass(frozen=True)
class LineItemStock:
    line_item_id: int
    product_id: int
    units_per_package: int
    total_purchased: int
    total_moved: int
    remaining: int
    lots: tuple[LotStock, ...] = field(default_factory=tuple)

    @property
    def remaining_packages(self) -> int:
        return self.remaining // self.units_per_package

    @property
    def remaining_units(self) -> int:
        return self.remaining % self.units_per_package

    @property
    def active_lots(self) -> tuple[LotStock, ...]:
        return tuple(lot for lot in self.lots if lot.remaining > 0)

    def to_dict(self) -> dict:
        return {
            "line_item_id": self.line_item_id,
            "product_id": self.product_id,
            "units_per_package": self.units_per_package,
            "total_purchased": self.total_purchased,
            "total_moved": self.total_moved,
            "remaining": {
                "packages": self.remaining_packages,
                "units": self.remaining_units,
                "total": self.remaining,
                "lots": [lot.to_dict() for lot in self.active_lots],
            },
            "lots": [lot.to_dict() for lot in self.lots],
        }


@dataclass(frozen=True)
class ProductStock:
    product_id: int
    name: str
    total_in: int
    total_out: int
    current_stock: int
    reorder_threshold: int
    lots: tuple[LotStock, ...] = field(default_factory=tuple)

    @property
    def warehouse_stock(self) -> int:
        return self.total_in - self.total_out

    @property
    def below_reorder_point(self) -> bool:
        return self.warehouse_stock < self.reorder_threshold

    @property
    def shortfall(self) -> int:
        return self.reorder_threshold - self.warehouse_stock if self.below_reorder_point else 0

    @property
    def expiring_lots(self) -> tuple[LotStock, ...]:
        return tuple(
            lot for lot in self.lots
            if lot.remaining > 0 and lot.expiry_status in (EXPIRY_NEAR, EXPIRY_EXPIRED)
        )

    def count_lots(self, expiry_status: str) -> int:
        return sum(1 for lot in self.lots if lot.remaining > 0 and lot.expiry_status == expiry_status)

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "name": self.name,
            "stock": {
                "total_in": self.total_in,
                "total_out": self.total_out,
                "warehouse_stock": self.warehouse_stock,
                "current_stock": self.current_stock,
            },
            "reorder_threshold": self.reorder_threshold,
            "below_reorder_point": self.below_reorder_point,
            "alerts": {
                "below_reorder_point": self.below_reorder_point,
                "shortfall": self.shortfall,
                "near_expiry_lots": self.count_lots(EXPIRY_NEAR),
                "expired_lots": self.count_lots(EXPIRY_EXPIRED),
                "expiring": [lot.to_dict() for lot in self.expiring_lots],
            },
        }


def total_purchased(line) -> int:
    if line.bulk_quantity:
        return int(line.bulk_quantity) * int(line.units_per_bulk or 0)
    return int(line.individual_quantity or 0)


def total_moved(movements: Iterable) -> int:
    return sum(int(m.total_quantity) for m in movements)


def remaining_for_line(line, movements: Iterable | None = None) -> int:
    if movements is None:
        movements = line.movements
    return total_purchased(line) - total_moved(movements)


def used_for_lot(lot, movements: Iterable) -> int:
    return sum(int(m.total_quantity) for m in movements if m.lot_id == lot.id)


def remaining_for_lot(lot, movements: Iterable) -> int:
    return int(lot.initial_quantity) - used_for_lot(lot, movements)


def days_until_expiry(expires_at: Optional[datetime], now: datetime) -> Optional[int]:
    if expires_at is None:
        return None
    return ceil_days_between(now, expires_at)


def classify_expiry(
    expires_at: Optional[datetime],
    now: datetime,
    warning_days: int = DEFAULT_WARNING_DAYS,
) -> str:
    days = days_until_expiry(expires_at, now)
    if days is None:
        return EXPIRY_NORMAL
    if days <= 0:
        return EXPIRY_EXPIRED
    if days <= warning_days:
        return EXPIRY_NEAR
    return EXPIRY_NORMAL


def reconcile_lot(lot, movements: Sequence, now: datetime, warning_days: int = DEFAULT_WARNING_DAYS) -> LotStock:
    used = used_for_lot(lot, movements)
    return LotStock(
        lot_id=lot.id,
        lot_number=lot.lot_number,
        expires_at=lot.expires_at,
        initial_quantity=int(lot.initial_quantity),
        used=used,
        remaining=int(lot.initial_quantity) - used,
        status=lot.status,
        expiry_status=classify_expiry(lot.expires_at, now, warning_days),
        days_until_expiry=days_until_expiry(lot.expires_at, now),
    )


def reconcile_line_item(
    line,
    now: datetime,
    *,
    lots: Sequence | None = None,
    movements: Sequence | None = None,
    warning_days: int = DEFAULT_WARNING_DAYS,
) -> LineItemStock:
    lots = list(line.lots if lots is None else lots)
    movements = list(line.movements if movements is None else movements)

    purchased = total_purchased(line)
    moved = total_moved(movements)
    return LineItemStock(
        line_item_id=line.id,
        product_id=line.product_id,
        units_per_package=int(line.units_per_bulk or 1),
        total_purchased=purchased,
        total_moved=moved,
        remaining=purchased - moved,
        lots=tuple(reconcile_lot(lot, movements, now, warning_days) for lot in lots),
    )


def reconcile_product(
    product,
    line_items: Sequence,
    now: datetime,
    warning_days: int = DEFAULT_WARNING_DAYS,
) -> ProductStock:
    line_stocks = [reconcile_line_item(line, now, warning_days=warning_days) for line in line_items]
    lots: list[LotStock] = []
    for ls in line_stocks:
        lots.extend(ls.lots)

    return ProductStock(
        product_id=product.id,
        name=product.name,
        total_in=sum(ls.total_purchased for ls in line_stocks),
        total_out=sum(ls.total_moved for ls in line_stocks),
        current_stock=int(product.current_stock or 0),
        reorder_threshold=int(product.reorder_threshold or 0),
        lots=tuple(lots),
    )


def summarize_products(products: Sequence[ProductStock]) -> dict:
    return {
        "total_products": len(products),
        "below_reorder_point": sum(1 for p in products if p.below_reorder_point),
        "with_expiry_alerts": sum(1 for p in products if p.expiring_lots),
        "without_stock": sum(1 for p in products if p.warehouse_stock == 0),
        "near_expiry_lots": sum(p.count_lots(EXPIRY_NEAR) for p in products),
        "expired_lots": sum(p.count_lots(EXPIRY_EXPIRED) for p in products),
    }


def summarize_line_items(line_stocks: Sequence[LineItemStock]) -> dict:
    active = [lot for ls in line_stocks for lot in ls.active_lots]
    return {
        "total_products": len({ls.product_id for ls in line_stocks}),
        "total_ingress": sum(ls.total_purchased for ls in line_stocks),
        "total_egress": sum(ls.total_moved for ls in line_stocks),
        "line_items_with_movements": sum(1 for ls in line_stocks if ls.total_moved > 0),
        "line_items_without_stock": sum(1 for ls in line_stocks if ls.remaining == 0),
        "near_expiry_lots": sum(1 for lot in active if lot.expiry_status == EXPIRY_NEAR),
        "expired_lots": sum(1 for lot in active if lot.expiry_status == EXPIRY_EXPIRED),
    }
