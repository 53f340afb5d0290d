from __future__ import annotations

from ..extensions import db
from tienda.time_utils import to_utc_z


LINE_STATUS_PENDING = "PENDING"
LINE_STATUS_RECEIVED = "RECEIVED"

LOT_STATUS_ACTIVE = "ACTIVE"
LOT_STATUS_INACTIVE = "INACTIVE"


class Purchase(db.Model):
    __tablename__ = "purchases"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    lines = db.relationship(
        "PurchaseLineItem",
        back_populates="purchase",
        order_by="PurchaseLineItem.id",
        lazy=True,
    )

    def to_dict(self, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "total_cents": self.total_cents,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
        if include_lines:
            data["lines"] = [line.to_dict(include_lots=True) for line in self.lines]
        return data


class PurchaseLineItem(db.Model):
    """
    One product row of a purchase.

    Quantity is expressed EITHER in bulk mode (bulk_quantity packs of
    units_per_bulk units each) OR as individual_quantity units, never both.
    The lots of a line item always add up to its total purchased quantity.
    """
    __tablename__ = "purchase_line_items"
    __table_args__ = (
        db.Index("ix_purchase_line_items_product_status", "product_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    purchase_id = db.Column(db.Integer, db.ForeignKey("purchases.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    bulk_quantity = db.Column(db.Integer, nullable=False, default=0)
    units_per_bulk = db.Column(db.Integer, nullable=False, default=0)
    bulk_unit_of_measure_id = db.Column(db.Integer, db.ForeignKey("units_of_measure.id"), nullable=True)
    bulk_unit_price_cents = db.Column(db.Integer, nullable=False, default=0)
    bulk_discount_cents = db.Column(db.Integer, nullable=False, default=0)

    individual_quantity = db.Column(db.Integer, nullable=False, default=0)
    unit_price_cents = db.Column(db.Integer, nullable=False, default=0)
    individual_discount_cents = db.Column(db.Integer, nullable=False, default=0)

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default=LINE_STATUS_PENDING, index=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    purchase = db.relationship("Purchase", back_populates="lines")
    product = db.relationship("Product")
    bulk_unit_of_measure = db.relationship("UnitOfMeasure")
    lots = db.relationship("Lot", back_populates="line_item", order_by="Lot.id", lazy=True)
    movements = db.relationship(
        "WarehouseMovement",
        back_populates="line_item",
        order_by="WarehouseMovement.occurred_at, WarehouseMovement.id",
        lazy=True,
    )
    intake_records = db.relationship("IntakeRecord", back_populates="line_item", lazy=True)

    @property
    def is_bulk(self) -> bool:
        return bool(self.bulk_quantity)

    def to_dict(self, include_lots: bool = False) -> dict:
        from tienda.services.stock_reconciliation import total_purchased

        data = {
            "id": self.id,
            "purchase_id": self.purchase_id,
            "product_id": self.product_id,
            "product": self.product.name if self.product else None,
            "bulk_quantity": self.bulk_quantity,
            "units_per_bulk": self.units_per_bulk,
            "bulk_unit_of_measure_id": self.bulk_unit_of_measure_id,
            "bulk_unit_price_cents": self.bulk_unit_price_cents,
            "bulk_discount_cents": self.bulk_discount_cents,
            "individual_quantity": self.individual_quantity,
            "unit_price_cents": self.unit_price_cents,
            "individual_discount_cents": self.individual_discount_cents,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "total_cents": self.total_cents,
            "total_quantity": total_purchased(self),
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
        }
        if include_lots:
            data["lots"] = [lot.to_dict() for lot in self.lots]
        return data


class Lot(db.Model):
    """
    A named batch of a product received in one purchase line item.

    LIFECYCLE: created once together with its line item, never split or
    merged. status flips to INACTIVE only by administrative action, never on
    depletion. Remaining quantity is derived from movements, not stored.

    product_id duplicates line_item.product_id so the database can enforce
    lot-number uniqueness per product across all of its line items.
    """
    __tablename__ = "lots"
    __table_args__ = (
        db.UniqueConstraint("product_id", "lot_number", name="uq_lots_product_lot_number"),
        db.CheckConstraint("initial_quantity > 0", name="ck_lots_initial_quantity_positive"),
        db.Index("ix_lots_expires_at", "expires_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    purchase_line_item_id = db.Column(
        db.Integer, db.ForeignKey("purchase_line_items.id"), nullable=False, index=True
    )
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    lot_number = db.Column(db.String(64), nullable=False)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True)
    initial_quantity = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(16), nullable=False, default=LOT_STATUS_ACTIVE)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    line_item = db.relationship("PurchaseLineItem", back_populates="lots")
    product = db.relationship("Product")

    def __repr__(self) -> str:
        return f"<Lot id={self.id} lot_number={self.lot_number!r} product_id={self.product_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "purchase_line_item_id": self.purchase_line_item_id,
            "product_id": self.product_id,
            "lot_number": self.lot_number,
            "expires_at": to_utc_z(self.expires_at),
            "initial_quantity": self.initial_quantity,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
        }
