from __future__ import annotations

from ..extensions import db
from tienda.time_utils import to_utc_z


MOVEMENT_INTAKE = "INTAKE"
MOVEMENT_EGRESS = "EGRESS"
MOVEMENT_TYPES = {MOVEMENT_INTAKE, MOVEMENT_EGRESS}


class IntakeRecord(db.Model):
    """Confirmation that part of a purchase line item physically arrived."""
    __tablename__ = "intake_records"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    purchase_line_item_id = db.Column(
        db.Integer, db.ForeignKey("purchase_line_items.id"), nullable=False, index=True
    )
    quantity_received = db.Column(db.Integer, nullable=False)
    received_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    received_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    line_item = db.relationship("PurchaseLineItem", back_populates="intake_records")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "purchase_line_item_id": self.purchase_line_item_id,
            "quantity_received": self.quantity_received,
            "received_by_user_id": self.received_by_user_id,
            "received_at": to_utc_z(self.received_at),
        }


class WarehouseMovement(db.Model):
    """
    Append-only warehouse ledger entry against a purchase line item.

    INTAKE moves stock from the warehouse into sellable stock; EGRESS takes it
    out of the warehouse without reaching the shelf (loss, write-off). Both
    consume what remains of the line item and, when set, of the lot.
    """
    __tablename__ = "warehouse_movements"
    __table_args__ = (
        db.CheckConstraint("total_quantity > 0", name="ck_movements_total_quantity_positive"),
        db.Index("ix_movements_line_item_occurred", "purchase_line_item_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    purchase_line_item_id = db.Column(
        db.Integer, db.ForeignKey("purchase_line_items.id"), nullable=False, index=True
    )
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    lot_id = db.Column(db.Integer, db.ForeignKey("lots.id"), nullable=True, index=True)

    package_count = db.Column(db.Integer, nullable=False, default=0)
    unit_count = db.Column(db.Integer, nullable=False, default=0)
    total_quantity = db.Column(db.Integer, nullable=False)
    movement_type = db.Column(db.String(16), nullable=False, default=MOVEMENT_INTAKE, index=True)
    unit_of_measure_id = db.Column(db.Integer, db.ForeignKey("units_of_measure.id"), nullable=False)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    line_item = db.relationship("PurchaseLineItem", back_populates="movements")
    lot = db.relationship("Lot")
    product = db.relationship("Product")
    unit_of_measure = db.relationship("UnitOfMeasure")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "purchase_line_item_id": self.purchase_line_item_id,
            "product_id": self.product_id,
            "lot_id": self.lot_id,
            "lot_number": self.lot.lot_number if self.lot else None,
            "package_count": self.package_count,
            "unit_count": self.unit_count,
            "total_quantity": self.total_quantity,
            "movement_type": self.movement_type,
            "unit_of_measure_id": self.unit_of_measure_id,
            "unit_of_measure": self.unit_of_measure.name if self.unit_of_measure else None,
            "occurred_at": to_utc_z(self.occurred_at),
            "created_by_user_id": self.created_by_user_id,
        }
