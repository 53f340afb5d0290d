from __future__ import annotations

from ..extensions import db
from tienda.time_utils import to_utc_z


class Category(db.Model):
    __tablename__ = "categories"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False, unique=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "is_active": self.is_active}


class Supplier(db.Model):
    __tablename__ = "suppliers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False, unique=True)
    phone = db.Column(db.String(32), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "email": self.email,
            "is_active": self.is_active,
        }


class UnitOfMeasure(db.Model):
    """
    Units a quantity can be expressed in ("Unidad", "Caja", "Paquete", ...).

    The unit configured as DEFAULT_UNIT_OF_MEASURE_ID is used by write paths
    that do not name a unit.
    """
    __tablename__ = "units_of_measure"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(64), nullable=False, unique=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "is_active": self.is_active}


class Product(db.Model):
    """
    Product master data.

    STOCK FIELDS:
    - current_stock: shelf stock counter. Incremented by warehouse intake and
      decremented by sales, always through single UPDATE statements.
    - reorder_threshold: level below which replenishment is recommended.
    These used to share one column; they are deliberately separate.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("current_stock >= 0", name="ck_products_current_stock_nonneg"),
        db.Index("ix_products_category_active", "category_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False, index=True)
    description = db.Column(db.Text, nullable=True)

    sale_price_cents = db.Column(db.Integer, nullable=False, default=0)
    current_stock = db.Column(db.Integer, nullable=False, default=0)
    reorder_threshold = db.Column(db.Integer, nullable=False, default=0)

    unit_of_measure_id = db.Column(db.Integer, db.ForeignKey("units_of_measure.id"), nullable=True)
    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=True)

    has_barcode = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    updated_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    unit_of_measure = db.relationship("UnitOfMeasure")
    category = db.relationship("Category", backref=db.backref("products", lazy=True))
    supplier = db.relationship("Supplier", backref=db.backref("products", lazy=True))

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} stock={self.current_stock}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "sale_price_cents": self.sale_price_cents,
            "current_stock": self.current_stock,
            "reorder_threshold": self.reorder_threshold,
            "unit_of_measure_id": self.unit_of_measure_id,
            "unit_of_measure": self.unit_of_measure.name if self.unit_of_measure else None,
            "category_id": self.category_id,
            "category": self.category.name if self.category else None,
            "supplier_id": self.supplier_id,
            "supplier": self.supplier.name if self.supplier else None,
            "has_barcode": self.has_barcode,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


PRODUCT_DETAIL_AVAILABLE = "AVAILABLE"
PRODUCT_DETAIL_SOLD = "SOLD"


class ProductDetail(db.Model):
    """
    One barcoded unit (or pack) of a product, created at warehouse intake and
    marked SOLD by the sale that consumes it.
    """
    __tablename__ = "product_details"
    __table_args__ = (
        db.Index("ix_product_details_product_barcode", "product_id", "barcode"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    lot_id = db.Column(db.Integer, db.ForeignKey("lots.id"), nullable=True)
    barcode = db.Column(db.String(128), nullable=False, index=True)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    status = db.Column(db.String(16), nullable=False, default=PRODUCT_DETAIL_AVAILABLE, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", backref=db.backref("details", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "lot_id": self.lot_id,
            "barcode": self.barcode,
            "expires_at": to_utc_z(self.expires_at),
            "quantity": self.quantity,
            "status": self.status,
        }
