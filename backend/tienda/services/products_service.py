# backend/tienda/services/products_service.py
"""
Products Service

STOCK COUNTER:
- Product.current_stock is a denormalised shelf counter.
- It is ONLY changed through single UPDATE statements
  (current_stock = current_stock +/- n); never read-modify-write in Python.
- decrement_stock() carries the guard in the WHERE clause, so two concurrent
  sales can never drive the counter below zero.

DRIFT:
- find_stock_drift() recomputes the counter from the ledger
  (INTAKE movements in, sale lines out) and reports disagreements.
"""
from __future__ import annotations

import logging

from sqlalchemy import func, update

from ..extensions import db
from ..models import Category, Product, ProductDetail, SaleLine, Supplier, UnitOfMeasure, WarehouseMovement
from ..models.catalog import PRODUCT_DETAIL_AVAILABLE
from ..models.warehouse import MOVEMENT_INTAKE
from ..validation import (
    ValidationError,
    NotFoundError,
    ConflictError,
    InsufficientStockError,
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_product,
)

logger = logging.getLogger(__name__)

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "name",
        "description",
        "sale_price_cents",
        "reorder_threshold",
        "unit_of_measure_id",
        "category_id",
        "supplier_id",
        "has_barcode",
        "is_active",
    },
    required_on_create={"name"},
)

CATEGORY_POLICY = ModelValidationPolicy(writable_fields={"name", "is_active"}, required_on_create={"name"})
SUPPLIER_POLICY = ModelValidationPolicy(
    writable_fields={"name", "phone", "email", "is_active"},
    required_on_create={"name"},
)
UNIT_POLICY = ModelValidationPolicy(writable_fields={"name", "is_active"}, required_on_create={"name"})


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError(f"Product {product_id} not found")
    return product


def _check_references(patch: dict) -> None:
    for key, model in (
        ("unit_of_measure_id", UnitOfMeasure),
        ("category_id", Category),
        ("supplier_id", Supplier),
    ):
        ref_id = patch.get(key)
        if ref_id is not None and db.session.get(model, ref_id) is None:
            raise NotFoundError(f"{key} {ref_id} not found")


def name_exists(name: str, *, exclude_id: int | None = None) -> bool:
    """Case-insensitive product name check used by the catalog form."""
    query = db.session.query(Product.id).filter(func.lower(Product.name) == name.strip().lower())
    if exclude_id is not None:
        query = query.filter(Product.id != exclude_id)
    return query.first() is not None


def list_products(
    *,
    search: str | None = None,
    category_id: int | None = None,
    active_only: bool = False,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    """
    Product listing with optional search and pagination.

    Returns:
        Dict with 'items', 'count', and pagination metadata if paginated.
    """
    base_query = db.session.query(Product)
    if search:
        base_query = base_query.filter(Product.name.ilike(f"%{search.strip()}%"))
    if category_id is not None:
        base_query = base_query.filter(Product.category_id == category_id)
    if active_only:
        base_query = base_query.filter(Product.is_active.is_(True))
    base_query = base_query.order_by(Product.name.asc(), Product.id.asc())

    if page is None:
        products = base_query.all()
        return {"items": [p.to_dict() for p in products], "count": len(products)}

    per_page = min(per_page or 20, 100)
    page = max(page, 1)

    total = base_query.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1
    products = base_query.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [p.to_dict() for p in products],
        "count": len(products),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


def create_product(payload: dict, *, user_id: int | None = None) -> Product:
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
    enforce_rules_product(patch)
    _check_references(patch)

    if name_exists(patch["name"]):
        raise ConflictError(f"A product named {patch['name']!r} already exists")

    product = Product(**patch, created_by_user_id=user_id, updated_by_user_id=user_id)
    db.session.add(product)
    db.session.commit()
    logger.info("Product %s created: %s", product.id, product.name)
    return product


def update_product(product_id: int, payload: dict, *, user_id: int | None = None) -> Product:
    product = get_product(product_id)
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
    enforce_rules_product(patch)
    _check_references(patch)

    if "name" in patch and name_exists(patch["name"], exclude_id=product_id):
        raise ConflictError(f"A product named {patch['name']!r} already exists")

    for key, value in patch.items():
        setattr(product, key, value)
    product.updated_by_user_id = user_id
    db.session.commit()
    return product


# ---------------------------------------------------------------------------
# Stock counter
# ---------------------------------------------------------------------------

def increment_stock(product_id: int, quantity: int) -> None:
    """Atomic counter increment. Does not commit."""
    if quantity <= 0:
        raise ValidationError("increment must be > 0")
    result = db.session.execute(
        update(Product)
        .where(Product.id == product_id)
        .values(current_stock=Product.current_stock + quantity)
    )
    if result.rowcount == 0:
        raise NotFoundError(f"Product {product_id} not found")


def decrement_stock(product_id: int, quantity: int) -> None:
    """
    Atomic guarded decrement. Does not commit.

    Raises:
        InsufficientStockError: current_stock < quantity
    """
    if quantity <= 0:
        raise ValidationError("decrement must be > 0")
    result = db.session.execute(
        update(Product)
        .where(Product.id == product_id, Product.current_stock >= quantity)
        .values(current_stock=Product.current_stock - quantity)
    )
    if result.rowcount == 0:
        product = get_product(product_id)
        raise InsufficientStockError(
            f"Insufficient stock for {product.name!r}: {product.current_stock} available, {quantity} requested"
        )


def set_stock(product_id: int, quantity: int) -> None:
    """Manual stock correction. Does not commit."""
    if quantity < 0:
        raise ValidationError("set must be >= 0")
    result = db.session.execute(
        update(Product).where(Product.id == product_id).values(current_stock=quantity)
    )
    if result.rowcount == 0:
        raise NotFoundError(f"Product {product_id} not found")


def apply_stock_operation(product_id: int, op: str, amount: int) -> Product:
    """PATCH /products/<id>/stock: one of increment / decrement / set, committed."""
    operations = {"increment": increment_stock, "decrement": decrement_stock, "set": set_stock}
    try:
        operations[op](product_id, amount)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    product = get_product(product_id)
    db.session.refresh(product)
    logger.info("Stock %s %d on product %s -> %d", op, amount, product_id, product.current_stock)
    return product


def find_stock_drift() -> list[dict]:
    """
    Compare every product's counter with what the ledger says it should be.

    expected = SUM(INTAKE movements) - SUM(sale line quantities)

    Returns only the products that disagree.
    """
    intake = dict(
        db.session.query(WarehouseMovement.product_id, func.coalesce(func.sum(WarehouseMovement.total_quantity), 0))
        .filter(WarehouseMovement.movement_type == MOVEMENT_INTAKE)
        .group_by(WarehouseMovement.product_id)
        .all()
    )
    sold = dict(
        db.session.query(SaleLine.product_id, func.coalesce(func.sum(SaleLine.quantity), 0))
        .group_by(SaleLine.product_id)
        .all()
    )

    drift = []
    for product in db.session.query(Product).order_by(Product.id.asc()).all():
        expected = int(intake.get(product.id, 0)) - int(sold.get(product.id, 0))
        if expected != product.current_stock:
            drift.append({
                "product_id": product.id,
                "name": product.name,
                "current_stock": product.current_stock,
                "expected_stock": expected,
                "difference": product.current_stock - expected,
            })

    if drift:
        logger.warning("Stock drift detected on %d product(s)", len(drift))
    return drift


# ---------------------------------------------------------------------------
# Catalog lookups
# ---------------------------------------------------------------------------

def sale_catalog(search: str | None = None) -> list[dict]:
    """Active products with stock, as shown at the point of sale."""
    query = db.session.query(Product).filter(Product.is_active.is_(True), Product.current_stock > 0)
    if search:
        query = query.filter(Product.name.ilike(f"%{search.strip()}%"))
    return [p.to_dict() for p in query.order_by(Product.name.asc()).all()]


def find_by_barcode(barcode: str) -> ProductDetail:
    """The available barcoded unit for barcode; sold units are never returned."""
    detail = (
        db.session.query(ProductDetail)
        .filter(ProductDetail.barcode == barcode, ProductDetail.status == PRODUCT_DETAIL_AVAILABLE)
        .order_by(ProductDetail.id.asc())
        .first()
    )
    if detail is None:
        raise NotFoundError(f"No available product with barcode {barcode!r}")
    return detail


def _list_lookup(model) -> list:
    return db.session.query(model).order_by(model.name.asc()).all()


def _create_lookup(model, policy: ModelValidationPolicy, payload: dict):
    patch = validate_payload(model=model, payload=payload, policy=policy, partial=False)
    exists = db.session.query(model.id).filter(func.lower(model.name) == patch["name"].lower()).first()
    if exists:
        raise ConflictError(f"{model.__name__} {patch['name']!r} already exists")
    row = model(**patch)
    db.session.add(row)
    db.session.commit()
    return row


def list_categories() -> list[Category]:
    return _list_lookup(Category)


def create_category(payload: dict) -> Category:
    return _create_lookup(Category, CATEGORY_POLICY, payload)


def list_suppliers() -> list[Supplier]:
    return _list_lookup(Supplier)


def create_supplier(payload: dict) -> Supplier:
    return _create_lookup(Supplier, SUPPLIER_POLICY, payload)


def list_units() -> list[UnitOfMeasure]:
    return _list_lookup(UnitOfMeasure)


def create_unit(payload: dict) -> UnitOfMeasure:
    return _create_lookup(UnitOfMeasure, UNIT_POLICY, payload)
