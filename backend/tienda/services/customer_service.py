# Overview: Service-layer operations for customers.

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Customer
from ..validation import NotFoundError, ConflictError, ModelValidationPolicy, validate_payload

CUSTOMER_POLICY = ModelValidationPolicy(
    writable_fields={"carnet", "name", "email", "is_active"},
    required_on_create={"carnet", "name"},
)


def list_customers(search: str | None = None) -> list[Customer]:
    query = db.session.query(Customer).filter(Customer.is_active.is_(True))
    if search:
        term = f"%{search.strip()}%"
        query = query.filter(db.or_(Customer.name.ilike(term), Customer.carnet.ilike(term)))
    return query.order_by(Customer.name.asc(), Customer.id.asc()).all()


def get_customer(customer_id: int) -> Customer:
    customer = db.session.get(Customer, customer_id)
    if customer is None:
        raise NotFoundError(f"Customer {customer_id} not found")
    return customer


def get_by_carnet(carnet: str) -> Customer:
    customer = db.session.query(Customer).filter(Customer.carnet == carnet.strip()).first()
    if customer is None:
        raise NotFoundError(f"No customer with carnet {carnet}")
    return customer


def create_customer(payload: dict, *, created_by_user_id: int | None = None) -> Customer:
    patch = validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=False)
    if db.session.query(Customer.id).filter(Customer.carnet == patch["carnet"]).first():
        raise ConflictError(f"A customer with carnet {patch['carnet']} already exists")

    customer = Customer(**patch, created_by_user_id=created_by_user_id)
    db.session.add(customer)
    db.session.commit()
    return customer


def resolve_sale_customer(customer_id) -> Customer:
    """The customer a sale is charged to; the anonymous customer when none is named."""
    if customer_id is None:
        customer_id = current_app.config.get("ANONYMOUS_CUSTOMER_ID", 2)
    return get_customer(customer_id)
