"""
Pytest fixtures for Tienda backend tests.

Provides test database setup, catalog seed rows, users with bearer tokens,
and a purchase factory for lot ledger scenarios.
"""

import pytest
from tienda import create_app
from tienda.config import TestConfig
from tienda.extensions import db
from tienda.models import Category, Customer, Product, Supplier, UnitOfMeasure, User
from tienda.models.auth import ROLE_ADMIN, ROLE_EMPLOYEE
from tienda.services.auth_service import hash_password
from tienda.services import session_service
from tienda.services.purchase_service import create_purchase

TEST_PASSWORD = "Password123"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        app.config["STRICT_EXPIRY_DATES"] = False
        app.config["LOT_SELECTION_POLICY"] = "created_order"

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='session')
def password_hash():
    """bcrypt is slow on purpose; hash the shared test password once."""
    return hash_password(TEST_PASSWORD)


@pytest.fixture(scope='function')
def unit(db_session):
    """Units of measure with "Unidad" on id 2, the configured default."""
    db_session.add(UnitOfMeasure(id=1, name="Caja"))
    db_session.add(UnitOfMeasure(id=2, name="Unidad"))
    db_session.commit()
    return db_session.get(UnitOfMeasure, 2)


@pytest.fixture(scope='function')
def anonymous_customer(db_session):
    db_session.add(Customer(id=1, name="Cliente 1", is_active=False))
    db_session.add(Customer(id=2, name="Cliente anonimo"))
    db_session.commit()
    return db_session.get(Customer, 2)


@pytest.fixture(scope='function')
def category(db_session):
    category = Category(name="Bebidas")
    db_session.add(category)
    db_session.commit()
    return category


@pytest.fixture(scope='function')
def supplier(db_session):
    supplier = Supplier(name="Distribuidora Sur", phone="555-0100")
    db_session.add(supplier)
    db_session.commit()
    return supplier


@pytest.fixture(scope='function')
def product(db_session, unit, category, supplier):
    """Product X: the product every lot ledger scenario buys."""
    product = Product(
        name="Product X",
        sale_price_cents=1500,
        reorder_threshold=10,
        unit_of_measure_id=unit.id,
        category_id=category.id,
        supplier_id=supplier.id,
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def other_product(db_session, unit):
    product = Product(name="Product Y", sale_price_cents=800, reorder_threshold=0, unit_of_measure_id=unit.id)
    db_session.add(product)
    db_session.commit()
    return product


def _make_user(db_session, password_hash, email, role, first_name):
    user = User(
        first_name=first_name,
        last_name="Tester",
        email=email,
        role=role,
        password_hash=password_hash,
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def admin_user(db_session, password_hash):
    return _make_user(db_session, password_hash, "admin@tienda.test", ROLE_ADMIN, "Ana")


@pytest.fixture(scope='function')
def employee_user(db_session, password_hash):
    return _make_user(db_session, password_hash, "cajero@tienda.test", ROLE_EMPLOYEE, "Carlos")


@pytest.fixture(scope='function')
def auth_headers(admin_user):
    """Authorization headers for the admin user."""
    _, token = session_service.create_session(admin_user.id)
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def employee_headers(employee_user):
    _, token = session_service.create_session(employee_user.id)
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def make_purchase(db_session, product):
    """
    Factory: register a one-line purchase through the service.

    make_purchase(lots=[...], bulk_quantity=10, units_per_bulk=10)
    make_purchase(lots=[...], individual_quantity=50, product_id=...)
    """
    def _make(lots, product_id=None, **quantities):
        line = {"product_id": product_id or product.id, "lots": lots}
        line.update(quantities)
        return create_purchase(header={"total_cents": 0}, lines=[line])
    return _make
