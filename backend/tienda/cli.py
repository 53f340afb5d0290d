# Overview: Flask CLI command groups for bootstrap, user management and ledger checks.

# backend/tienda/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: units of measure, the anonymous customer and an admin user.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users list
#   List all users with role and active status.
# - python -m flask users create --email admin@tienda.local --password "Password123" --role admin
#   Create a user (prompts if options are omitted).
#
# Ledger:
# - python -m flask ledger check-drift
#   Compare every product's stock counter with the warehouse ledger and sales.
#   Exits with status 1 when any product disagrees.

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .models import Customer, UnitOfMeasure, User
from .models.auth import ROLES, ROLE_ADMIN
from .services.auth_service import create_user
from .services.products_service import find_stock_drift
from .validation import ValidationError, ConflictError

# Seeded in this order so "Unidad" gets id 2 on an empty database
DEFAULT_UNITS = ["Caja", "Unidad", "Paquete", "Docena", "Kilogramo", "Litro"]

ANONYMOUS_CUSTOMER_NAME = "Cliente anonimo"
DEFAULT_ADMIN_EMAIL = "admin@tienda.local"
DEFAULT_PASSWORD = "Password123"


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


def _seed_units() -> None:
    existing = {u.name for u in db.session.query(UnitOfMeasure).all()}
    for name in DEFAULT_UNITS:
        if name not in existing:
            db.session.add(UnitOfMeasure(name=name))
            db.session.flush()
    db.session.commit()

    default_id = current_app.config["DEFAULT_UNIT_OF_MEASURE_ID"]
    default_unit = db.session.get(UnitOfMeasure, default_id)
    if default_unit is None:
        click.echo(f"WARN  Default unit of measure id {default_id} does not exist")
    else:
        click.echo(f"PASS Default unit of measure: {default_unit.name} (ID: {default_unit.id})")


def _seed_anonymous_customer() -> None:
    anonymous_id = current_app.config["ANONYMOUS_CUSTOMER_ID"]
    if db.session.get(Customer, anonymous_id) is not None:
        click.echo(f"PASS Using existing anonymous customer (ID: {anonymous_id})")
        return

    # Fill lower ids with placeholders so the anonymous customer lands on its configured id
    while True:
        customer = Customer(name=ANONYMOUS_CUSTOMER_NAME, carnet=None)
        db.session.add(customer)
        db.session.flush()
        if customer.id >= anonymous_id:
            break
        customer.name = f"Cliente {customer.id}"
        customer.is_active = False
    db.session.commit()
    click.echo(f"PASS Created anonymous customer (ID: {customer.id})")


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Initialize the store database.

    Creates:
    - Units of measure ("Unidad" is the default unit)
    - The anonymous customer used by sales that name none
    - Admin user admin@tienda.local / Password123

    SECURITY: Change the admin password immediately in production!
    """
    click.echo("START Initializing Tienda...")

    db.create_all()
    _seed_units()
    _seed_anonymous_customer()

    existing = db.session.query(User).filter_by(email=DEFAULT_ADMIN_EMAIL, is_active=True).first()
    if existing:
        click.echo(f"WARN  User '{DEFAULT_ADMIN_EMAIL}' already exists, skipping...")
    else:
        create_user(
            {"first_name": "Admin", "last_name": "Tienda", "email": DEFAULT_ADMIN_EMAIL, "role": ROLE_ADMIN},
            password=DEFAULT_PASSWORD,
        )
        click.echo(f"PASS Created user: {DEFAULT_ADMIN_EMAIL} with role '{ROLE_ADMIN}'")

    click.echo("\n" + "="*60)
    click.echo("DONE Tienda Initialized Successfully!")
    click.echo("="*60)
    click.echo("\nDefault Credentials (CHANGE IN PRODUCTION!):")
    click.echo(f"   admin -> {DEFAULT_ADMIN_EMAIL} / {DEFAULT_PASSWORD}")
    click.echo("")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


@click.group('users')
def users_group():
    """User management commands."""


@users_group.command('create')
@click.option('--first-name', prompt=True, help='First name')
@click.option('--last-name', prompt=True, help='Last name')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(sorted(ROLES)), default='employee', help='Role')
@with_appcontext
def create_user_cli(first_name, last_name, email, password, role):
    """Create a user."""
    try:
        user = create_user(
            {"first_name": first_name, "last_name": last_name, "email": email, "role": role},
            password=password,
        )
    except (ValidationError, ConflictError) as e:
        click.echo(f"FAIL Failed to create user: {str(e)}")
        raise SystemExit(1)

    click.echo(f"PASS Created user: {user.email} with role '{user.role}' (ID: {user.id})")


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users with their roles."""
    users = db.session.query(User).order_by(User.id.asc()).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Name':<30} {'Email':<30} {'Active':<8} {'Role'}")
    click.echo("="*90)

    for user in users:
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.full_name:<30} {user.email:<30} {active_str:<8} {user.role}")

    click.echo("="*90 + "\n")


@click.group('ledger')
def ledger_group():
    """Warehouse ledger consistency commands."""


@ledger_group.command('check-drift')
@with_appcontext
def check_drift():
    """Report products whose stock counter disagrees with the ledger."""
    drift = find_stock_drift()

    if not drift:
        click.echo("PASS No stock drift detected.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Product':<40} {'Counter':>10} {'Expected':>10} {'Diff':>10}")
    click.echo("="*90)
    for row in drift:
        click.echo(
            f"{row['product_id']:<5} {row['name'][:40]:<40} "
            f"{row['current_stock']:>10} {row['expected_stock']:>10} {row['difference']:>10}"
        )
    click.echo("="*90 + "\n")
    click.echo(f"FAIL Stock drift on {len(drift)} product(s).")
    raise SystemExit(1)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(ledger_group)
