# Overview: Flask CLI command groups for bootstrap, stock maintenance and staff accounts.

# backend/cafepos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: creates tables and the default admin/manager/cashier users.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed-demo
#   Sample menu with opening stock plus a handful of tables.
#
# Stock:
# - python -m flask stock receive 3 24 --notes "Weekly delivery"
#   Book received stock for a product through the ledger.
# - python -m flask stock reconcile
#   Report products whose stock counter disagrees with the ledger (exit code 1 if any).
# - python -m flask stock low
#   List active products at or below their minimum stock level.
#
# Users:
# - python -m flask users create --username alice --full-name "Alice" --role cashier
#   Create a staff account (prompts for the password).
# - python -m flask users list

import click
from flask.cli import with_appcontext

from .errors import BillingError
from .extensions import db
from .models import DiningTable, Product, User
from .models.auth import ROLES
from .services import auth_service, stock_service, table_service
from .services.auth_service import PasswordValidationError


DEFAULT_PASSWORD = "Password123!"

DEMO_PRODUCTS = [
    # (sku, name, price_cents, opening stock)
    ("ESP", "Espresso", 250, 200),
    ("CAP", "Cappuccino", 380, 150),
    ("LAT", "Latte", 420, 150),
    ("TEA", "Black Tea", 220, 100),
    ("CRO", "Croissant", 300, 40),
    ("MUF", "Blueberry Muffin", 350, 30),
    ("SAN", "Club Sandwich", 890, 20),
]


# =============================================================================
# System
# =============================================================================

@click.group('system')
def system_group():
    """System bootstrap and maintenance."""


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Create tables and default users.

    Safe to run multiple times: existing users are skipped.
    """
    click.echo("START Initializing cafe POS...")
    db.create_all()

    for username, full_name, role in (
        ("admin", "Administrator", "admin"),
        ("manager", "Shift Manager", "manager"),
        ("cashier", "Front Cashier", "cashier"),
    ):
        if db.session.query(User).filter_by(username=username).first():
            click.echo(f"WARN  User '{username}' already exists, skipping...")
            continue
        try:
            auth_service.create_user(username, DEFAULT_PASSWORD, full_name, role=role)
            click.echo(f"PASS Created user: {username} with role '{role}'")
        except (ValueError, PasswordValidationError) as e:
            click.echo(f"FAIL Failed to create user '{username}': {e}")

    click.echo("\nDefault Credentials (CHANGE IN PRODUCTION!):")
    click.echo(f"   admin / manager / cashier -> {DEFAULT_PASSWORD}")


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
    click.echo("BUILD Creating all tables...")
    db.create_all()
    click.echo("PASS Database reset. Run: python -m flask system init")


@system_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """Sample products with opening stock and six tables."""
    for sku, name, price_cents, stock in DEMO_PRODUCTS:
        if db.session.query(Product).filter_by(sku=sku).first():
            click.echo(f"WARN  Product {sku} exists, skipping...")
            continue
        product = stock_service.create_product(name, price_cents, initial_stock=stock, sku=sku)
        click.echo(f"PASS Product {product.name} (ID: {product.id}, stock {product.stock_quantity})")

    for number in range(1, 7):
        if db.session.query(DiningTable).filter_by(table_number=str(number)).first():
            continue
        table = table_service.create_table(str(number), capacity=2 if number <= 2 else 4)
        click.echo(f"PASS Table {table.table_number} (ID: {table.id})")


# =============================================================================
# Stock
# =============================================================================

@click.group('stock')
def stock_group():
    """Stock ledger maintenance."""


@stock_group.command('receive')
@click.argument('product_id', type=int)
@click.argument('quantity', type=int)
@click.option('--notes', default=None, help='Delivery note')
@with_appcontext
def receive_stock_cli(product_id, quantity, notes):
    """Book received stock for a product."""
    try:
        product, _ = stock_service.receive_stock(product_id, quantity, notes=notes)
    except BillingError as e:
        raise click.ClickException(e.message)
    click.echo(f"PASS {product.name}: stock now {product.stock_quantity}")


@stock_group.command('reconcile')
@with_appcontext
def reconcile_stock_cli():
    """Verify stock_quantity == SUM(ledger deltas) for every product."""
    mismatches = stock_service.verify_stock_reconciliation()
    if not mismatches:
        click.echo("PASS All products reconcile with the inventory ledger")
        return

    click.echo(f"FAIL {len(mismatches)} product(s) out of balance:")
    for row in mismatches:
        click.echo(
            f"   #{row['product_id']} {row['product_name']}: counter {row['stock_quantity']}, "
            f"ledger {row['ledger_quantity']} (diff {row['difference']:+d})"
        )
    raise SystemExit(1)


@stock_group.command('low')
@with_appcontext
def low_stock_cli():
    """List products at or below their minimum stock level."""
    products = stock_service.get_low_stock_products()
    if not products:
        click.echo("No low stock products.")
        return

    click.echo(f"{'ID':<5} {'Name':<30} {'Stock':<8} {'Min'}")
    for product in products:
        click.echo(f"{product.id:<5} {product.name:<30} {product.stock_quantity:<8} {product.min_stock_level}")


# =============================================================================
# Users
# =============================================================================

@click.group('users')
def users_group():
    """Staff account management."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--full-name', prompt=True, help='Name printed on orders and payments')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(ROLES), default='cashier', show_default=True)
@with_appcontext
def create_user_cli(username, full_name, password, role):
    try:
        user = auth_service.create_user(username, password, full_name, role=role)
    except (ValueError, PasswordValidationError) as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Created user: {user.username} (ID: {user.id}) with role '{user.role}'")


@users_group.command('list')
@with_appcontext
def list_users():
    users = db.session.query(User).order_by(User.id.asc()).all()
    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "=" * 80)
    click.echo(f"{'ID':<5} {'Username':<20} {'Full name':<30} {'Role':<10} {'Active'}")
    click.echo("=" * 80)
    for user in users:
        active_str = "yes" if user.is_active else "no"
        click.echo(f"{user.id:<5} {user.username:<20} {user.full_name:<30} {user.role:<10} {active_str}")
    click.echo("=" * 80 + "\n")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(stock_group)
    app.cli.add_command(users_group)
