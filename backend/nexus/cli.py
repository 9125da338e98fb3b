# Overview: Flask CLI command groups for bootstrap, user management, and stock inspection.

# backend/nexus/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: creates default roles, a main warehouse, and default users.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users create --email admin@nexus.local --password "Password123!" --role admin
#   Create a user (prompts if options are omitted).
# - python -m flask users list
#
# Stock inspection:
# - python -m flask stock show --product-id 1 --warehouse-id 1
#   Print the ledger-derived quantity and its movements.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import User, Warehouse, StockMovement
from .errors import ErpError
from .services.auth_service import create_user, create_default_roles, PasswordValidationError, DEFAULT_ROLES
from .services import stock_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--warehouse', 'warehouse_name', default='Main Warehouse', help='Default warehouse name')
@with_appcontext
def init_system(warehouse_name):
    """
    Initialize roles, a default warehouse and default users.

    Creates:
    - Roles: admin, manager, staff
    - Warehouse: "Main Warehouse" (unless one already exists)
    - Users: admin@nexus.local, manager@nexus.local, staff@nexus.local
    - All passwords default to: "Password123!"

    SECURITY: Change passwords immediately in production!
    """
    click.echo("START Initializing Nexus...")

    created = create_default_roles()
    click.echo(f"PASS Roles ready ({created} created): {', '.join(DEFAULT_ROLES)}")

    warehouse = db.session.query(Warehouse).filter_by(is_deleted=False).order_by(Warehouse.id).first()
    if not warehouse:
        warehouse = Warehouse(name=warehouse_name)
        db.session.add(warehouse)
        db.session.commit()
        click.echo(f"PASS Created warehouse: {warehouse.name} (ID: {warehouse.id})")
    else:
        click.echo(f"PASS Using existing warehouse: {warehouse.name} (ID: {warehouse.id})")

    default_password = "Password123!"
    for role_name in DEFAULT_ROLES:
        email = f"{role_name}@nexus.local"
        if db.session.query(User).filter_by(email=email).first():
            click.echo(f"WARN  User '{email}' already exists, skipping...")
            continue
        try:
            create_user(email, default_password, full_name=role_name.title(), role_name=role_name)
            click.echo(f"PASS Created user: {email} with role '{role_name}'")
        except ErpError as e:
            click.echo(f"FAIL Failed to create user '{email}': {e.message}")

    click.echo("\nDONE Set DEFAULT_WAREHOUSE_ID=%d to approve orders without naming a warehouse." % warehouse.id)


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
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--full-name', default=None, help='Display name')
@click.option('--role', type=click.Choice(list(DEFAULT_ROLES)), prompt=True, help='Role')
@with_appcontext
def create_user_cli(email, password, full_name, role):
    """
    Create a new user.

    Password must meet strength requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character
    """
    try:
        user = create_user(email, password, full_name=full_name, role_name=role)
        click.echo(f"PASS Created user: {user.email} (ID: {user.id}) with role '{role}'")
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {e.message}")
    except ErpError as e:
        click.echo(f"FAIL Failed to create user: {e.message}")


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users with their roles."""
    users = db.session.query(User).order_by(User.id).all()
    if not users:
        click.echo("No users found.")
        return

    click.echo(f"{'ID':<5} {'Email':<30} {'Active':<8} {'Role'}")
    for user in users:
        click.echo(f"{user.id:<5} {user.email:<30} {str(user.is_active):<8} {user.role_name}")


@click.group('stock')
def stock_group():
    """Stock ledger inspection."""


@stock_group.command('show')
@click.option('--product-id', type=int, required=True)
@click.option('--warehouse-id', type=int, required=True)
@click.option('--limit', type=int, default=20, show_default=True, help='Movements to list')
@with_appcontext
def show_stock(product_id, warehouse_id, limit):
    """Print current stock for a product/warehouse and its latest movements."""
    quantity = stock_service.current_stock(product_id, warehouse_id)
    click.echo(f"Product {product_id} @ warehouse {warehouse_id}: {quantity}")

    movements = (
        db.session.query(StockMovement)
        .filter_by(product_id=product_id, warehouse_id=warehouse_id)
        .order_by(StockMovement.id.desc())
        .limit(limit)
        .all()
    )
    for m in movements:
        ref = f"{m.reference_type}#{m.reference_id}" if m.reference_id is not None else m.reference_type
        click.echo(f"  {m.id:<6} {m.movement_type:<13} {m.quantity:>8} {ref}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(stock_group)
