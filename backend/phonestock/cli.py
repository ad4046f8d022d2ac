# Overview: Flask CLI command groups for bootstrap and inspection.

# backend/phonestock/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP (PowerShell: $env:FLASK_APP="phonestock:create_app").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables that do not exist yet (use "flask db upgrade" for migrations).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# User inspection/bootstrap:
# - python -m flask users list [--role dsr]
#   List users with role and active status.
# - python -m flask users create --username owner --email owner@shop.local --role owner
#   Create a user (prompts if options are omitted).
#
# Catalog inspection:
# - python -m flask catalog list [--brand SAMSUNG] [--all]
#   List products with available stock counts.

import click
from flask.cli import with_appcontext

from .extensions import db
from .errors import PhoneStockError
from .services import auth_service, catalog_service, stock_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create missing tables. Idempotent."""
    db.create_all()
    click.echo("PASS Database tables created.")


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

    click.echo("PASS Database reset complete.")


@click.group('users')
def users_group():
    """User inspection and bootstrap."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--email', prompt=True, help='Email address')
@click.option('--role', type=click.Choice(list(auth_service.ROLES)), prompt=True, help='Role')
@click.option('--first-name', default=None, help='First name')
@click.option('--last-name', default=None, help='Last name')
@click.option('--phone', default=None, help='Phone number')
@with_appcontext
def create_user_cli(username, email, role, first_name, last_name, phone):
    """Create a new user."""
    try:
        user = auth_service.create_user(
            username=username,
            email=email,
            role=role,
            first_name=first_name,
            last_name=last_name,
            phone=phone,
        )
    except PhoneStockError as e:
        click.echo(f"FAIL {e.message}")
        raise SystemExit(1)

    click.echo(f"PASS Created user '{user.username}' (id={user.id}, role={user.role})")


@users_group.command('list')
@click.option('--role', type=click.Choice(list(auth_service.ROLES)), help='Filter by role')
@with_appcontext
def list_users(role):
    """List all users with their roles."""
    users = auth_service.list_users(role=role)

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Username':<20} {'Email':<30} {'Role':<8} {'Active'}")
    click.echo("="*90)

    for user in users:
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.username:<20} {user.email:<30} {user.role:<8} {active_str}")

    click.echo("="*90 + "\n")


@click.group('catalog')
def catalog_group():
    """Catalog inspection."""


@catalog_group.command('list')
@click.option('--brand', help='Filter by brand')
@click.option('--all', 'include_inactive', is_flag=True, help='Include inactive products')
@with_appcontext
def list_catalog(brand, include_inactive):
    """List products with available stock counts."""
    result = catalog_service.list_products(
        brand=brand,
        active=None if include_inactive else True,
        limit=200,
    )
    products = result["items"]

    if not products:
        click.echo("No products found.")
        return

    available = {
        group["product"]["id"]: group["count"]
        for group in stock_service.available_stock()
    }

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Product':<45} {'Selling':>12} {'Avail':>6} {'Active':>7}")
    click.echo("="*90)

    for p in products:
        active_str = "Yes" if p.is_active else "No"
        click.echo(
            f"{p.id:<5} {p.display_name[:45]:<45} {p.selling_price_cents / 100:>12,.2f} "
            f"{available.get(p.id, 0):>6} {active_str:>7}"
        )

    click.echo("="*90 + "\n")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(catalog_group)
