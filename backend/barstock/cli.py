# Overview: Flask CLI command groups for bootstrap, inspection, and scheduled jobs.

# backend/barstock/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to barstock (PowerShell: $env:FLASK_APP="barstock").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--central-code HQ --central-name "Central Warehouse"]
#   Idempotent bootstrap: creates tables and the central warehouse store.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Store management:
# - python -m flask stores list
#   List stores with central/active flags.
# - python -m flask stores add --code BR1 --name "Branch 1" [--central] [--tolerance 5]
#   Create a store.
#
# User management:
# - python -m flask users list
#   List users with role and store memberships.
# - python -m flask users add --username somchai --role staff --store-id 1 [--store-id 2]
#   Create a user and attach them to stores.
# - python -m flask users grant --user-id 3 --store-id 2
#   Attach an existing user to another store.
#
# Scheduled jobs (run from cron):
# - python -m flask deposits expire-sweep [--store-id 1]
#   Expire in-store deposits whose expiry date has passed.
# - python -m flask deposits expiry-warnings [--days 7]
#   Notify customers whose deposits expire within the warning window.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Store, User
from .services import access_service, deposit_service
from .validation import NotFoundError


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--central-code', default='HQ', show_default=True, help='Central warehouse store code')
@click.option('--central-name', default='Central Warehouse', show_default=True, help='Central warehouse name')
@with_appcontext
def init_system(central_code, central_name):
    """
    Initialize the database and the central warehouse.

    Safe to run repeatedly: existing tables and stores are left alone.
    """
    click.echo("START Initializing deposit system...")
    db.create_all()
    click.echo("PASS Tables ready")

    central = db.session.query(Store).filter_by(is_central=True).first()
    if central:
        click.echo(f"PASS Using existing central store: {central.name} (ID: {central.id})")
        return

    central = Store(code=central_code, name=central_name, is_central=True, active=True)
    db.session.add(central)
    db.session.commit()
    click.echo(f"PASS Created central store: {central.name} (ID: {central.id}, Code: {central.code})")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Confirm destructive reset')
@with_appcontext
def reset_db(yes):
    """DEV/TEST only: drop and recreate all tables."""
    if not yes:
        click.echo("FAIL Refusing to reset without --yes")
        return
    db.drop_all()
    db.create_all()
    click.echo("PASS Database reset")


# =============================================================================
# STORE MANAGEMENT COMMANDS
# =============================================================================

@click.group('stores')
def stores_group():
    """Store management commands."""


@stores_group.command('list')
@with_appcontext
def list_stores():
    """List all stores."""
    stores = db.session.query(Store).order_by(Store.id.asc()).all()
    if not stores:
        click.echo("No stores found.")
        return

    click.echo("\n" + "="*70)
    click.echo(f"{'ID':<5} {'Code':<10} {'Name':<30} {'Central':<8} {'Active'}")
    click.echo("="*70)
    for store in stores:
        central_str = "Yes" if store.is_central else "No"
        active_str = "Yes" if store.active else "No"
        click.echo(f"{store.id:<5} {store.code:<10} {store.name:<30} {central_str:<8} {active_str}")
    click.echo("="*70 + "\n")


@stores_group.command('add')
@click.option('--code', required=True, help='Short code (unique)')
@click.option('--name', required=True, help='Store name')
@click.option('--central', is_flag=True, help='Mark as the central warehouse')
@click.option('--tolerance', type=float, default=None, help='Stock comparison tolerance in percent')
@with_appcontext
def add_store(code, name, central, tolerance):
    """Create a store."""
    if db.session.query(Store).filter_by(code=code).first():
        click.echo(f"FAIL Store with code '{code}' already exists")
        return

    store = Store(code=code, name=name, is_central=central, active=True, diff_tolerance=tolerance)
    db.session.add(store)
    db.session.commit()
    kind = "central warehouse" if central else "branch"
    click.echo(f"PASS Created {kind}: {store.name} (ID: {store.id}, Code: {store.code})")


# =============================================================================
# USER MANAGEMENT COMMANDS
# =============================================================================

@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users with role and stores."""
    users = db.session.query(User).order_by(User.id.asc()).all()
    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Username':<20} {'Role':<12} {'Active':<8} {'Stores'}")
    click.echo("="*80)
    for user in users:
        active_str = "Yes" if user.active else "No"
        stores = ", ".join(s.code for s in user.stores) or "-"
        click.echo(f"{user.id:<5} {user.username:<20} {user.role:<12} {active_str:<8} {stores}")
    click.echo("="*80 + "\n")


@users_group.command('add')
@click.option('--username', prompt=True, help='Username')
@click.option('--display-name', default=None, help='Display name')
@click.option('--role', type=click.Choice(sorted(access_service.ROLES)), prompt=True, help='Role')
@click.option('--store-id', 'store_ids', type=int, multiple=True, help='Store membership (repeatable)')
@with_appcontext
def add_user(username, display_name, role, store_ids):
    """Create a user and attach them to stores."""
    if db.session.query(User).filter_by(username=username).first():
        click.echo(f"FAIL User '{username}' already exists")
        return

    stores = []
    for store_id in store_ids:
        store = db.session.get(Store, store_id)
        if store is None:
            click.echo(f"FAIL Store ID {store_id} not found")
            return
        stores.append(store)

    user = User(username=username, display_name=display_name, role=role, active=True)
    user.stores.extend(stores)
    db.session.add(user)
    db.session.commit()
    click.echo(f"PASS Created user: {username} (ID: {user.id}) with role '{role}'")
    if stores:
        click.echo(f"     Stores: {', '.join(s.code for s in stores)}")


@users_group.command('grant')
@click.option('--user-id', type=int, required=True)
@click.option('--store-id', type=int, required=True)
@with_appcontext
def grant_user(user_id, store_id):
    """Attach an existing user to a store."""
    try:
        added = access_service.grant_store_access(user_id=user_id, store_id=store_id)
    except NotFoundError as e:
        click.echo(f"FAIL {e}")
        return
    if added:
        click.echo(f"PASS User {user_id} can now act for store {store_id}")
    else:
        click.echo(f"WARN  User {user_id} already belongs to store {store_id}")


# =============================================================================
# SCHEDULED JOBS
# =============================================================================

@click.group('deposits')
def deposits_group():
    """Deposit maintenance jobs."""


@deposits_group.command('expire-sweep')
@click.option('--store-id', type=int, default=None, help='Limit the sweep to one store')
@with_appcontext
def expire_sweep_cli(store_id):
    """
    Expire deposits past their expiry date.

    Open withdrawals on those deposits are rejected. The whole sweep is one
    transaction.
    """
    expired = deposit_service.expire_sweep(store_id=store_id)
    click.echo(f"Expired {len(expired)} deposits.")
    for deposit in expired:
        click.echo(f"  {deposit.deposit_code}  store={deposit.store_id}  {deposit.product_name}")


@deposits_group.command('expiry-warnings')
@click.option('--days', type=int, default=None, help='Warning window in days (default EXPIRY_WARNING_DAYS)')
@with_appcontext
def expiry_warnings_cli(days):
    """Notify customers whose deposits expire soon."""
    sent = deposit_service.send_expiry_warnings(warning_days=days)
    click.echo(f"Sent {sent} expiry warnings.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(stores_group)
    app.cli.add_command(users_group)
    app.cli.add_command(deposits_group)
