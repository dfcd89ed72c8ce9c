# Overview: Flask CLI command groups for bootstrap, inspection, imports, and location utilities.

# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init [--with-demo-users]
#   Create tables and an admin account (admin@stockrun.local / Password123!).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users list [--role DRIVER]
# - python -m flask users create --name "Kumar" --email kumar@example.com --password "Password123!" --role DRIVER
#
# Orders:
# - python -m flask orders import orders.json
#   Import exported order rows (JSON array). Malformed rows are reported and skipped.
#
# Deliveries:
# - python -m flask deliveries dates
#   Pending delivery dates with order counts and allocation markers.
# - python -m flask deliveries aggregate --date 2024-05-01 --date 2024-05-02
#   Combined and per-date pending demand.
#
# Allocations:
# - python -m flask allocations list [--all] [--driver-id 3]
# - python -m flask allocations audit allocations.json [--as-of 2024-05-02]
#   Visible stock per driver computed from exported allocation rows.
#
# Location:
# - python -m flask location seed-demo
# - python -m flask location clear
# - python -m flask location audit users.json
#   Dashboard rows (freshness, distance) computed from exported user rows.
#
# Permissions:
# - python -m flask perms list [--role DRIVER] [--category LOCATION]
# - python -m flask perms check SECRETARY ALLOCATE_DELIVERIES
#
# Maintenance:
# - python -m flask maintenance cleanup-sessions

import json
from collections import defaultdict

import click
from flask import current_app
from flask.cli import with_appcontext

from .errors import StockRunError
from .extensions import db
from .models import User
from .models.auth import ALL_ROLES, ROLE_ADMIN, ROLE_DRIVER, ROLE_MANAGER, ROLE_SALES_REP, ROLE_SECRETARY
from .permissions import (
    PERMISSION_DEFINITIONS,
    get_permission_definition,
    get_permissions_by_category,
    get_role_permissions,
    role_has_permission,
    validate_permission_code,
)
from .records import parse_allocation_row, parse_user_location_row
from .services import allocation_service, delivery_service, location_service, order_service, session_service
from .services.auth_service import create_user, list_users, PasswordValidationError
from .services.driver_stock_service import visible_stock
from .time_utils import to_calendar_date, today, utcnow


DEFAULT_PASSWORD = "Password123!"


def _load_rows(path: str) -> list:
    with open(path, "r", encoding="utf-8") as fh:
        data = json.load(fh)
    if isinstance(data, dict):
        # Exports sometimes wrap the rows: {"items": [...]}
        data = data.get("items") or data.get("rows") or []
    if not isinstance(data, list):
        raise click.ClickException(f"{path}: expected a JSON array of rows")
    return data


# =============================================================================
# SYSTEM
# =============================================================================

@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--with-demo-users', is_flag=True, help='Also create one user per role')
@with_appcontext
def init_system(with_demo_users):
    """
    Create tables and the default accounts. Idempotent.

    All passwords default to "Password123!".
    SECURITY: Change passwords immediately in production!
    """
    click.echo("START Initializing StockRun...")
    db.create_all()
    click.echo("PASS Tables ready")

    accounts = [("Administrator", "admin@stockrun.local", ROLE_ADMIN)]
    if with_demo_users:
        accounts += [
            ("Office Secretary", "secretary@stockrun.local", ROLE_SECRETARY),
            ("Branch Manager", "manager@stockrun.local", ROLE_MANAGER),
            ("Sales Rep", "rep@stockrun.local", ROLE_SALES_REP),
            ("Driver", "driver@stockrun.local", ROLE_DRIVER),
        ]

    for name, email, role in accounts:
        if db.session.query(User).filter(User.email == email).first():
            click.echo(f"SKIP {email} already exists")
            continue
        create_user(name, email, DEFAULT_PASSWORD, role)
        click.echo(f"PASS Created {role:<10} {email}")

    click.echo(f"\nDONE Default password: {DEFAULT_PASSWORD}")


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
    click.echo("PASS Database reset")


# =============================================================================
# USERS
# =============================================================================

@click.group('users')
def users_group():
    """User inspection and bootstrap."""


@users_group.command('create')
@click.option('--name', prompt=True, help='Display name')
@click.option('--email', prompt=True, help='Email address (login)')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(ALL_ROLES, case_sensitive=False), prompt=True, help='Role')
@click.option('--phone', default=None, help='Phone number')
@with_appcontext
def create_user_cli(name, email, password, role, phone):
    """
    Create a new user.

    Password must meet strength requirements:
    - Minimum 8 characters
    - At least one uppercase letter, one lowercase letter, one digit
    - At least one special character
    """
    try:
        user = create_user(name, email, password, role.upper(), phone=phone)
        click.echo(f"PASS Created user: {user.name} ({user.email}) with role '{user.role}' (ID: {user.id})")
        click.echo("SECURITY Password securely hashed with bcrypt")
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {e}")
        click.echo("Requirements: 8+ chars, uppercase, lowercase, digit, special char")
    except StockRunError as e:
        click.echo(f"FAIL Failed to create user: {e}")


@users_group.command('list')
@click.option('--role', type=click.Choice(ALL_ROLES, case_sensitive=False), default=None, help='Filter by role')
@with_appcontext
def list_users_cli(role):
    """List users with role, status and location sharing."""
    users = list_users(role.upper() if role else None)

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "=" * 100)
    click.echo(f"{'ID':<5} {'Name':<24} {'Email':<32} {'Role':<10} {'Active':<8} {'Sharing'}")
    click.echo("=" * 100)
    for user in users:
        active_str = "Yes" if user.is_active else "No"
        sharing_str = "Yes" if user.location_sharing else "-"
        click.echo(f"{user.id:<5} {user.name[:23]:<24} {user.email[:31]:<32} {user.role:<10} {active_str:<8} {sharing_str}")
    click.echo("=" * 100 + "\n")


# =============================================================================
# ORDERS
# =============================================================================

@click.group('orders')
def orders_group():
    """Order imports."""


@orders_group.command('import')
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
@with_appcontext
def import_orders_cli(path):
    """Import exported order rows. Each row is validated on its own."""
    rows = _load_rows(path)
    created = 0
    for index, row in enumerate(rows, start=1):
        if not isinstance(row, dict):
            click.echo(f"SKIP row {index}: not an object")
            continue
        try:
            order = order_service.create_order(row)
        except StockRunError as e:
            db.session.rollback()
            click.echo(f"SKIP row {index} (id={row.get('id')}): {e}")
            continue
        created += 1
        click.echo(f"PASS row {index} -> order {order.id} ({order.status})")
    click.echo(f"\nDONE Imported {created} of {len(rows)} row(s)")


# =============================================================================
# DELIVERIES
# =============================================================================

@click.group('deliveries')
def deliveries_group():
    """Delivery date and demand inspection."""


@deliveries_group.command('dates')
@with_appcontext
def delivery_dates_cli():
    """Pending delivery dates with order counts."""
    rows = delivery_service.delivery_dates_for_store()
    if not rows:
        click.echo("No pending orders.")
        return

    click.echo("\n" + "=" * 50)
    click.echo(f"{'Date':<14} {'Orders':<8} {'Allocated'}")
    click.echo("=" * 50)
    for row in rows:
        click.echo(f"{row['date']:<14} {row['order_count']:<8} {'Yes' if row['allocated'] else '-'}")
    click.echo("=" * 50 + "\n")


@deliveries_group.command('aggregate')
@click.option('--date', 'dates', multiple=True, required=True, help='Delivery date (repeatable)')
@with_appcontext
def aggregate_cli(dates):
    """Combined and per-date pending demand for the given dates."""
    try:
        keys = delivery_service.parse_date_selection(dates)
    except StockRunError as e:
        raise click.ClickException(f"{e}: {e.details}")

    result = delivery_service.aggregate_for_store(keys)
    click.echo(f"\nCombined demand for {', '.join(result['dates'])}:")
    if not result["items"]:
        click.echo("  (nothing pending)")
    for line in result["items"]:
        click.echo(f"  product {line['product_id']:<6} x {line['quantity']}")

    for key, lines in result["per_date"].items():
        click.echo(f"\n{key}:")
        for line in lines:
            click.echo(f"  product {line['product_id']:<6} x {line['quantity']}")
    click.echo("")


# =============================================================================
# ALLOCATIONS
# =============================================================================

@click.group('allocations')
def allocations_group():
    """Driver allocation inspection."""


@allocations_group.command('list')
@click.option('--all', 'include_reconciled', is_flag=True, help='Include reconciled allocations')
@click.option('--driver-id', type=int, default=None, help='Filter by driver')
@with_appcontext
def list_allocations_cli(include_reconciled, driver_id):
    """Active allocations (or all with --all)."""
    allocations = allocation_service.list_allocations(
        include_reconciled=include_reconciled, driver_id=driver_id
    )
    if not allocations:
        click.echo("No allocations found.")
        return

    click.echo("\n" + "=" * 100)
    click.echo(f"{'ID':<5} {'Date':<12} {'Driver':<24} {'Status':<12} {'Items':<6} {'Sold':<6} {'Sales':<12} {'Batch'}")
    click.echo("=" * 100)
    for allocation in allocations:
        item_qty = sum(i.quantity for i in allocation.items)
        sold_qty = sum(i.sold for i in allocation.items)
        sales = f"{(allocation.sales_total_cents or 0) / 100:.2f}"
        click.echo(
            f"{allocation.id:<5} {allocation.allocation_date.isoformat():<12} "
            f"{allocation.driver_name[:23]:<24} {allocation.status:<12} {item_qty:<6} {sold_qty:<6} "
            f"{sales:<12} {allocation.batch_key or '-'}"
        )
    click.echo("=" * 100 + "\n")


@allocations_group.command('audit')
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
@click.option('--as-of', default=None, help='Date to project stock for (default: today)')
def audit_allocations_cli(path, as_of):
    """Visible stock per driver from exported allocation rows."""
    as_of_date = to_calendar_date(as_of) if as_of else today()
    if as_of_date is None:
        raise click.ClickException("--as-of must be a YYYY-MM-DD date")

    records = [parse_allocation_row(row) for row in _load_rows(path) if isinstance(row, dict)]
    by_driver = defaultdict(list)
    for record in records:
        if record.driver_id is not None:
            by_driver[record.driver_id].append(record)

    click.echo(f"\nVisible stock as of {as_of_date.isoformat()} ({len(records)} row(s))")
    for driver_id in sorted(by_driver):
        stock = visible_stock(by_driver[driver_id], driver_id, as_of_date)
        name = next((r.driver_name for r in by_driver[driver_id] if r.driver_name), "")
        click.echo(f"\nDriver {driver_id} {name}".rstrip())
        if not stock:
            click.echo("  (nothing to sell)")
        for product_id, qty in sorted(stock.items()):
            click.echo(f"  product {product_id:<6} x {qty}")
    click.echo("")


# =============================================================================
# LOCATION
# =============================================================================

@click.group('location')
def location_group():
    """Field-staff location utilities."""


@location_group.command('seed-demo')
@with_appcontext
def seed_demo_cli():
    """Place every field user near the depot and mark them sharing."""
    count = location_service.seed_demo()
    click.echo(f"PASS Seeded demo locations for {count} field user(s)")


@location_group.command('clear')
@with_appcontext
def clear_locations_cli():
    """Clear every field user's location and turn sharing off."""
    count = location_service.clear_demo()
    click.echo(f"PASS Cleared locations for {count} field user(s)")


@location_group.command('audit')
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
@click.option('--all', 'include_all', is_flag=True, help='Include users that are not sharing')
@with_appcontext
def audit_locations_cli(path, include_all):
    """Freshness and depot distance from exported user rows."""
    states = [parse_user_location_row(row) for row in _load_rows(path) if isinstance(row, dict)]
    states = [
        s for s in states
        if s is not None and s.role in (ROLE_SALES_REP, ROLE_DRIVER)
        and (include_all or (s.location_sharing and s.location is not None))
    ]
    config = current_app.config
    rows = location_service.build_location_rows(
        states,
        now=utcnow(),
        depot=(config["DEPOT_LATITUDE"], config["DEPOT_LONGITUDE"]),
        freshness_seconds=config["LOCATION_FRESHNESS_SECONDS"],
        maps_base_url=config["MAPS_BASE_URL"],
    )
    if not rows:
        click.echo("No field users with a location.")
        return

    click.echo("\n" + "=" * 90)
    click.echo(f"{'ID':<5} {'Name':<24} {'Role':<10} {'Fresh':<6} {'Age (s)':<9} {'Dist (km)':<10} {'Sharing'}")
    click.echo("=" * 90)
    for row in rows:
        age = row["age_seconds"] if row["age_seconds"] is not None else "-"
        dist = row["distance_km"] if row["distance_km"] is not None else "-"
        click.echo(
            f"{row['user_id']:<5} {row['name'][:23]:<24} {row['role']:<10} "
            f"{'Yes' if row['is_fresh'] else 'No':<6} {age!s:<9} {dist!s:<10} "
            f"{'Yes' if row['location_sharing'] else '-'}"
        )
    click.echo("=" * 90 + "\n")


# =============================================================================
# PERMISSIONS
# =============================================================================

@click.group('perms')
def perms_group():
    """Role permission inspection."""


@perms_group.command('list')
@click.option('--role', type=click.Choice(ALL_ROLES, case_sensitive=False), default=None, help='Filter by role')
@click.option('--category', default=None, help='Filter by category')
def list_permissions_cli(role, category):
    """List permissions grouped by category, optionally for one role or category."""
    if category:
        definitions = get_permissions_by_category(category.upper())
    else:
        definitions = sorted(PERMISSION_DEFINITIONS, key=lambda perm: (perm[3], perm[0]))
    if role:
        granted = get_role_permissions(role.upper())
        definitions = [perm for perm in definitions if perm[0] in granted]

    title = f"Permissions for role: {role.upper()}" if role else "All Permissions"
    click.echo(f"\n{'='*80}")
    click.echo(title)
    click.echo(f"{'='*80}\n")

    current_category = None
    for code, name, _, perm_category in definitions:
        if perm_category != current_category:
            if current_category:
                click.echo("")
            click.echo(f"CATEGORY {perm_category}")
            click.echo("-"*80)
            current_category = perm_category
        click.echo(f"  {code:<28} {name}")

    click.echo(f"\n Total: {len(definitions)} permissions\n")


@perms_group.command('check')
@click.argument('role', type=click.Choice(ALL_ROLES, case_sensitive=False))
@click.argument('permission_code')
def check_permission_cli(role, permission_code):
    """Check if a role grants a specific permission."""
    code = permission_code.upper()
    if not validate_permission_code(code):
        raise click.ClickException(f"Unknown permission '{permission_code}'")

    definition = get_permission_definition(code)
    if role_has_permission(role.upper(), code):
        click.echo(f"PASS Role '{role.upper()}' HAS permission '{code}' ({definition['name']})")
    else:
        click.echo(f"FAIL Role '{role.upper()}' DOES NOT HAVE permission '{code}' ({definition['name']})")


# =============================================================================
# MAINTENANCE
# =============================================================================

@click.group('maintenance')
def maintenance_group():
    """Maintenance commands."""


@maintenance_group.command('cleanup-sessions')
@with_appcontext
def cleanup_sessions_cli():
    """Delete expired and revoked sessions older than 30 days."""
    deleted = session_service.cleanup_expired_sessions()
    click.echo(f"Deleted {deleted} expired or revoked session(s).")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(orders_group)
    app.cli.add_command(deliveries_group)
    app.cli.add_command(allocations_group)
    app.cli.add_command(location_group)
    app.cli.add_command(perms_group)
    app.cli.add_command(maintenance_group)
