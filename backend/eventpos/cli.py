# Overview: Flask CLI command groups for bootstrap, reconciliation, and zone staffing.

# backend/eventpos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables that do not exist yet (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed-demo [--tenant "Demo Events"]
#   Create a demo tenant with one event, two zones, tables, menu items and zone staff.
#
# Reconciliation (run after a store outage or on a schedule):
# - python -m flask reconcile splits [--tenant-id 1]
#   Void the rows of split payments that were only partially written.
# - python -m flask reconcile allocations [--tenant-id 1]
#   Trim zone allocations that exceed a menu item's inventory.
#
# Zone staffing:
# - python -m flask zones assign --tenant-id 1 --zone-id 2 --user-id 21 --role bar_staff [--replace]
#   Assign (or with --replace, hand over) a zone role.

import click
from flask.cli import with_appcontext

from .errors import FulfillmentError
from .extensions import db
from .models import Tenant, Event, Zone, VenueTable, MenuItem
from .permissions import Role, StationType, ZONE_BINDABLE_ROLES
from .services import inventory_service, payment_service, scope_service
from .time_utils import utcnow


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables (existing tables are left untouched)."""
    db.create_all()
    click.echo("PASS Database tables created")


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
    click.echo("BUILD  Recreating schema...")
    db.create_all()
    click.echo("PASS Database reset complete")


DEMO_MENU = [
    ("Water", "drinks", 250, StationType.DRINK_DISPENSER, 200),
    ("Soda", "drinks", 350, StationType.DRINK_DISPENSER, 150),
    ("Burger", "meals", 1000, StationType.MEAL_DISPENSER, 80),
    ("Veggie Bowl", "meals", 900, StationType.MEAL_DISPENSER, 40),
    ("Margarita", "cocktails", 1200, StationType.MIXOLOGIST, None),
    ("Draft Beer", "bar", 500, StationType.BAR, 300),
]

DEMO_STAFF = [
    # (user_id, role, zone index)
    (101, Role.DRINK_DISPENSER, 0),
    (102, Role.MEAL_DISPENSER, 0),
    (103, Role.MIXOLOGIST, 0),
    (104, Role.BAR_STAFF, 1),
    (105, Role.CASHIER, 0),
    (106, Role.DRINK_DISPENSER, 1),
]


@system_group.command('seed-demo')
@click.option('--tenant', 'tenant_name', default='Demo Events', help='Tenant name')
@with_appcontext
def seed_demo(tenant_name):
    """Seed one demo event with zones, tables, menu and zone staff (idempotent per tenant name)."""
    tenant = db.session.query(Tenant).filter_by(name=tenant_name).first()
    if tenant:
        click.echo(f"PASS Tenant already exists: {tenant.name} (ID: {tenant.id}); nothing to do")
        return

    tenant = Tenant(name=tenant_name, is_active=True)
    db.session.add(tenant)
    db.session.flush()

    event = Event(tenant_id=tenant.id, name="Summer Gala", event_date=utcnow().date(), is_active=True)
    db.session.add(event)
    db.session.flush()

    zones = [
        Zone(tenant_id=tenant.id, event_id=event.id, name="Main Floor", color="#3b82f6"),
        Zone(tenant_id=tenant.id, event_id=event.id, name="Terrace", color="#f59e0b"),
    ]
    db.session.add_all(zones)
    db.session.flush()

    for number in range(1, 9):
        zone = zones[0] if number <= 5 else zones[1]
        db.session.add(VenueTable(
            tenant_id=tenant.id, event_id=event.id, zone_id=zone.id, table_number=str(number), capacity=6
        ))

    for name, category, price_cents, station_type, stock in DEMO_MENU:
        db.session.add(MenuItem(
            tenant_id=tenant.id,
            event_id=event.id,
            name=name,
            category=category,
            price_cents=price_cents,
            station_type=station_type,
            starting_inventory=stock,
            current_inventory=stock,
            is_available=True,
        ))
    db.session.commit()
    click.echo(f"PASS Created tenant {tenant.name} (ID: {tenant.id}), event {event.name} (ID: {event.id})")

    for user_id, role, zone_index in DEMO_STAFF:
        zone = zones[zone_index]
        scope_service.assign_zone_role(tenant.id, zone.id, user_id, role)
        click.echo(f"  - user {user_id} -> {role} @ {zone.name}")
    click.echo("PASS Demo data ready")


@click.group('reconcile')
def reconcile_group():
    """Repair partially applied multi-row writes."""


@reconcile_group.command('splits')
@click.option('--tenant-id', type=int, default=None, help='Restrict to one tenant')
@with_appcontext
def reconcile_splits(tenant_id):
    """Void split payments whose rows do not match their session header."""
    report = payment_service.reconcile_split_sessions(tenant_id)
    if not report:
        click.echo("PASS All split sessions are consistent")
        return
    for entry in report:
        click.echo(
            f"WARN session {entry['split_session_id']} order {entry['order_id']}: "
            f"{entry['completed_rows']}/{entry['component_count']} rows, "
            f"{entry['completed_total_cents']}/{entry['expected_total_cents']} cents -> {entry['action']}"
        )
    click.echo(f"DONE {len(report)} session(s) repaired or flagged")


@reconcile_group.command('allocations')
@click.option('--tenant-id', type=int, default=None, help='Restrict to one tenant')
@with_appcontext
def reconcile_allocations(tenant_id):
    """Trim zone allocations that exceed inventory."""
    report = inventory_service.reconcile_allocations(tenant_id)
    if not report:
        click.echo("PASS All allocations fit their inventory")
        return
    for entry in report:
        click.echo(
            f"WARN menu item {entry['menu_item_id']}: allocated {entry['allocated_before']} "
            f"> inventory {entry['current_inventory']}, trimmed {entry['trimmed']}"
        )
    click.echo(f"DONE {len(report)} menu item(s) repaired")


@click.group('zones')
def zones_group():
    """Zone staffing commands."""


@zones_group.command('assign')
@click.option('--tenant-id', type=int, required=True)
@click.option('--zone-id', type=int, required=True)
@click.option('--user-id', type=int, required=True)
@click.option('--role', required=True, type=click.Choice(sorted(ZONE_BINDABLE_ROLES)))
@click.option('--replace', is_flag=True, help='Hand the role over from its current holder')
@with_appcontext
def assign_zone(tenant_id, zone_id, user_id, role, replace):
    """Assign a user to a zone role."""
    try:
        if replace:
            assignment = scope_service.replace_zone_role(tenant_id, zone_id, role, user_id)
        else:
            assignment = scope_service.assign_zone_role(tenant_id, zone_id, user_id, role)
    except FulfillmentError as e:
        raise click.ClickException(e.message)
    click.echo(f"PASS user {assignment.user_id} is {assignment.role} in zone {assignment.zone_id}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(reconcile_group)
    app.cli.add_command(zones_group)
