"""
Pytest fixtures for EventPOS backend tests.

Provides the in-memory database, two tenants, one event laid out in two
zones, a small menu, and callers for every floor role.
"""

import pytest

from eventpos import create_app
from eventpos.extensions import db
from eventpos.models import Event, MenuItem, Tenant, VenueTable, Zone
from eventpos.permissions import Role, StationType, station_for_role
from eventpos.services import event_service, order_service, scope_service, station_service
from eventpos.services.identity_service import Caller


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_ENGINE_OPTIONS': {},
        'RETRY_BACKOFF_SECONDS': 0,
    })

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
        for table in reversed(db.metadata.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        event_service.clear_subscribers()

        yield db.session

        db.session.rollback()
        event_service.clear_subscribers()


# ----------------------------------------------------------------------------
# Tenancy and floor layout
# ----------------------------------------------------------------------------

@pytest.fixture(scope='function')
def tenant_a(db_session):
    tenant = Tenant(name="Tenant A - Harbour Catering")
    db_session.add(tenant)
    db_session.commit()
    return tenant


@pytest.fixture(scope='function')
def tenant_b(db_session):
    tenant = Tenant(name="Tenant B - Summit Events")
    db_session.add(tenant)
    db_session.commit()
    return tenant


@pytest.fixture(scope='function')
def event_a(db_session, tenant_a):
    event = Event(tenant_id=tenant_a.id, name="Gala Night")
    db_session.add(event)
    db_session.commit()
    return event


@pytest.fixture(scope='function')
def event_b(db_session, tenant_b):
    event = Event(tenant_id=tenant_b.id, name="Summit Dinner")
    db_session.add(event)
    db_session.commit()
    return event


@pytest.fixture(scope='function')
def zone_north(db_session, event_a):
    zone = Zone(tenant_id=event_a.tenant_id, event_id=event_a.id, name="North Terrace")
    db_session.add(zone)
    db_session.commit()
    return zone


@pytest.fixture(scope='function')
def zone_south(db_session, event_a):
    zone = Zone(tenant_id=event_a.tenant_id, event_id=event_a.id, name="South Hall")
    db_session.add(zone)
    db_session.commit()
    return zone


@pytest.fixture(scope='function')
def table_north(db_session, zone_north):
    table = VenueTable(
        tenant_id=zone_north.tenant_id, event_id=zone_north.event_id, zone_id=zone_north.id, table_number="12"
    )
    db_session.add(table)
    db_session.commit()
    return table


@pytest.fixture(scope='function')
def table_south(db_session, zone_south):
    table = VenueTable(
        tenant_id=zone_south.tenant_id, event_id=zone_south.event_id, zone_id=zone_south.id, table_number="30"
    )
    db_session.add(table)
    db_session.commit()
    return table


# ----------------------------------------------------------------------------
# Menu
# ----------------------------------------------------------------------------

def _menu_item(db_session, event, name, price_cents, station_type, inventory=None):
    item = MenuItem(
        tenant_id=event.tenant_id,
        event_id=event.id,
        name=name,
        price_cents=price_cents,
        station_type=station_type,
        starting_inventory=inventory,
        current_inventory=inventory,
    )
    db_session.add(item)
    db_session.commit()
    return item


@pytest.fixture(scope='function')
def beer(db_session, event_a):
    """Stock-tracked drink, 5.00."""
    return _menu_item(db_session, event_a, "Lager", 500, StationType.DRINK_DISPENSER, inventory=10)


@pytest.fixture(scope='function')
def steak(db_session, event_a):
    """Untracked meal, 20.00."""
    return _menu_item(db_session, event_a, "Steak Frites", 2000, StationType.MEAL_DISPENSER)


@pytest.fixture(scope='function')
def foreign_dish(db_session, event_b):
    return _menu_item(db_session, event_b, "Risotto", 1800, StationType.MEAL_DISPENSER)


# ----------------------------------------------------------------------------
# Callers (identity is asserted upstream; user ids are opaque)
# ----------------------------------------------------------------------------

@pytest.fixture(scope='function')
def manager(tenant_a):
    return Caller(user_id=1, tenant_id=tenant_a.id, role=Role.TENANT_ADMIN)


@pytest.fixture(scope='function')
def waiter(tenant_a):
    return Caller(user_id=10, tenant_id=tenant_a.id, role=Role.WAITER)


@pytest.fixture(scope='function')
def cashier(tenant_a):
    return Caller(user_id=30, tenant_id=tenant_a.id, role=Role.CASHIER)


@pytest.fixture(scope='function')
def bar_staff(tenant_a):
    return Caller(user_id=40, tenant_id=tenant_a.id, role=Role.BAR_STAFF)


@pytest.fixture(scope='function')
def drink_staff(db_session, tenant_a, zone_north):
    """Drink dispenser working the north zone."""
    caller = Caller(user_id=20, tenant_id=tenant_a.id, role=Role.DRINK_DISPENSER)
    scope_service.assign_zone_role(tenant_a.id, zone_north.id, caller.user_id, caller.role)
    return caller


@pytest.fixture(scope='function')
def meal_staff(db_session, tenant_a, zone_north):
    """Meal dispenser working the north zone."""
    caller = Caller(user_id=21, tenant_id=tenant_a.id, role=Role.MEAL_DISPENSER)
    scope_service.assign_zone_role(tenant_a.id, zone_north.id, caller.user_id, caller.role)
    return caller


@pytest.fixture(scope='function')
def outsider(tenant_b):
    """Tenant admin of the other tenant."""
    return Caller(user_id=99, tenant_id=tenant_b.id, role=Role.TENANT_ADMIN)


# ----------------------------------------------------------------------------
# Orders
# ----------------------------------------------------------------------------

@pytest.fixture(scope='function')
def open_order(waiter, event_a, table_north, beer, steak):
    """Table 12: one Lager (5.00) and one Steak Frites (20.00), both pending."""
    return order_service.create_order(
        waiter,
        event_a.id,
        [{"menu_item_id": beer.id, "quantity": 1}, {"menu_item_id": steak.id, "quantity": 1}],
        table_id=table_north.id,
    )


def item_for(order, menu_item):
    return next(item for item in order.items if item.menu_item_id == menu_item.id)


def serve(order, waiter, station_callers):
    """Mark every item ready through its station, then the order served."""
    by_station = {station_for_role(c.role): c for c in station_callers}
    for item in list(order.items):
        station_service.mark_item_ready(by_station[item.station_type], item.id)
    return order_service.mark_order_served(waiter, order.id)


@pytest.fixture(scope='function')
def served_order(open_order, waiter, drink_staff, meal_staff):
    """open_order after both stations finished and the waiter served it."""
    return serve(open_order, waiter, [drink_staff, meal_staff])


def caller_headers(caller):
    """Identity headers the upstream gateway would set."""
    return {
        'X-User-Id': str(caller.user_id),
        'X-Tenant-Id': str(caller.tenant_id),
        'X-Role': caller.role,
    }
