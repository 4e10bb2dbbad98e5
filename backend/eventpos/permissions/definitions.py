# Overview: Role definitions and the single role -> station enumeration.
# Each role is defined as: (code, name, description, station_type or None)

from .categories import StationType
from .roles import Role


ROLE_DEFINITIONS = [
    (
        Role.TENANT_ADMIN,
        "Tenant Admin",
        "Administers every event of the tenant",
        None,
    ),
    (
        Role.EVENT_MANAGER,
        "Event Manager",
        "Runs an event: zones, allocations, availability",
        None,
    ),
    (
        Role.WAITER,
        "Waiter",
        "Takes orders at tables and marks them served",
        None,
    ),
    (
        Role.CASHIER,
        "Cashier",
        "Records payments, approves refunds, confirms returns",
        None,
    ),
    (
        Role.BAR_STAFF,
        "Bar Staff",
        "Works the bar queue and walk-up sales",
        StationType.BAR,
    ),
    (
        Role.MIXOLOGIST,
        "Mixologist",
        "Prepares cocktails",
        StationType.MIXOLOGIST,
    ),
    (
        Role.DRINK_DISPENSER,
        "Drink Dispenser",
        "Dispenses drinks",
        StationType.DRINK_DISPENSER,
    ),
    (
        Role.MEAL_DISPENSER,
        "Meal Dispenser",
        "Dispenses meals",
        StationType.MEAL_DISPENSER,
    ),
]

STATION_FOR_ROLE = {
    code: station for code, _name, _desc, station in ROLE_DEFINITIONS if station is not None
}
