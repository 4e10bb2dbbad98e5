# Overview: Role constants asserted by the identity gateway.


class Role:
    """Roles a caller can hold inside a tenant."""
    TENANT_ADMIN = "tenant_admin"
    EVENT_MANAGER = "event_manager"
    WAITER = "waiter"
    CASHIER = "cashier"
    BAR_STAFF = "bar_staff"
    MIXOLOGIST = "mixologist"
    DRINK_DISPENSER = "drink_dispenser"
    MEAL_DISPENSER = "meal_dispenser"


ALL_ROLES = frozenset({
    Role.TENANT_ADMIN,
    Role.EVENT_MANAGER,
    Role.WAITER,
    Role.CASHIER,
    Role.BAR_STAFF,
    Role.MIXOLOGIST,
    Role.DRINK_DISPENSER,
    Role.MEAL_DISPENSER,
})

# Roles that may hold a zone assignment (at most one actor per zone + role)
ZONE_BINDABLE_ROLES = frozenset({
    Role.CASHIER,
    Role.BAR_STAFF,
    Role.MIXOLOGIST,
    Role.DRINK_DISPENSER,
    Role.MEAL_DISPENSER,
    Role.EVENT_MANAGER,
})

# Roles that administer a tenant's events (allocations, assignments, availability)
MANAGER_ROLES = frozenset({Role.TENANT_ADMIN, Role.EVENT_MANAGER})

# Roles that work a preparation station queue
STATION_ROLES = frozenset({Role.BAR_STAFF, Role.MIXOLOGIST, Role.DRINK_DISPENSER, Role.MEAL_DISPENSER})

# Roles that take orders at tables
ORDER_ROLES = frozenset({Role.WAITER}) | MANAGER_ROLES

# Roles that handle money (the bar takes payment for walk-up sales)
PAYMENT_ROLES = frozenset({Role.CASHIER, Role.BAR_STAFF}) | MANAGER_ROLES
