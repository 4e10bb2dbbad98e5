# Overview: Station type constants; every order item is routed to exactly one.


class StationType:
    """Preparation stations an order item can be routed to."""
    DRINK_DISPENSER = "drink_dispenser"
    MEAL_DISPENSER = "meal_dispenser"
    MIXOLOGIST = "mixologist"
    BAR = "bar"
