# Overview: Utility functions for role lookups and validation.

from .definitions import STATION_FOR_ROLE
from .roles import ALL_ROLES, ZONE_BINDABLE_ROLES


def station_for_role(role):
    """Station type served by a role, or None for non-station roles."""
    return STATION_FOR_ROLE.get(role)


def validate_role(code):
    """Check if a role code is valid."""
    return code in ALL_ROLES


def is_zone_bindable(code):
    return code in ZONE_BINDABLE_ROLES
