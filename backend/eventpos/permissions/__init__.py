# Overview: Role and station package.
# Re-exports all public APIs.

from .categories import StationType
from .roles import (
    Role,
    ALL_ROLES,
    ZONE_BINDABLE_ROLES,
    MANAGER_ROLES,
    STATION_ROLES,
    ORDER_ROLES,
    PAYMENT_ROLES,
)
from .definitions import ROLE_DEFINITIONS, STATION_FOR_ROLE
from .helpers import (
    station_for_role,
    validate_role,
    is_zone_bindable,
)

__all__ = [
    "StationType",
    "Role",
    "ALL_ROLES",
    "ZONE_BINDABLE_ROLES",
    "MANAGER_ROLES",
    "STATION_ROLES",
    "ORDER_ROLES",
    "PAYMENT_ROLES",
    "ROLE_DEFINITIONS",
    "STATION_FOR_ROLE",
    "station_for_role",
    "validate_role",
    "is_zone_bindable",
]
