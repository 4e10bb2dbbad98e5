# Overview: Order/item state machine; pure functions shared by every writer.

"""
EventPOS Order/Item Lifecycle

================================================================================
PURPOSE: One definition of the item status graph and of the order status
         derived from it.
================================================================================

ITEM STATE MACHINE:
    pending -> dispatched -> ready -> served -> paid
    pending|dispatched -> rejected
    served -> returned

    pending -> ready is allowed: a station may finish an item it never
    explicitly dispatched.

    paid, rejected and returned are terminal.

ORDER STATUS:
    Derived from the item snapshot by derive_order_status(). The stored
    orders.status is a cached projection, refreshed by conditional writes
    after every item transition. Only two order transitions are driven
    directly, and both need elevated authority:
    - served (waiter): every active item ready or served
    - paid (cashier): ledger reconciled

RULES:
1. No status is written without checking can_transition() or without a
   conditional UPDATE guarded on the allowed source statuses.
2. A paid order is frozen: derivation returns paid regardless of items.
3. Rejected and returned items are inactive and never count toward totals.

================================================================================
"""

from __future__ import annotations
from typing import Iterable


# ============================================================================
# STATUS CONSTANTS
# ============================================================================

PENDING = "pending"
DISPATCHED = "dispatched"
READY = "ready"
SERVED = "served"
PAID = "paid"
REJECTED = "rejected"
RETURNED = "returned"

VALID_STATUSES = {PENDING, DISPATCHED, READY, SERVED, PAID, REJECTED, RETURNED}

INACTIVE_ITEM_STATUSES = (REJECTED, RETURNED)

# Statuses a station can still act on
QUEUE_STATUSES = (PENDING, DISPATCHED)

ITEM_TRANSITIONS = {
    PENDING: frozenset({DISPATCHED, READY, REJECTED}),
    DISPATCHED: frozenset({READY, REJECTED}),
    READY: frozenset({SERVED}),
    SERVED: frozenset({PAID, RETURNED}),
    PAID: frozenset(),
    REJECTED: frozenset(),
    RETURNED: frozenset(),
}


class LifecycleError(ValueError):
    """
    Raised when a status value is unknown.

    Illegal transitions between known statuses are reported as
    StateConflictError by the services that attempt them.
    """
    pass


def validate_status(status: str) -> None:
    if status not in VALID_STATUSES:
        raise LifecycleError(
            f"Invalid status '{status}'. Must be one of: {', '.join(sorted(VALID_STATUSES))}"
        )


def can_transition(from_status: str, to_status: str) -> bool:
    """
    Check whether an item may move from one status to another.

    Same-status moves are not transitions and return False; callers
    surface them as conflicts ("item is already ready").
    """
    validate_status(from_status)
    validate_status(to_status)
    return to_status in ITEM_TRANSITIONS[from_status]


def allowed_sources(to_status: str) -> tuple[str, ...]:
    """Statuses from which `to_status` is reachable in one step."""
    validate_status(to_status)
    return tuple(sorted(s for s, targets in ITEM_TRANSITIONS.items() if to_status in targets))


def is_active(status: str) -> bool:
    return status not in INACTIVE_ITEM_STATUSES


def derive_order_status(item_statuses: Iterable[str], current_order_status: str | None = None) -> str:
    """
    Pure derivation of the order status from its items.

    Args:
        item_statuses: statuses of every item of the order (any order)
        current_order_status: the stored order status; a paid order stays paid

    Returns:
        The order status the item snapshot implies.
    """
    if current_order_status == PAID:
        return PAID

    statuses = list(item_statuses)
    for status in statuses:
        validate_status(status)

    if not statuses:
        return PENDING

    active = [s for s in statuses if is_active(s)]
    if not active:
        return REJECTED if all(s == REJECTED for s in statuses) else RETURNED

    if all(s == PAID for s in active):
        return PAID
    if all(s in (SERVED, PAID) for s in active):
        return SERVED
    if all(s in (READY, SERVED) for s in active):
        return READY
    if any(s != PENDING for s in active):
        return DISPATCHED
    return PENDING


def can_mark_served(item_statuses: Iterable[str]) -> bool:
    """At least one active item, and every active item ready or served."""
    active = [s for s in item_statuses if is_active(s)]
    return bool(active) and all(s in (READY, SERVED) for s in active)
