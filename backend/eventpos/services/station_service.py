# Overview: Station queues and per-item transitions (dispatch, ready, reject, out-of-stock).

"""
EventPOS Station Service

================================================================================
PURPOSE: Route order items to the station that prepares them and let that
         station move them forward.
================================================================================

VISIBILITY:
    A station actor sees an item iff
    - the item's station_type is the station of the actor's role
    - the item is pending or dispatched
    - the item's order sits at a table in one of the actor's zones
    - everything is in the actor's tenant
    No zone at the event means an empty queue (no item query is issued).

TRANSITIONS:
    All item writes are conditional: UPDATE ... WHERE status IN (<sources>).
    Zero matched rows means another actor got there first and the caller
    gets StateConflictError with the status it lost to.

OUT OF STOCK:
    Marking a menu item unavailable rejects every pending/dispatched item
    of it in the same transaction, verifies nothing open is left, and
    retries a bounded number of times before raising ConsistencyError.

================================================================================
"""

from __future__ import annotations

from flask import current_app

from ..errors import ConsistencyError, ScopeError, StateConflictError
from ..extensions import db
from ..models import MenuItem, Order, OrderItem, VenueTable
from ..time_utils import utcnow, to_utc_z
from .concurrency import conditional_update, run_with_retry
from .event_service import record_event
from .identity_service import Caller
from .lifecycle_service import DISPATCHED, PENDING, QUEUE_STATUSES, READY, REJECTED, allowed_sources
from .order_service import refresh_order_projection
from .scope_service import CallerScope, require_station_scope, resolve_scope, table_ids_for_zones
from .tenant_service import require_in_tenant


# ============================================================================
# QUEUE
# ============================================================================

def station_queue(caller: Caller, event_id: int) -> list[dict]:
    """
    Open work for the caller's station and zones at one event.

    Ordered by order creation, then item id.
    """
    scope = resolve_scope(caller, event_id)
    station_type = require_station_scope(scope)
    if not scope.has_zones:
        return []

    table_ids = table_ids_for_zones(caller.tenant_id, scope.zone_ids)
    if not table_ids:
        return []

    rows = (
        db.session.query(OrderItem, Order, VenueTable, MenuItem)
        .join(Order, Order.id == OrderItem.order_id)
        .join(VenueTable, VenueTable.id == Order.table_id)
        .join(MenuItem, MenuItem.id == OrderItem.menu_item_id)
        .filter(
            OrderItem.tenant_id == caller.tenant_id,
            OrderItem.station_type == station_type,
            OrderItem.status.in_(QUEUE_STATUSES),
            Order.event_id == event_id,
            Order.table_id.in_(table_ids),
        )
        .order_by(Order.created_at.asc(), Order.id.asc(), OrderItem.id.asc())
        .all()
    )
    return [
        {
            "order_item_id": item.id,
            "order_id": order.id,
            "order_number": order.order_number,
            "table_number": table.table_number,
            "zone_id": table.zone_id,
            "guest_name": order.guest_name,
            "menu_item_id": menu_item.id,
            "menu_item_name": menu_item.name,
            "quantity": item.quantity,
            "notes": item.notes,
            "status": item.status,
            "created_at": to_utc_z(item.created_at),
        }
        for item, order, table, menu_item in rows
    ]


def _require_item_in_scope(caller: Caller, item_id: int) -> tuple[OrderItem, CallerScope]:
    item = require_in_tenant(OrderItem, item_id, caller.tenant_id, label="Order item")
    order = item.order
    scope = resolve_scope(caller, order.event_id)
    station_type = require_station_scope(scope)
    if item.station_type != station_type:
        raise ScopeError(f"Item {item_id} belongs to the {item.station_type} station, not {station_type}")
    table = order.table
    if table is None or table.zone_id not in scope.zone_ids:
        raise ScopeError(f"Item {item_id} is for a table outside your zones")
    return item, scope


# ============================================================================
# ITEM TRANSITIONS
# ============================================================================

def _transition_item(caller: Caller, item_id: int, to_status: str, event_type: str, *,
                     stamp: str | None = None, extra: dict | None = None,
                     payload: dict | None = None) -> OrderItem:
    item, _scope = _require_item_in_scope(caller, item_id)
    sources = allowed_sources(to_status)
    order_id = item.order_id

    def _op():
        now = utcnow()
        values = {"status": to_status, "updated_at": now, **(extra or {})}
        if stamp:
            values[stamp] = now
        matched = conditional_update(
            OrderItem,
            [OrderItem.id == item_id, OrderItem.tenant_id == caller.tenant_id, OrderItem.status.in_(sources)],
            values,
        )
        if not matched:
            db.session.rollback()
            current = db.session.get(OrderItem, item_id)
            raise StateConflictError(
                f"Item {item_id} is {current.status}; it cannot become {to_status}",
                details={"order_item_id": item_id, "status": current.status},
            )

        record_event(
            event_type=event_type,
            topic="order_items",
            tenant_id=caller.tenant_id,
            entity_type="order_item",
            entity_id=item_id,
            actor_user_id=caller.user_id,
            payload={"order_id": order_id, "status": to_status, **(payload or {})},
        )
        refresh_order_projection(order_id, actor_user_id=caller.user_id)
        db.session.commit()
        return db.session.get(OrderItem, item_id)

    return run_with_retry(_op)


def dispatch_item(caller: Caller, item_id: int) -> OrderItem:
    return _transition_item(caller, item_id, DISPATCHED, "item.dispatched", stamp="dispatched_at")


def mark_item_ready(caller: Caller, item_id: int) -> OrderItem:
    """
    Mark an item ready (from pending or dispatched) and claim it.

    Of two stations racing on the same item exactly one succeeds; the other
    gets StateConflictError.
    """
    return _transition_item(
        caller, item_id, READY, "item.ready", stamp="ready_at", extra={"assigned_to": caller.user_id}
    )


def reject_item(caller: Caller, item_id: int, reason: str | None = None) -> OrderItem:
    return _transition_item(caller, item_id, REJECTED, "item.rejected", payload={"reason": reason})


# ============================================================================
# AVAILABILITY / OUT OF STOCK
# ============================================================================

def _open_item_ids(menu_item_id: int) -> list[int]:
    return [
        row.id for row in db.session.query(OrderItem.id)
        .filter(OrderItem.menu_item_id == menu_item_id, OrderItem.status.in_((PENDING, DISPATCHED)))
        .order_by(OrderItem.id.asc())
        .all()
    ]


def set_menu_item_unavailable(tenant_id: int, menu_item_id: int, *, actor_user_id: int | None = None,
                              reason: str | None = None) -> dict:
    """
    Mark a menu item unavailable and reject its open (pending/dispatched) items.

    Participates in the caller's transaction (does not commit). After each
    bulk update a verification read looks for items still open; they are
    retried up to OUT_OF_STOCK_REJECT_ATTEMPTS times.

    Raises:
        ConsistencyError naming the item ids that could not be rejected
    """
    now = utcnow()
    conditional_update(
        MenuItem,
        [MenuItem.id == menu_item_id, MenuItem.tenant_id == tenant_id],
        {"is_available": False, "updated_at": now},
    )

    attempts = max(1, int(current_app.config.get("OUT_OF_STOCK_REJECT_ATTEMPTS", 3)))
    rejected_ids: list[int] = []
    remaining = _open_item_ids(menu_item_id)
    for _ in range(attempts):
        if not remaining:
            break
        conditional_update(
            OrderItem,
            [OrderItem.id.in_(remaining), OrderItem.status.in_((PENDING, DISPATCHED))],
            {"status": REJECTED, "updated_at": now},
        )
        rejected_ids.extend(
            row.id for row in db.session.query(OrderItem.id)
            .filter(OrderItem.id.in_(remaining), OrderItem.status == REJECTED)
            .all()
        )
        remaining = _open_item_ids(menu_item_id)

    if remaining:
        current_app.logger.error(
            "Out-of-stock reject for menu item %s left items open after %d attempts: %s",
            menu_item_id, attempts, remaining,
        )
        raise ConsistencyError(
            f"Could not reject items {', '.join(str(i) for i in remaining)}; retry marking the item unavailable",
            details={"menu_item_id": menu_item_id, "unrejected_item_ids": remaining},
        )

    rejected_ids = sorted(set(rejected_ids))
    affected_order_ids = sorted({
        row.order_id for row in db.session.query(OrderItem.order_id)
        .filter(OrderItem.id.in_(rejected_ids))
        .all()
    }) if rejected_ids else []
    for order_id in affected_order_ids:
        refresh_order_projection(order_id, actor_user_id=actor_user_id)

    record_event(
        event_type="menu_item.unavailable",
        topic="menu_items",
        tenant_id=tenant_id,
        entity_type="menu_item",
        entity_id=menu_item_id,
        actor_user_id=actor_user_id,
        payload={
            "reason": reason,
            "rejected_item_ids": rejected_ids,
            "affected_order_ids": affected_order_ids,
        },
    )
    return {
        "menu_item_id": menu_item_id,
        "rejected_item_ids": rejected_ids,
        "affected_order_ids": affected_order_ids,
    }


def mark_menu_item_unavailable(caller: Caller, menu_item_id: int, reason: str | None = None) -> dict:
    require_in_tenant(MenuItem, menu_item_id, caller.tenant_id, label="Menu item")

    def _op():
        result = set_menu_item_unavailable(
            caller.tenant_id, menu_item_id, actor_user_id=caller.user_id, reason=reason or "out_of_stock"
        )
        db.session.commit()
        return result

    return run_with_retry(_op)


def mark_menu_item_available(caller: Caller, menu_item_id: int) -> MenuItem:
    """Restore availability; previously rejected items stay rejected."""
    require_in_tenant(MenuItem, menu_item_id, caller.tenant_id, label="Menu item")

    def _op():
        conditional_update(
            MenuItem,
            [MenuItem.id == menu_item_id, MenuItem.tenant_id == caller.tenant_id],
            {"is_available": True, "updated_at": utcnow()},
        )
        record_event(
            event_type="menu_item.available",
            topic="menu_items",
            tenant_id=caller.tenant_id,
            entity_type="menu_item",
            entity_id=menu_item_id,
            actor_user_id=caller.user_id,
        )
        db.session.commit()
        return db.session.get(MenuItem, menu_item_id)

    return run_with_retry(_op)
