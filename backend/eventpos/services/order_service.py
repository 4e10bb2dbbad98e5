# Overview: Order aggregate: creation, numbering, totals, serving and walk-up sales.

"""
EventPOS Order Service

================================================================================
PURPOSE: Own the order header and its items as one aggregate.
================================================================================

WHY THIS EXISTS:
- One canonical total: sum of active item line totals until paid.
- One place that refreshes the cached order status from its items.
- The waiter's "served" transition must never leave an item ready while
  the order reads served.

DESIGN PRINCIPLES:
- Item prices are captured at creation; menu edits never touch open orders.
- original_total_cents is written once, at creation.
- Order status refreshes are compare-and-swap on the observed status and
  never touch a paid order.
- Walk-up (bar) sales skip routing: items are created served and the
  order is immediately payable.

LIFECYCLE:
    create_order -> (stations) -> mark_order_served -> (cashier) paid

================================================================================
"""

from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from flask import current_app

from ..errors import NotFoundError, StateConflictError, ValidationError
from ..extensions import db
from ..models import Event, MenuItem, Order, OrderItem, VenueTable
from ..time_utils import utcnow
from ..validation import parse_item_lines
from .concurrency import conditional_update, run_with_retry
from .event_service import record_event
from .identity_service import Caller
from .inventory_service import consume_for_items
from .lifecycle_service import (
    DISPATCHED, INACTIVE_ITEM_STATUSES, PAID, PENDING, QUEUE_STATUSES, READY, SERVED,
    VALID_STATUSES, can_mark_served, derive_order_status,
)
from .tenant_service import require_in_tenant, require_many_in_tenant


WALKUP_TABLE_NUMBER = "BAR"
ORDER_NUMBER_PREFIX = "ORD-"

# Bounded re-reads when a concurrent writer changes the order status under us
_REFRESH_ATTEMPTS = 5

# Two concurrent creates can race for the same per-event number
_NUMBERING_ATTEMPTS = 3


def format_order_number(sequence: int) -> str:
    return f"{ORDER_NUMBER_PREFIX}{sequence:04d}"


def next_order_number(event_id: int) -> str:
    """Next sequential number for the event (orders are never deleted)."""
    count = db.session.query(func.count(Order.id)).filter(Order.event_id == event_id).scalar() or 0
    return format_order_number(count + 1)


def _with_numbering_retry(op):
    for attempt in range(_NUMBERING_ATTEMPTS):
        try:
            return run_with_retry(op)
        except IntegrityError:
            db.session.rollback()
            if attempt >= _NUMBERING_ATTEMPTS - 1:
                raise StateConflictError("Could not allocate an order number; retry the order")


def get_order(tenant_id: int, order_id: int) -> Order:
    return require_in_tenant(Order, order_id, tenant_id, label="Order")


def list_orders(tenant_id: int, event_id: int, *, status: str | None = None) -> list[Order]:
    if status is not None and status not in VALID_STATUSES:
        raise ValidationError(f"Unknown order status '{status}'")
    require_in_tenant(Event, event_id, tenant_id, label="Event")
    query = db.session.query(Order).filter_by(tenant_id=tenant_id, event_id=event_id)
    if status:
        query = query.filter_by(status=status)
    return query.order_by(Order.created_at.asc(), Order.id.asc()).all()


# ============================================================================
# PROJECTION REFRESH
# ============================================================================

def refresh_order_projection(order_id: int, *, actor_user_id: int | None = None) -> Order:
    """
    Recompute the cached status and total of one order from its items.

    Participates in the caller's transaction (does not commit). A paid
    order is left untouched: its total is frozen.
    """
    for _ in range(_REFRESH_ATTEMPTS):
        order = db.session.get(Order, order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        if order.status == PAID:
            return order

        observed = order.status
        derived = derive_order_status([item.status for item in order.items], observed)
        total = order.compute_total_cents()
        if derived == observed and total == order.total_amount_cents:
            return order

        now = utcnow()
        values = {"status": derived, "total_amount_cents": total, "updated_at": now}
        if derived in (DISPATCHED, READY, SERVED) and order.dispatched_at is None:
            values["dispatched_at"] = now
        if derived in (READY, SERVED) and order.ready_at is None:
            values["ready_at"] = now

        matched = conditional_update(
            Order,
            [Order.id == order_id, Order.status == observed, Order.status != PAID],
            values,
        )
        if matched:
            if derived != observed:
                record_event(
                    event_type="order.status_changed",
                    topic="orders",
                    tenant_id=order.tenant_id,
                    entity_type="order",
                    entity_id=order_id,
                    actor_user_id=actor_user_id,
                    payload={"from": observed, "to": derived, "total_amount_cents": total},
                )
            return db.session.get(Order, order_id)

    current_app.logger.warning("Order %s status kept changing during refresh", order_id)
    return db.session.get(Order, order_id)


# ============================================================================
# CREATION
# ============================================================================

def _resolve_table(tenant_id: int, event_id: int, table_id, table_number):
    """Returns (table_id, table_number). Station routing needs a table in a zone."""
    if table_id is not None:
        table = require_in_tenant(VenueTable, table_id, tenant_id, label="Table")
        if table.event_id != event_id:
            raise ValidationError(f"Table {table_id} does not belong to event {event_id}")
        return table.id, table.table_number

    if table_number is None or not str(table_number).strip():
        raise ValidationError("table_id or table_number is required; use a walk-up sale for bar orders")
    if str(table_number).strip().upper() == WALKUP_TABLE_NUMBER:
        raise ValidationError(f"Table {WALKUP_TABLE_NUMBER} is the walk-up counter; use a walk-up sale")

    table = (
        db.session.query(VenueTable)
        .filter_by(tenant_id=tenant_id, event_id=event_id, table_number=str(table_number).strip())
        .first()
    )
    if table is None:
        raise NotFoundError(f"Table {table_number} not found at event {event_id}")
    return table.id, table.table_number


def _load_menu_items(tenant_id: int, event_id: int, lines: list[dict]) -> dict:
    menu_items = require_many_in_tenant(
        MenuItem, [line["menu_item_id"] for line in lines], tenant_id, label="Menu item"
    )
    for menu_item in menu_items.values():
        if menu_item.event_id != event_id:
            raise ValidationError(f"Menu item {menu_item.id} does not belong to event {event_id}")
        if not menu_item.is_available:
            raise StateConflictError(f"{menu_item.name} is unavailable")
    return menu_items


def _build_items(tenant_id: int, lines: list[dict], menu_items: dict, *, status: str, now) -> list[OrderItem]:
    items = []
    for line in lines:
        menu_item = menu_items[line["menu_item_id"]]
        item = OrderItem(
            tenant_id=tenant_id,
            menu_item_id=menu_item.id,
            station_type=menu_item.station_type,
            quantity=line["quantity"],
            price_cents=menu_item.price_cents,
            status=status,
            notes=line.get("notes"),
        )
        if status == SERVED:
            item.served_at = now
        items.append(item)
    return items


def create_order(
    caller: Caller,
    event_id: int,
    items,
    *,
    table_id: int | None = None,
    table_number: str | None = None,
    guest_name: str | None = None,
) -> Order:
    """
    Create an order with its items, routed to stations as pending work.

    Raises:
        ValidationError: empty items, bad quantities, table or menu item
            from another event
        NotFoundError: event/table/menu item not in tenant
        StateConflictError: a menu item is unavailable
    """
    lines = parse_item_lines(items)
    require_in_tenant(Event, event_id, caller.tenant_id, label="Event")
    resolved_table_id, resolved_table_number = _resolve_table(
        caller.tenant_id, event_id, table_id, table_number
    )
    menu_items = _load_menu_items(caller.tenant_id, event_id, lines)

    def _op():
        now = utcnow()
        order_items = _build_items(caller.tenant_id, lines, menu_items, status=PENDING, now=now)
        total = sum(item.line_total_cents for item in order_items)
        order = Order(
            tenant_id=caller.tenant_id,
            event_id=event_id,
            order_number=next_order_number(event_id),
            waiter_id=caller.user_id,
            table_id=resolved_table_id,
            table_number=resolved_table_number,
            guest_name=guest_name,
            status=PENDING,
            total_amount_cents=total,
            original_total_cents=total,
        )
        order.items = order_items
        db.session.add(order)
        db.session.flush()

        record_event(
            event_type="order.created",
            topic="orders",
            tenant_id=caller.tenant_id,
            entity_type="order",
            entity_id=order.id,
            actor_user_id=caller.user_id,
            payload={
                "order_number": order.order_number,
                "table_number": order.table_number,
                "total_amount_cents": total,
                "item_ids": [item.id for item in order_items],
            },
        )
        db.session.commit()
        return order

    return _with_numbering_retry(_op)


def add_items(caller: Caller, order_id: int, items) -> Order:
    """Append pending items to an unpaid order; total and status are refreshed."""
    lines = parse_item_lines(items)
    order = get_order(caller.tenant_id, order_id)
    if order.status == PAID:
        raise StateConflictError(f"Order {order.order_number} is already paid")
    menu_items = _load_menu_items(caller.tenant_id, order.event_id, lines)

    def _op():
        current = db.session.get(Order, order_id)
        if current.status == PAID:
            raise StateConflictError(f"Order {current.order_number} is already paid")
        new_items = _build_items(caller.tenant_id, lines, menu_items, status=PENDING, now=utcnow())
        for item in new_items:
            item.order_id = order_id
            db.session.add(item)
        db.session.flush()

        record_event(
            event_type="order.items_added",
            topic="order_items",
            tenant_id=caller.tenant_id,
            entity_type="order",
            entity_id=order_id,
            actor_user_id=caller.user_id,
            payload={"item_ids": [item.id for item in new_items]},
        )
        refreshed = refresh_order_projection(order_id, actor_user_id=caller.user_id)
        db.session.commit()
        return refreshed

    return run_with_retry(_op)


def create_walkup_sale(caller: Caller, event_id: int, items, *, guest_name: str | None = None) -> Order:
    """
    Bar fast path: the order is created served, with its items served.

    No station routing happens and inventory is consumed immediately, so the
    order can go straight to payment.
    """
    lines = parse_item_lines(items)
    require_in_tenant(Event, event_id, caller.tenant_id, label="Event")
    menu_items = _load_menu_items(caller.tenant_id, event_id, lines)

    def _op():
        now = utcnow()
        order_items = _build_items(caller.tenant_id, lines, menu_items, status=SERVED, now=now)
        for item in order_items:
            item.assigned_to = caller.user_id
        total = sum(item.line_total_cents for item in order_items)
        order = Order(
            tenant_id=caller.tenant_id,
            event_id=event_id,
            order_number=next_order_number(event_id),
            waiter_id=caller.user_id,
            table_id=None,
            table_number=WALKUP_TABLE_NUMBER,
            guest_name=guest_name,
            status=SERVED,
            served_at=now,
            total_amount_cents=total,
            original_total_cents=total,
        )
        order.items = order_items
        db.session.add(order)
        db.session.flush()

        consume_for_items(order_items, actor_user_id=caller.user_id)

        record_event(
            event_type="order.walkup_served",
            topic="orders",
            tenant_id=caller.tenant_id,
            entity_type="order",
            entity_id=order.id,
            actor_user_id=caller.user_id,
            payload={"order_number": order.order_number, "total_amount_cents": total},
        )
        db.session.commit()
        return db.session.get(Order, order.id)

    return _with_numbering_retry(_op)


# ============================================================================
# SERVED (waiter)
# ============================================================================

def _served_rejection_reason(order: Order) -> str:
    if order.status in (SERVED, PAID):
        return f"Order {order.order_number} is already {order.status}"
    if can_mark_served(item.status for item in order.items):
        return f"Order {order.order_number} changed while being served; refresh and retry"
    active = [item for item in order.items if item.status not in INACTIVE_ITEM_STATUSES]
    if not active:
        return f"Order {order.order_number} has no active items to serve"
    unfinished = [item.id for item in active if item.status in QUEUE_STATUSES]
    if unfinished:
        return (
            f"Order {order.order_number} still has items being prepared: "
            f"{', '.join(str(i) for i in unfinished)}"
        )
    return f"Order {order.order_number} changed while being served; refresh and retry"


def mark_order_served(caller: Caller, order_id: int) -> Order:
    """
    Mark an order served and cascade its ready items to served, atomically.

    The readiness check and the write are one conditional UPDATE: the order
    row only changes if, at that instant, it has an active item and none of
    its items is pending or dispatched.

    Raises:
        NotFoundError: order not in tenant
        StateConflictError: already served/paid, or items still being prepared
    """
    order = get_order(caller.tenant_id, order_id)

    def _op():
        now = utcnow()
        has_active = (
            select(OrderItem.id)
            .where(OrderItem.order_id == order_id, OrderItem.status.notin_(INACTIVE_ITEM_STATUSES))
            .exists()
        )
        has_unfinished = (
            select(OrderItem.id)
            .where(OrderItem.order_id == order_id, OrderItem.status.in_(QUEUE_STATUSES))
            .exists()
        )
        matched = conditional_update(
            Order,
            [
                Order.id == order_id,
                Order.tenant_id == caller.tenant_id,
                Order.status.notin_((SERVED, PAID)),
                has_active,
                ~has_unfinished,
            ],
            {"status": SERVED, "served_at": now, "updated_at": now},
        )
        if not matched:
            db.session.rollback()
            raise StateConflictError(_served_rejection_reason(db.session.get(Order, order_id)))

        ready_ids = [
            row.id for row in db.session.query(OrderItem.id)
            .filter(OrderItem.order_id == order_id, OrderItem.status == READY)
            .all()
        ]
        if ready_ids:
            conditional_update(
                OrderItem,
                [OrderItem.id.in_(ready_ids), OrderItem.status == READY],
                {"status": SERVED, "served_at": now, "updated_at": now},
            )
        served_items = (
            db.session.query(OrderItem)
            .filter(OrderItem.id.in_(ready_ids), OrderItem.status == SERVED)
            .all()
        ) if ready_ids else []

        consume_for_items(served_items, actor_user_id=caller.user_id)

        record_event(
            event_type="order.served",
            topic="orders",
            tenant_id=caller.tenant_id,
            entity_type="order",
            entity_id=order_id,
            actor_user_id=caller.user_id,
            payload={"order_number": order.order_number, "served_item_ids": ready_ids},
        )
        db.session.commit()
        return db.session.get(Order, order_id)

    return run_with_retry(_op)
