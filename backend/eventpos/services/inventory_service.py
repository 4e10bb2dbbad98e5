# Overview: Inventory zone allocation, zone-to-zone transfers and consumption on service.

"""
EventPOS Inventory Zone Allocation

WHY: Stock for an event is counted once per menu item (current_inventory)
but physically sits in zones. Allocations earmark stock per zone; transfers
move it; serving an item consumes it.

INVARIANTS:
1. allocated_quantity >= 0 for every (menu item, zone) row
2. sum(allocated_quantity) over a menu item <= current_inventory
3. A transfer moves exactly `quantity` or nothing: the source decrement,
   the destination increment and the transfer log entry share one
   transaction.

CONSUMPTION:
    When items reach served, current_inventory and the allocation of the
    order's table zone drop by the served quantity (floored at 0). If the
    allocations then exceed inventory, the largest allocations are trimmed.
    Inventory reaching 0 marks the menu item unavailable, which rejects
    its open station work.
"""

from __future__ import annotations

from collections import defaultdict

from flask import current_app
from sqlalchemy import case, func
from sqlalchemy.exc import SQLAlchemyError

from ..errors import ConsistencyError, StateConflictError, ValidationError
from ..extensions import db
from ..models import InventoryZoneAllocation, InventoryZoneTransfer, MenuItem, Order, VenueTable, Zone
from ..time_utils import utcnow
from ..validation import coerce_int
from .concurrency import conditional_update, lock_for_update, run_with_retry
from .event_service import record_event
from .identity_service import Caller
from .tenant_service import require_in_tenant


def _floored_decrement(column, quantity: int):
    return case((column > quantity, column - quantity), else_=0)


def _allocations_for(menu_item_id: int) -> list[InventoryZoneAllocation]:
    return (
        db.session.query(InventoryZoneAllocation)
        .filter_by(menu_item_id=menu_item_id)
        .order_by(InventoryZoneAllocation.zone_id.asc())
        .all()
    )


def allocation_summary(tenant_id: int, menu_item_id: int) -> dict:
    menu_item = require_in_tenant(MenuItem, menu_item_id, tenant_id, label="Menu item")
    rows = _allocations_for(menu_item_id)
    allocated = sum(row.allocated_quantity for row in rows)
    return {
        "menu_item_id": menu_item.id,
        "menu_item_name": menu_item.name,
        "current_inventory": menu_item.current_inventory,
        "allocated_total": allocated,
        "unallocated": (menu_item.current_inventory - allocated) if menu_item.is_tracked else None,
        "allocations": [row.to_dict() for row in rows],
    }


def _require_zones_for_item(menu_item: MenuItem, zone_ids) -> dict:
    zones = (
        db.session.query(Zone)
        .filter(Zone.id.in_(list(zone_ids)), Zone.tenant_id == menu_item.tenant_id)
        .all()
    )
    found = {zone.id: zone for zone in zones}
    missing = sorted(set(zone_ids) - set(found))
    if missing:
        raise ValidationError(f"Zones not found: {', '.join(str(z) for z in missing)}")
    foreign = sorted(z.id for z in zones if z.event_id != menu_item.event_id)
    if foreign:
        raise ValidationError(
            f"Zones {', '.join(str(z) for z in foreign)} do not belong to event {menu_item.event_id}"
        )
    return found


# ============================================================================
# ALLOCATE
# ============================================================================

def allocate(caller: Caller, menu_item_id: int, quantities: dict) -> dict:
    """
    Set per-zone allocations for a menu item.

    Rows named in `quantities` are replaced; other zones keep their rows.
    Everything is validated before the first write.

    Raises:
        ValidationError: negative quantity, foreign zone, untracked item,
            or a resulting total above current_inventory
    """
    menu_item = require_in_tenant(MenuItem, menu_item_id, caller.tenant_id, label="Menu item")
    if not isinstance(quantities, dict) or not quantities:
        raise ValidationError("allocations must be a non-empty mapping of zone_id to quantity")
    if not menu_item.is_tracked:
        raise ValidationError(f"{menu_item.name} is not stock-tracked; nothing to allocate")

    requested = {}
    for raw_zone_id, raw_quantity in quantities.items():
        zone_id = coerce_int(raw_zone_id, "zone_id")
        quantity = coerce_int(raw_quantity, f"allocations[{zone_id}]")
        if quantity < 0:
            raise ValidationError(f"Allocation for zone {zone_id} must be >= 0")
        requested[zone_id] = quantity
    _require_zones_for_item(menu_item, requested.keys())

    def _op():
        item = lock_for_update(db.session.query(MenuItem).filter_by(id=menu_item_id)).first()
        existing = {row.zone_id: row for row in _allocations_for(menu_item_id)}
        untouched = sum(row.allocated_quantity for zone_id, row in existing.items() if zone_id not in requested)
        total = untouched + sum(requested.values())
        if total > item.current_inventory:
            db.session.rollback()
            raise ValidationError(
                f"Allocations total {total} exceeds available inventory {item.current_inventory} "
                f"for {item.name}"
            )

        now = utcnow()
        for zone_id, quantity in requested.items():
            row = existing.get(zone_id)
            if row is None:
                db.session.add(InventoryZoneAllocation(
                    tenant_id=item.tenant_id,
                    menu_item_id=menu_item_id,
                    zone_id=zone_id,
                    allocated_quantity=quantity,
                ))
            else:
                row.allocated_quantity = quantity
                row.updated_at = now

        record_event(
            event_type="inventory.allocated",
            topic="inventory_zone_allocations",
            tenant_id=item.tenant_id,
            entity_type="menu_item",
            entity_id=menu_item_id,
            actor_user_id=caller.user_id,
            payload={"allocations": {str(z): q for z, q in requested.items()}, "total": total},
        )
        db.session.commit()
        return allocation_summary(caller.tenant_id, menu_item_id)

    return run_with_retry(_op)


# ============================================================================
# TRANSFER
# ============================================================================

def _increment_allocation(tenant_id: int, menu_item_id: int, zone_id: int, quantity: int, now) -> None:
    matched = conditional_update(
        InventoryZoneAllocation,
        [InventoryZoneAllocation.menu_item_id == menu_item_id, InventoryZoneAllocation.zone_id == zone_id],
        {
            "allocated_quantity": InventoryZoneAllocation.allocated_quantity + quantity,
            "updated_at": now,
        },
    )
    if not matched:
        db.session.add(InventoryZoneAllocation(
            tenant_id=tenant_id,
            menu_item_id=menu_item_id,
            zone_id=zone_id,
            allocated_quantity=quantity,
        ))
        db.session.flush()


def _record_transfer_failure(tenant_id: int, menu_item_id: int, from_zone_id: int, to_zone_id: int,
                             quantity: int, actor_user_id: int, error: Exception) -> None:
    try:
        record_event(
            event_type="inventory.transfer_failed",
            topic="inventory_zone_allocations",
            tenant_id=tenant_id,
            entity_type="menu_item",
            entity_id=menu_item_id,
            actor_user_id=actor_user_id,
            payload={
                "from_zone_id": from_zone_id,
                "to_zone_id": to_zone_id,
                "quantity": quantity,
                "error": str(error),
            },
        )
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Could not record failed transfer for menu item %s", menu_item_id)


def transfer(caller: Caller, menu_item_id: int, from_zone_id: int, to_zone_id: int, quantity: int,
             reason: str | None = None) -> InventoryZoneTransfer:
    """
    Move allocated stock between two zones of the menu item's event.

    Raises:
        ValidationError: quantity <= 0, same zone, foreign zone, or more than
            the source zone holds
        StateConflictError: the source allocation shrank concurrently
        ConsistencyError: the transfer failed after the source decrement;
            the transaction was rolled back and the failure logged
    """
    menu_item = require_in_tenant(MenuItem, menu_item_id, caller.tenant_id, label="Menu item")
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
        raise ValidationError("quantity must be a positive integer")
    if from_zone_id == to_zone_id:
        raise ValidationError("Source and destination zones must differ")
    _require_zones_for_item(menu_item, {from_zone_id, to_zone_id})

    source = (
        db.session.query(InventoryZoneAllocation)
        .filter_by(menu_item_id=menu_item_id, zone_id=from_zone_id)
        .first()
    )
    available = source.allocated_quantity if source else 0
    if quantity > available:
        raise ValidationError(
            f"Cannot transfer {quantity} of {menu_item.name}: zone {from_zone_id} holds {available}"
        )

    def _op():
        now = utcnow()
        decremented = conditional_update(
            InventoryZoneAllocation,
            [
                InventoryZoneAllocation.menu_item_id == menu_item_id,
                InventoryZoneAllocation.zone_id == from_zone_id,
                InventoryZoneAllocation.allocated_quantity >= quantity,
            ],
            {
                "allocated_quantity": InventoryZoneAllocation.allocated_quantity - quantity,
                "updated_at": now,
            },
        )
        if not decremented:
            db.session.rollback()
            raise StateConflictError(
                f"Zone {from_zone_id} no longer holds {quantity} of {menu_item.name}; refresh and retry"
            )

        try:
            _increment_allocation(caller.tenant_id, menu_item_id, to_zone_id, quantity, now)
            log_entry = InventoryZoneTransfer(
                tenant_id=caller.tenant_id,
                menu_item_id=menu_item_id,
                from_zone_id=from_zone_id,
                to_zone_id=to_zone_id,
                quantity=quantity,
                transferred_by=caller.user_id,
                reason=reason,
            )
            db.session.add(log_entry)
            record_event(
                event_type="inventory.transferred",
                topic="inventory_zone_allocations",
                tenant_id=caller.tenant_id,
                entity_type="menu_item",
                entity_id=menu_item_id,
                actor_user_id=caller.user_id,
                payload={"from_zone_id": from_zone_id, "to_zone_id": to_zone_id, "quantity": quantity},
            )
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            current_app.logger.error(
                "Zone transfer of %s x menu item %s from zone %s to zone %s failed after the source "
                "decrement; rolled back: %s",
                quantity, menu_item_id, from_zone_id, to_zone_id, exc,
            )
            _record_transfer_failure(
                caller.tenant_id, menu_item_id, from_zone_id, to_zone_id, quantity, caller.user_id, exc
            )
            raise ConsistencyError(
                f"Transfer of {quantity} {menu_item.name} was rolled back; allocations are unchanged",
                details={"menu_item_id": menu_item_id, "from_zone_id": from_zone_id, "to_zone_id": to_zone_id},
            ) from exc
        return log_entry

    return run_with_retry(_op)


def list_transfers(tenant_id: int, menu_item_id: int) -> list[InventoryZoneTransfer]:
    require_in_tenant(MenuItem, menu_item_id, tenant_id, label="Menu item")
    return (
        db.session.query(InventoryZoneTransfer)
        .filter_by(tenant_id=tenant_id, menu_item_id=menu_item_id)
        .order_by(InventoryZoneTransfer.id.asc())
        .all()
    )


# ============================================================================
# CONSUMPTION & RECONCILIATION
# ============================================================================

def _trim_allocations(menu_item: MenuItem) -> int:
    """
    Reduce the largest allocations until their total fits current_inventory.

    Returns the quantity trimmed. Does not commit.
    """
    if not menu_item.is_tracked:
        return 0
    rows = sorted(
        _allocations_for(menu_item.id),
        key=lambda row: (-row.allocated_quantity, row.zone_id),
    )
    excess = sum(row.allocated_quantity for row in rows) - menu_item.current_inventory
    trimmed = 0
    now = utcnow()
    for row in rows:
        if excess <= 0:
            break
        cut = min(row.allocated_quantity, excess)
        if cut <= 0:
            continue
        row.allocated_quantity -= cut
        row.updated_at = now
        excess -= cut
        trimmed += cut
    if trimmed:
        db.session.flush()
    return trimmed


def consume_for_items(items, *, actor_user_id: int | None = None) -> list[int]:
    """
    Apply stock consumption for items that just reached served.

    Participates in the caller's transaction (does not commit). Returns the
    ids of menu items that ran out and were marked unavailable.
    """
    per_item = defaultdict(int)
    per_zone = defaultdict(int)
    zone_by_order: dict[int, int | None] = {}
    tenant_id = None

    for item in items:
        tenant_id = item.tenant_id
        per_item[item.menu_item_id] += item.quantity
        if item.order_id not in zone_by_order:
            zone_by_order[item.order_id] = (
                db.session.query(VenueTable.zone_id)
                .join(Order, Order.table_id == VenueTable.id)
                .filter(Order.id == item.order_id)
                .scalar()
            )
        zone_id = zone_by_order[item.order_id]
        if zone_id is not None:
            per_zone[(item.menu_item_id, zone_id)] += item.quantity

    if not per_item:
        return []

    now = utcnow()
    for menu_item_id, quantity in per_item.items():
        conditional_update(
            MenuItem,
            [MenuItem.id == menu_item_id, MenuItem.current_inventory.isnot(None)],
            {"current_inventory": _floored_decrement(MenuItem.current_inventory, quantity), "updated_at": now},
        )
    for (menu_item_id, zone_id), quantity in per_zone.items():
        conditional_update(
            InventoryZoneAllocation,
            [InventoryZoneAllocation.menu_item_id == menu_item_id, InventoryZoneAllocation.zone_id == zone_id],
            {
                "allocated_quantity": _floored_decrement(InventoryZoneAllocation.allocated_quantity, quantity),
                "updated_at": now,
            },
        )

    depleted = []
    for menu_item_id, quantity in per_item.items():
        menu_item = db.session.get(MenuItem, menu_item_id)
        if not menu_item.is_tracked:
            continue
        _trim_allocations(menu_item)
        record_event(
            event_type="inventory.consumed",
            topic="menu_items",
            tenant_id=menu_item.tenant_id,
            entity_type="menu_item",
            entity_id=menu_item_id,
            actor_user_id=actor_user_id,
            payload={"quantity": quantity, "current_inventory": menu_item.current_inventory},
        )
        if menu_item.current_inventory == 0 and menu_item.is_available:
            depleted.append(menu_item_id)

    if depleted:
        from .station_service import set_menu_item_unavailable

        for menu_item_id in depleted:
            current_app.logger.info("Menu item %s sold out; marking unavailable", menu_item_id)
            set_menu_item_unavailable(tenant_id, menu_item_id, actor_user_id=actor_user_id, reason="sold_out")
    return depleted


def reconcile_allocations(tenant_id: int | None = None) -> list[dict]:
    """
    Find and repair menu items whose zone allocations exceed their inventory.

    Returns one report entry per repaired menu item.
    """
    def _op():
        totals = (
            db.session.query(
                InventoryZoneAllocation.menu_item_id,
                func.sum(InventoryZoneAllocation.allocated_quantity).label("allocated"),
                func.min(InventoryZoneAllocation.allocated_quantity).label("smallest"),
            )
            .group_by(InventoryZoneAllocation.menu_item_id)
        )
        if tenant_id is not None:
            totals = totals.filter(InventoryZoneAllocation.tenant_id == tenant_id)

        report = []
        for row in totals.all():
            menu_item = db.session.get(MenuItem, row.menu_item_id)
            if menu_item is None or not menu_item.is_tracked:
                continue
            negative = row.smallest is not None and row.smallest < 0
            if row.allocated <= menu_item.current_inventory and not negative:
                continue

            if negative:
                conditional_update(
                    InventoryZoneAllocation,
                    [
                        InventoryZoneAllocation.menu_item_id == menu_item.id,
                        InventoryZoneAllocation.allocated_quantity < 0,
                    ],
                    {"allocated_quantity": 0, "updated_at": utcnow()},
                )
                menu_item = db.session.get(MenuItem, row.menu_item_id)
            trimmed = _trim_allocations(menu_item)
            current_app.logger.error(
                "Allocations for menu item %s exceeded inventory %s (allocated %s); trimmed %s",
                menu_item.id, menu_item.current_inventory, row.allocated, trimmed,
            )
            record_event(
                event_type="inventory.allocations_reconciled",
                topic="inventory_zone_allocations",
                tenant_id=menu_item.tenant_id,
                entity_type="menu_item",
                entity_id=menu_item.id,
                payload={"allocated_before": int(row.allocated), "trimmed": trimmed,
                         "negative_rows_reset": negative},
            )
            report.append({
                "menu_item_id": menu_item.id,
                "current_inventory": menu_item.current_inventory,
                "allocated_before": int(row.allocated),
                "trimmed": trimmed,
                "negative_rows_reset": negative,
            })
        db.session.commit()
        return report

    return run_with_retry(_op)
