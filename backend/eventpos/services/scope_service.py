# Overview: Tenant/zone scope resolution and zone-role assignment.

"""
EventPOS Scope Service

================================================================================
PURPOSE: Answer "what may this caller see at this event?" and own the
         zone-role assignment table that feeds that answer.
================================================================================

SCOPE:
    CallerScope = tenant + station type (from the role) + zone set (from
    zone_role_assignments held in the caller's role at the event). A
    caller with no zone for that role sees nothing at the event's stations.

ASSIGNMENT INVARIANTS (database unique constraints):
- at most one user per (zone, role)
- at most one role per (user, zone)
    A losing concurrent insert surfaces as StateConflictError; there is no
    read-then-insert window.

================================================================================
"""

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import ScopeError, StateConflictError, ValidationError
from ..extensions import db
from ..models import Event, Zone, VenueTable, ZoneRoleAssignment
from ..permissions import is_zone_bindable, station_for_role, ZONE_BINDABLE_ROLES
from .concurrency import run_with_retry
from .event_service import record_event
from .identity_service import Caller
from .tenant_service import require_in_tenant


@dataclass(frozen=True)
class CallerScope:
    user_id: int
    tenant_id: int
    role: str
    event_id: int
    station_type: str | None
    zone_ids: frozenset = field(default_factory=frozenset)

    @property
    def has_zones(self) -> bool:
        return bool(self.zone_ids)

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "tenant_id": self.tenant_id,
            "role": self.role,
            "event_id": self.event_id,
            "station_type": self.station_type,
            "zone_ids": sorted(self.zone_ids),
        }


# ============================================================================
# SCOPE RESOLUTION
# ============================================================================

def zone_ids_for_user(tenant_id: int, user_id: int, role: str, event_id: int) -> frozenset:
    """Zones at the event where the user is assigned in this role."""
    rows = (
        db.session.query(ZoneRoleAssignment.zone_id)
        .join(Zone, Zone.id == ZoneRoleAssignment.zone_id)
        .filter(
            ZoneRoleAssignment.tenant_id == tenant_id,
            ZoneRoleAssignment.user_id == user_id,
            ZoneRoleAssignment.role == role,
            Zone.event_id == event_id,
        )
        .all()
    )
    return frozenset(row.zone_id for row in rows)


def resolve_scope(caller: Caller, event_id: int) -> CallerScope:
    """
    Resolve the caller's station type and zone set for one event.

    Raises:
        NotFoundError if the event is not in the caller's tenant
    """
    require_in_tenant(Event, event_id, caller.tenant_id)
    return CallerScope(
        user_id=caller.user_id,
        tenant_id=caller.tenant_id,
        role=caller.role,
        event_id=event_id,
        station_type=station_for_role(caller.role),
        zone_ids=zone_ids_for_user(caller.tenant_id, caller.user_id, caller.role, event_id),
    )


def table_ids_for_zones(tenant_id: int, zone_ids) -> list[int]:
    if not zone_ids:
        return []
    rows = (
        db.session.query(VenueTable.id)
        .filter(VenueTable.tenant_id == tenant_id, VenueTable.zone_id.in_(list(zone_ids)))
        .all()
    )
    return [row.id for row in rows]


def require_station_scope(scope: CallerScope) -> str:
    """Station type of the caller, or ScopeError for non-station roles."""
    if scope.station_type is None:
        raise ScopeError(f"Role '{scope.role}' does not work a preparation station")
    return scope.station_type


# ============================================================================
# ZONE-ROLE ASSIGNMENT
# ============================================================================

def _validate_assignment(tenant_id: int, zone_id: int, role: str, user_id) -> Zone:
    if not is_zone_bindable(role):
        raise ValidationError(
            f"Role '{role}' cannot be assigned to a zone. "
            f"Must be one of: {', '.join(sorted(ZONE_BINDABLE_ROLES))}"
        )
    if user_id is not None and (not isinstance(user_id, int) or isinstance(user_id, bool) or user_id <= 0):
        raise ValidationError("user_id must be a positive integer")
    return require_in_tenant(Zone, zone_id, tenant_id)


def _conflict_message(zone_id: int, role: str, user_id: int) -> str:
    holder = db.session.query(ZoneRoleAssignment).filter_by(zone_id=zone_id, role=role).first()
    if holder is not None:
        return f"Zone already has a {role} assigned (user {holder.user_id})"
    return f"User {user_id} already holds a role in this zone"


def list_zone_assignments(tenant_id: int, zone_id: int) -> list[ZoneRoleAssignment]:
    require_in_tenant(Zone, zone_id, tenant_id)
    return (
        db.session.query(ZoneRoleAssignment)
        .filter_by(tenant_id=tenant_id, zone_id=zone_id)
        .order_by(ZoneRoleAssignment.role.asc())
        .all()
    )


def assign_zone_role(tenant_id: int, zone_id: int, user_id: int, role: str,
                     actor_user_id: int | None = None) -> ZoneRoleAssignment:
    """
    Bind a user to a zone in a role.

    Raises:
        ValidationError: role not zone-bindable
        NotFoundError: zone not in tenant
        StateConflictError: the zone already has that role filled, or the
            user already holds another role in the zone
    """
    _validate_assignment(tenant_id, zone_id, role, user_id)

    def _op():
        assignment = ZoneRoleAssignment(tenant_id=tenant_id, zone_id=zone_id, user_id=user_id, role=role)
        db.session.add(assignment)
        try:
            db.session.flush()
        except IntegrityError:
            db.session.rollback()
            raise StateConflictError(_conflict_message(zone_id, role, user_id))

        record_event(
            event_type="zone.role_assigned",
            topic="zone_role_assignments",
            tenant_id=tenant_id,
            entity_type="zone",
            entity_id=zone_id,
            actor_user_id=actor_user_id,
            payload={"zone_id": zone_id, "user_id": user_id, "role": role},
        )
        db.session.commit()
        return assignment

    return run_with_retry(_op)


def replace_zone_role(tenant_id: int, zone_id: int, role: str, user_id: int,
                      actor_user_id: int | None = None) -> ZoneRoleAssignment:
    """
    Hand a zone role to another user in one transaction (delete + insert).

    The previous holder, if any, loses the role; there is no instant where
    two users hold it.
    """
    _validate_assignment(tenant_id, zone_id, role, user_id)

    def _op():
        previous = (
            db.session.query(ZoneRoleAssignment)
            .filter_by(tenant_id=tenant_id, zone_id=zone_id, role=role)
            .first()
        )
        previous_user_id = previous.user_id if previous else None
        if previous is not None:
            db.session.delete(previous)
            db.session.flush()

        assignment = ZoneRoleAssignment(tenant_id=tenant_id, zone_id=zone_id, user_id=user_id, role=role)
        db.session.add(assignment)
        try:
            db.session.flush()
        except IntegrityError:
            db.session.rollback()
            raise StateConflictError(_conflict_message(zone_id, role, user_id))

        record_event(
            event_type="zone.role_replaced",
            topic="zone_role_assignments",
            tenant_id=tenant_id,
            entity_type="zone",
            entity_id=zone_id,
            actor_user_id=actor_user_id,
            payload={
                "zone_id": zone_id,
                "role": role,
                "user_id": user_id,
                "previous_user_id": previous_user_id,
            },
        )
        db.session.commit()
        current_app.logger.info(
            "Zone %s role %s reassigned from %s to %s", zone_id, role, previous_user_id, user_id
        )
        return assignment

    return run_with_retry(_op)


def remove_zone_role(tenant_id: int, zone_id: int, role: str, actor_user_id: int | None = None) -> None:
    _validate_assignment(tenant_id, zone_id, role, None)

    def _op():
        assignment = (
            db.session.query(ZoneRoleAssignment)
            .filter_by(tenant_id=tenant_id, zone_id=zone_id, role=role)
            .first()
        )
        if assignment is None:
            raise StateConflictError(f"Zone has no {role} assigned")
        removed_user_id = assignment.user_id
        db.session.delete(assignment)
        record_event(
            event_type="zone.role_removed",
            topic="zone_role_assignments",
            tenant_id=tenant_id,
            entity_type="zone",
            entity_id=zone_id,
            actor_user_id=actor_user_id,
            payload={"zone_id": zone_id, "role": role, "user_id": removed_user_id},
        )
        db.session.commit()

    run_with_retry(_op)
