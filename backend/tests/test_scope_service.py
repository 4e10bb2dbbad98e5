"""
Zone-Role Assignment Tests

The store enforces one user per (zone, role) and one role per
(user, zone); services translate violations into operator messages.
"""

import pytest

from eventpos.errors import NotFoundError, StateConflictError, ValidationError
from eventpos.models import ZoneRoleAssignment
from eventpos.permissions import Role, StationType
from eventpos.services import event_service, scope_service
from eventpos.services.identity_service import Caller


class TestAssignZoneRole:

    def test_assign(self, db_session, tenant_a, zone_north):
        assignment = scope_service.assign_zone_role(tenant_a.id, zone_north.id, 50, Role.BAR_STAFF)
        assert assignment.role == Role.BAR_STAFF
        assert [a.user_id for a in scope_service.list_zone_assignments(tenant_a.id, zone_north.id)] == [50]

    def test_role_already_filled(self, db_session, tenant_a, zone_north):
        scope_service.assign_zone_role(tenant_a.id, zone_north.id, 50, Role.BAR_STAFF)
        with pytest.raises(StateConflictError, match="Zone already has a bar_staff assigned"):
            scope_service.assign_zone_role(tenant_a.id, zone_north.id, 51, Role.BAR_STAFF)
        assert db_session.query(ZoneRoleAssignment).count() == 1

    def test_user_holds_one_role_per_zone(self, db_session, tenant_a, zone_north):
        scope_service.assign_zone_role(tenant_a.id, zone_north.id, 50, Role.BAR_STAFF)
        with pytest.raises(StateConflictError, match="already holds a role"):
            scope_service.assign_zone_role(tenant_a.id, zone_north.id, 50, Role.CASHIER)

    def test_same_user_in_two_zones(self, db_session, tenant_a, zone_north, zone_south):
        scope_service.assign_zone_role(tenant_a.id, zone_north.id, 50, Role.MIXOLOGIST)
        scope_service.assign_zone_role(tenant_a.id, zone_south.id, 50, Role.MIXOLOGIST)
        assert db_session.query(ZoneRoleAssignment).filter_by(user_id=50).count() == 2

    def test_waiter_is_not_zone_bound(self, db_session, tenant_a, zone_north):
        with pytest.raises(ValidationError):
            scope_service.assign_zone_role(tenant_a.id, zone_north.id, 50, Role.WAITER)

    def test_zone_of_other_tenant(self, db_session, tenant_b, zone_north):
        with pytest.raises(NotFoundError):
            scope_service.assign_zone_role(tenant_b.id, zone_north.id, 50, Role.BAR_STAFF)

    def test_emits_event_after_commit(self, db_session, tenant_a, zone_north):
        received = []
        event_service.subscribe("zone_role_assignments", tenant_a.id, received.append)
        scope_service.assign_zone_role(tenant_a.id, zone_north.id, 50, Role.BAR_STAFF)
        assert [e.event_type for e in received] == ["zone.role_assigned"]


class TestReplaceAndRemove:

    def test_replace_hands_over_role(self, db_session, tenant_a, zone_north):
        scope_service.assign_zone_role(tenant_a.id, zone_north.id, 50, Role.BAR_STAFF)
        scope_service.replace_zone_role(tenant_a.id, zone_north.id, Role.BAR_STAFF, 51)
        holders = db_session.query(ZoneRoleAssignment).filter_by(zone_id=zone_north.id, role=Role.BAR_STAFF).all()
        assert [h.user_id for h in holders] == [51]

    def test_replace_on_empty_slot(self, db_session, tenant_a, zone_north):
        assignment = scope_service.replace_zone_role(tenant_a.id, zone_north.id, Role.CASHIER, 52)
        assert assignment.user_id == 52

    def test_remove(self, db_session, tenant_a, zone_north):
        scope_service.assign_zone_role(tenant_a.id, zone_north.id, 50, Role.BAR_STAFF)
        scope_service.remove_zone_role(tenant_a.id, zone_north.id, Role.BAR_STAFF)
        assert db_session.query(ZoneRoleAssignment).count() == 0

    def test_remove_missing(self, db_session, tenant_a, zone_north):
        with pytest.raises(StateConflictError):
            scope_service.remove_zone_role(tenant_a.id, zone_north.id, Role.BAR_STAFF)


class TestResolveScope:

    def test_station_staff_scope(self, drink_staff, event_a, zone_north):
        scope = scope_service.resolve_scope(drink_staff, event_a.id)
        assert scope.station_type == StationType.DRINK_DISPENSER
        assert scope.zone_ids == frozenset({zone_north.id})
        assert scope.has_zones

    def test_zones_count_only_for_the_assigned_role(self, db_session, tenant_a, event_a, zone_north):
        scope_service.assign_zone_role(tenant_a.id, zone_north.id, 55, Role.CASHIER)
        as_cashier = Caller(user_id=55, tenant_id=tenant_a.id, role=Role.CASHIER)
        as_dispenser = Caller(user_id=55, tenant_id=tenant_a.id, role=Role.DRINK_DISPENSER)
        assert scope_service.resolve_scope(as_cashier, event_a.id).zone_ids == frozenset({zone_north.id})
        assert not scope_service.resolve_scope(as_dispenser, event_a.id).has_zones

    def test_zones_of_other_events_are_excluded(self, db_session, tenant_a, drink_staff):
        from eventpos.models import Event

        other = Event(tenant_id=tenant_a.id, name="Brunch")
        db_session.add(other)
        db_session.commit()
        scope = scope_service.resolve_scope(drink_staff, other.id)
        assert not scope.has_zones

    def test_foreign_event(self, tenant_a, event_b):
        caller = Caller(user_id=20, tenant_id=tenant_a.id, role=Role.BAR_STAFF)
        with pytest.raises(NotFoundError):
            scope_service.resolve_scope(caller, event_b.id)
