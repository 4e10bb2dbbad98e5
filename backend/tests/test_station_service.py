"""
Station Service Tests

Queue visibility by station type and zone, item transitions with their
conflicts, and the out-of-stock bulk reject.
"""

import pytest
from sqlalchemy import update
from sqlalchemy.orm import Session

from eventpos.errors import ConsistencyError, ScopeError, StateConflictError
from eventpos.extensions import db
from eventpos.models import MenuItem, Order, OrderItem
from eventpos.permissions import Role
from eventpos.services import event_service, order_service, scope_service, station_service
from eventpos.services.identity_service import Caller
from eventpos.services.lifecycle_service import DISPATCHED, PENDING, READY, REJECTED

from conftest import item_for


class TestStationQueue:

    def test_queue_lists_own_station_items(self, open_order, drink_staff, event_a, beer):
        queue = station_service.station_queue(drink_staff, event_a.id)
        assert [entry["menu_item_id"] for entry in queue] == [beer.id]
        entry = queue[0]
        assert entry["order_number"] == open_order.order_number
        assert entry["table_number"] == "12"
        assert entry["status"] == PENDING

    def test_queue_is_empty_without_zone_assignment(self, open_order, tenant_a, event_a):
        unassigned = Caller(user_id=77, tenant_id=tenant_a.id, role=Role.DRINK_DISPENSER)
        assert station_service.station_queue(unassigned, event_a.id) == []

    def test_queue_hides_other_zones(self, drink_staff, waiter, event_a, table_south, beer):
        order_service.create_order(
            waiter, event_a.id, [{"menu_item_id": beer.id, "quantity": 1}], table_id=table_south.id
        )
        assert station_service.station_queue(drink_staff, event_a.id) == []

    def test_queue_drops_finished_items(self, open_order, drink_staff, event_a, beer):
        station_service.mark_item_ready(drink_staff, item_for(open_order, beer).id)
        assert station_service.station_queue(drink_staff, event_a.id) == []

    def test_queue_orders_by_creation(self, open_order, waiter, drink_staff, event_a, table_north, beer):
        second = order_service.create_order(
            waiter, event_a.id, [{"menu_item_id": beer.id, "quantity": 3}], table_id=table_north.id
        )
        queue = station_service.station_queue(drink_staff, event_a.id)
        assert [entry["order_id"] for entry in queue] == [open_order.id, second.id]

    def test_zone_held_in_another_role_grants_nothing(self, open_order, tenant_a, zone_north, event_a, beer):
        scope_service.assign_zone_role(tenant_a.id, zone_north.id, 55, Role.CASHIER)
        moonlighter = Caller(user_id=55, tenant_id=tenant_a.id, role=Role.DRINK_DISPENSER)
        assert station_service.station_queue(moonlighter, event_a.id) == []
        with pytest.raises(ScopeError, match="outside your zones"):
            station_service.mark_item_ready(moonlighter, item_for(open_order, beer).id)

    def test_non_station_role_is_denied(self, waiter, event_a):
        with pytest.raises(ScopeError):
            station_service.station_queue(waiter, event_a.id)


class TestItemTransitions:

    def test_dispatch_then_ready(self, open_order, drink_staff, beer):
        item_id = item_for(open_order, beer).id
        assert station_service.dispatch_item(drink_staff, item_id).status == DISPATCHED
        item = station_service.mark_item_ready(drink_staff, item_id)
        assert item.status == READY
        assert item.assigned_to == drink_staff.user_id
        assert item.ready_at is not None

    def test_order_status_follows_items(self, open_order, drink_staff, meal_staff, beer, steak):
        station_service.mark_item_ready(drink_staff, item_for(open_order, beer).id)
        assert db.session.get(Order, open_order.id).status == DISPATCHED
        station_service.mark_item_ready(meal_staff, item_for(open_order, steak).id)
        assert db.session.get(Order, open_order.id).status == READY

    def test_second_ready_conflicts(self, db_session, open_order, drink_staff, beer):
        item_id = item_for(open_order, beer).id
        station_service.mark_item_ready(drink_staff, item_id)
        with pytest.raises(StateConflictError, match="is ready"):
            station_service.mark_item_ready(drink_staff, item_id)
        assert db_session.get(OrderItem, item_id).status == READY

    def test_ready_race_across_sessions(self, db_session, open_order, drink_staff, beer, monkeypatch):
        """Another station commits ready between our read and our write; ours loses."""
        item_id = item_for(open_order, beer).id
        check_scope = station_service._require_item_in_scope

        def _rival_commits_first(caller, checked_item_id):
            checked = check_scope(caller, checked_item_id)
            with Session(db.engine) as rival:
                rival.execute(
                    update(OrderItem)
                    .where(OrderItem.id == checked_item_id, OrderItem.status == PENDING)
                    .values(status=READY, assigned_to=98)
                )
                rival.commit()
            return checked

        monkeypatch.setattr(station_service, "_require_item_in_scope", _rival_commits_first)
        with pytest.raises(StateConflictError, match="is ready"):
            station_service.mark_item_ready(drink_staff, item_id)

        db_session.expire_all()
        item = db_session.get(OrderItem, item_id)
        assert item.status == READY
        assert item.assigned_to == 98

    def test_wrong_station_is_denied(self, open_order, drink_staff, steak):
        with pytest.raises(ScopeError):
            station_service.mark_item_ready(drink_staff, item_for(open_order, steak).id)

    def test_out_of_zone_is_denied(self, drink_staff, waiter, event_a, table_south, beer):
        order = order_service.create_order(
            waiter, event_a.id, [{"menu_item_id": beer.id, "quantity": 1}], table_id=table_south.id
        )
        with pytest.raises(ScopeError):
            station_service.mark_item_ready(drink_staff, order.items[0].id)

    def test_reject_after_ready_conflicts(self, open_order, drink_staff, beer):
        item_id = item_for(open_order, beer).id
        station_service.mark_item_ready(drink_staff, item_id)
        with pytest.raises(StateConflictError):
            station_service.reject_item(drink_staff, item_id, reason="spilled")

    def test_reject_recomputes_total(self, open_order, meal_staff, steak):
        station_service.reject_item(meal_staff, item_for(open_order, steak).id, reason="sold out")
        order = db.session.get(Order, open_order.id)
        assert order.total_amount_cents == 500
        assert order.original_total_cents == 2500

    def test_ready_emits_item_event(self, open_order, drink_staff, beer):
        received = []
        event_service.subscribe("order_items", drink_staff.tenant_id, received.append)
        station_service.mark_item_ready(drink_staff, item_for(open_order, beer).id)
        assert [e.event_type for e in received] == ["item.ready"]


class TestOutOfStock:

    def test_unavailable_rejects_open_items(self, open_order, waiter, drink_staff, event_a, table_north, beer):
        second = order_service.create_order(
            waiter, event_a.id, [{"menu_item_id": beer.id, "quantity": 2}], table_id=table_north.id
        )
        station_service.dispatch_item(drink_staff, item_for(second, beer).id)

        result = station_service.mark_menu_item_unavailable(drink_staff, beer.id, reason="keg empty")

        assert sorted(result["affected_order_ids"]) == sorted([open_order.id, second.id])
        assert len(result["rejected_item_ids"]) == 2
        open_items = (
            db.session.query(OrderItem)
            .filter(OrderItem.menu_item_id == beer.id, OrderItem.status.in_((PENDING, DISPATCHED)))
            .count()
        )
        assert open_items == 0
        assert db.session.get(MenuItem, beer.id).is_available is False

    def test_ready_items_are_kept(self, open_order, drink_staff, beer):
        item_id = item_for(open_order, beer).id
        station_service.mark_item_ready(drink_staff, item_id)
        result = station_service.mark_menu_item_unavailable(drink_staff, beer.id)
        assert result["rejected_item_ids"] == []
        assert db.session.get(OrderItem, item_id).status == READY

    def test_rejected_items_leave_total(self, open_order, drink_staff, beer):
        station_service.mark_menu_item_unavailable(drink_staff, beer.id)
        order = db.session.get(Order, open_order.id)
        assert item_for(order, beer).status == REJECTED
        assert order.total_amount_cents == 2000

    def test_gives_up_after_bounded_attempts(self, app, open_order, drink_staff, beer, monkeypatch):
        item_id = item_for(open_order, beer).id
        reads = []

        def _still_open(menu_item_id):
            reads.append(menu_item_id)
            return [item_id]

        monkeypatch.setattr(station_service, "_open_item_ids", _still_open)
        with pytest.raises(ConsistencyError) as exc_info:
            station_service.mark_menu_item_unavailable(drink_staff, beer.id)

        assert exc_info.value.details["unrejected_item_ids"] == [item_id]
        assert len(reads) == app.config["OUT_OF_STOCK_REJECT_ATTEMPTS"] + 1
        assert db.session.get(MenuItem, beer.id).is_available is True
        assert db.session.get(OrderItem, item_id).status == PENDING

    def test_available_again_keeps_rejections(self, open_order, drink_staff, beer):
        station_service.mark_menu_item_unavailable(drink_staff, beer.id)
        menu_item = station_service.mark_menu_item_available(drink_staff, beer.id)
        assert menu_item.is_available is True
        assert item_for(db.session.get(Order, open_order.id), beer).status == REJECTED
