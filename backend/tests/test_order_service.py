"""
Order Service Tests

Order creation, numbering, totals, walk-up sales and the waiter's
"served" transition with its cascade to ready items.
"""

import pytest

from eventpos.errors import NotFoundError, StateConflictError, ValidationError
from eventpos.extensions import db
from eventpos.models import MenuItem, Order, OrderItem
from eventpos.services import event_service, order_service, station_service
from eventpos.services.lifecycle_service import PENDING, READY, SERVED
from eventpos.services.payment_service import quote_balance

from conftest import item_for


class TestCreateOrder:

    def test_creates_pending_items_with_captured_prices(self, open_order, beer, steak):
        assert open_order.status == PENDING
        assert open_order.table_number == "12"
        assert [item.status for item in open_order.items] == [PENDING, PENDING]
        assert item_for(open_order, beer).price_cents == 500
        assert item_for(open_order, steak).station_type == "meal_dispenser"

    def test_total_and_original_total(self, open_order):
        assert open_order.total_amount_cents == 2500
        assert open_order.original_total_cents == 2500

    def test_sequential_numbers_per_event(self, open_order, waiter, event_a, table_north, beer):
        second = order_service.create_order(
            waiter, event_a.id, [{"menu_item_id": beer.id, "quantity": 2}], table_id=table_north.id
        )
        assert open_order.order_number == "ORD-0001"
        assert second.order_number == "ORD-0002"

    def test_table_resolved_by_number(self, waiter, event_a, table_north, beer):
        order = order_service.create_order(
            waiter, event_a.id, [{"menu_item_id": beer.id, "quantity": 1}], table_number="12"
        )
        assert order.table_id == table_north.id

    def test_unknown_table_number(self, waiter, event_a, table_north, beer):
        with pytest.raises(NotFoundError):
            order_service.create_order(
                waiter, event_a.id, [{"menu_item_id": beer.id, "quantity": 1}], table_number="99"
            )

    @pytest.mark.parametrize("table_number", [None, "BAR", " bar "])
    def test_table_is_required(self, waiter, event_a, table_north, beer, db_session, table_number):
        with pytest.raises(ValidationError, match="walk-up"):
            order_service.create_order(
                waiter, event_a.id, [{"menu_item_id": beer.id, "quantity": 1}], table_number=table_number
            )
        assert db_session.query(Order).count() == 0

    def test_empty_items_rejected(self, waiter, event_a, table_north):
        with pytest.raises(ValidationError):
            order_service.create_order(waiter, event_a.id, [], table_id=table_north.id)

    @pytest.mark.parametrize("quantity", [0, -1, 1.5, "2.5", True])
    def test_bad_quantity_rejected(self, waiter, event_a, table_north, beer, quantity):
        with pytest.raises(ValidationError):
            order_service.create_order(
                waiter, event_a.id, [{"menu_item_id": beer.id, "quantity": quantity}], table_id=table_north.id
            )

    def test_unavailable_menu_item(self, db_session, waiter, event_a, table_north, beer):
        beer.is_available = False
        db_session.commit()
        with pytest.raises(StateConflictError, match="unavailable"):
            order_service.create_order(
                waiter, event_a.id, [{"menu_item_id": beer.id, "quantity": 1}], table_id=table_north.id
            )
        assert db_session.query(Order).count() == 0

    def test_menu_item_from_other_event(self, db_session, waiter, event_a, table_north, beer):
        from eventpos.models import Event

        other = Event(tenant_id=event_a.tenant_id, name="Afterparty")
        db_session.add(other)
        db_session.commit()
        with pytest.raises(ValidationError):
            order_service.create_order(
                waiter, other.id, [{"menu_item_id": beer.id, "quantity": 1}]
            )

    def test_emits_created_event(self, open_order, waiter):
        records = event_service.list_events(waiter.tenant_id, event_type="order.created")
        assert len(records) == 1
        assert records[0].entity_id == str(open_order.id)
        assert records[0].payload["total_amount_cents"] == 2500


class TestAddItems:

    def test_adds_items_and_refreshes_total(self, open_order, waiter, beer):
        order = order_service.add_items(waiter, open_order.id, [{"menu_item_id": beer.id, "quantity": 2}])
        assert len(order.items) == 3
        assert order.total_amount_cents == 3500
        assert order.original_total_cents == 2500

    def test_cannot_add_to_paid_order(self, db_session, open_order, waiter, beer):
        db_session.query(Order).filter_by(id=open_order.id).update({"status": "paid"})
        db_session.commit()
        with pytest.raises(StateConflictError):
            order_service.add_items(waiter, open_order.id, [{"menu_item_id": beer.id, "quantity": 1}])


class TestWalkupSale:

    def test_walkup_is_immediately_payable(self, bar_staff, event_a, beer):
        order = order_service.create_walkup_sale(
            bar_staff, event_a.id, [{"menu_item_id": beer.id, "quantity": 2}], guest_name="Sam"
        )
        assert order.status == SERVED
        assert order.table_id is None
        assert order.table_number == order_service.WALKUP_TABLE_NUMBER
        assert order.is_walkup
        assert all(item.status == SERVED for item in order.items)
        assert quote_balance(order)["remaining"] == 1000

    def test_walkup_consumes_inventory(self, db_session, bar_staff, event_a, beer):
        order_service.create_walkup_sale(bar_staff, event_a.id, [{"menu_item_id": beer.id, "quantity": 3}])
        assert db_session.get(MenuItem, beer.id).current_inventory == 7


class TestMarkOrderServed:

    def test_rejected_while_items_are_preparing(self, open_order, waiter, drink_staff, beer, steak):
        station_service.mark_item_ready(drink_staff, item_for(open_order, beer).id)
        steak_item_id = item_for(open_order, steak).id
        with pytest.raises(StateConflictError, match=str(steak_item_id)):
            order_service.mark_order_served(waiter, open_order.id)
        assert db.session.get(Order, open_order.id).status != SERVED

    def test_cascades_ready_items(self, served_order):
        assert served_order.status == SERVED
        assert served_order.served_at is not None
        assert all(item.status == SERVED for item in served_order.items)

    def test_rejected_items_do_not_block(self, open_order, waiter, drink_staff, meal_staff, beer, steak):
        station_service.reject_item(meal_staff, item_for(open_order, steak).id, reason="kitchen closed")
        station_service.mark_item_ready(drink_staff, item_for(open_order, beer).id)
        order = order_service.mark_order_served(waiter, open_order.id)
        assert order.status == SERVED
        assert order.total_amount_cents == 500

    def test_all_items_rejected(self, open_order, waiter, drink_staff, meal_staff, beer, steak):
        station_service.reject_item(meal_staff, item_for(open_order, steak).id)
        station_service.reject_item(drink_staff, item_for(open_order, beer).id)
        with pytest.raises(StateConflictError, match="no active items"):
            order_service.mark_order_served(waiter, open_order.id)

    def test_serving_twice_conflicts(self, served_order, waiter):
        with pytest.raises(StateConflictError, match="already served"):
            order_service.mark_order_served(waiter, served_order.id)

    def test_no_item_left_ready_behind_served_order(self, served_order):
        ready = (
            db.session.query(OrderItem)
            .join(Order, Order.id == OrderItem.order_id)
            .filter(Order.status == SERVED, OrderItem.status == READY)
            .count()
        )
        assert ready == 0

    def test_serving_consumes_tracked_stock(self, served_order, beer):
        assert db.session.get(MenuItem, beer.id).current_inventory == 9


class TestListOrders:

    def test_filters_by_status(self, served_order, waiter, event_a, table_north, beer):
        pending = order_service.create_order(
            waiter, event_a.id, [{"menu_item_id": beer.id, "quantity": 1}], table_id=table_north.id
        )
        assert [o.id for o in order_service.list_orders(waiter.tenant_id, event_a.id)] == [served_order.id, pending.id]
        assert [o.id for o in order_service.list_orders(waiter.tenant_id, event_a.id, status=SERVED)] == [served_order.id]

    def test_unknown_status(self, waiter, event_a):
        with pytest.raises(ValidationError):
            order_service.list_orders(waiter.tenant_id, event_a.id, status="cooking")
