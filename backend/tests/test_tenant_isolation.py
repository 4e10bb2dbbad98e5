"""
Multi-Tenant Isolation Tests

SECURITY TESTS: ids that belong to another tenant behave exactly like ids
that do not exist. Nothing is read or written across the boundary.
"""

import pytest

from eventpos.errors import NotFoundError
from eventpos.models import MenuItem, Order, Payment
from eventpos.services import (
    inventory_service, order_service, payment_service, return_service, scope_service,
)
from eventpos.services.tenant_service import require_in_tenant, require_many_in_tenant

from conftest import item_for


class TestTenantServiceHelpers:

    def test_own_entity(self, served_order, tenant_a):
        assert require_in_tenant(Order, served_order.id, tenant_a.id).id == served_order.id

    def test_foreign_entity_reads_as_missing(self, served_order, tenant_b):
        with pytest.raises(NotFoundError) as exc_info:
            require_in_tenant(Order, served_order.id, tenant_b.id, label="Order")
        assert str(exc_info.value) == f"Order {served_order.id} not found"

    def test_nonexistent_entity(self, tenant_a):
        with pytest.raises(NotFoundError):
            require_in_tenant(Order, 99999, tenant_a.id)

    def test_many_with_one_foreign(self, beer, foreign_dish, tenant_a):
        with pytest.raises(NotFoundError):
            require_many_in_tenant(MenuItem, [beer.id, foreign_dish.id], tenant_a.id)


class TestCrossTenantOperations:

    def test_cannot_order_foreign_menu_item(self, waiter, event_a, table_north, foreign_dish):
        with pytest.raises(NotFoundError):
            order_service.create_order(
                waiter, event_a.id, [{"menu_item_id": foreign_dish.id, "quantity": 1}], table_id=table_north.id
            )

    def test_cannot_order_at_foreign_event(self, waiter, event_b, foreign_dish):
        with pytest.raises(NotFoundError):
            order_service.create_order(waiter, event_b.id, [{"menu_item_id": foreign_dish.id, "quantity": 1}])

    def test_cannot_pay_foreign_order(self, served_order, outsider, db_session):
        with pytest.raises(NotFoundError):
            payment_service.record_payment(outsider, served_order.id, "cash", 2500)
        assert db_session.query(Payment).count() == 0

    def test_cannot_read_foreign_balance(self, served_order, outsider):
        with pytest.raises(NotFoundError):
            payment_service.get_balance(outsider.tenant_id, served_order.id)

    def test_cannot_return_foreign_item(self, served_order, outsider, steak):
        with pytest.raises(NotFoundError):
            return_service.report_return(outsider, item_for(served_order, steak).id, "not mine")

    def test_cannot_allocate_foreign_stock(self, outsider, beer, zone_north):
        with pytest.raises(NotFoundError):
            inventory_service.allocate(outsider, beer.id, {zone_north.id: 1})

    def test_cannot_bind_foreign_zone(self, outsider, zone_north):
        with pytest.raises(NotFoundError):
            scope_service.assign_zone_role(outsider.tenant_id, zone_north.id, 99, "bar_staff")

    def test_listings_are_scoped(self, served_order, outsider, event_b):
        assert order_service.list_orders(outsider.tenant_id, event_b.id) == []
        assert return_service.list_returns(outsider.tenant_id) == []
