"""
Return Service Tests

Returned items leave the order total; refunds only move money the guest
actually overpaid.
"""

import pytest

from eventpos.errors import ScopeError, StateConflictError, ValidationError
from eventpos.extensions import db
from eventpos.models import Order, OrderItem, OrderReturn, Payment
from eventpos.permissions import Role
from eventpos.services import payment_service, return_service, scope_service
from eventpos.services.identity_service import Caller
from eventpos.services.lifecycle_service import RETURNED

from conftest import item_for


@pytest.fixture
def steak_return(served_order, waiter, steak):
    return return_service.report_return(waiter, item_for(served_order, steak).id, "overcooked")


class TestReportReturn:

    def test_returned_item_leaves_total(self, served_order, steak_return, cashier, steak):
        assert db.session.get(OrderItem, item_for(served_order, steak).id).status == RETURNED
        balance = payment_service.get_balance(cashier.tenant_id, served_order.id)
        assert balance["total"] == 500
        assert balance["remaining"] == 500

    def test_original_total_is_kept(self, served_order, steak_return):
        order = db.session.get(Order, served_order.id)
        assert order.total_amount_cents == 500
        assert order.original_total_cents == 2500

    def test_payment_after_return(self, served_order, steak_return, cashier):
        with pytest.raises(ValidationError):
            payment_service.record_payment(cashier, served_order.id, "cash", 2500)
        payment_service.record_payment(cashier, served_order.id, "cash", 500)
        order = payment_service.confirm_order_paid(cashier, served_order.id)
        assert order.total_amount_cents == 500

    def test_reason_required(self, served_order, waiter, steak):
        with pytest.raises(ValidationError):
            return_service.report_return(waiter, item_for(served_order, steak).id, "")

    def test_only_served_items(self, open_order, waiter, steak):
        with pytest.raises(StateConflictError, match="only served items"):
            return_service.report_return(waiter, item_for(open_order, steak).id, "changed mind")

    def test_item_returned_once(self, served_order, steak_return, waiter, steak):
        with pytest.raises(StateConflictError):
            return_service.report_return(waiter, item_for(served_order, steak).id, "again")

    def test_paid_order_cannot_return(self, served_order, cashier, waiter, steak):
        payment_service.settle_order(cashier, served_order.id, "cash", 2500)
        with pytest.raises(StateConflictError, match="already paid"):
            return_service.report_return(waiter, item_for(served_order, steak).id, "late complaint")


class TestApproveRefund:

    def test_no_refund_row_when_nothing_was_overpaid(self, steak_return, cashier):
        approved = return_service.approve_refund(cashier, steak_return.id)
        assert approved.refund_amount_cents == 2000
        assert approved.refund_approved_by == cashier.user_id
        assert db.session.query(Payment).filter_by(split_type="refund").count() == 0

    def test_refund_row_for_overpayment(self, served_order, waiter, cashier, steak):
        payment_service.record_payment(cashier, served_order.id, "cash", 2500)
        order_return = return_service.report_return(waiter, item_for(served_order, steak).id, "cold")

        return_service.approve_refund(cashier, order_return.id)

        refund = db.session.query(Payment).filter_by(split_type="refund").one()
        assert refund.amount_cents == -2000
        assert refund.order_return_id == order_return.id
        balance = payment_service.get_balance(cashier.tenant_id, served_order.id)
        assert balance["paid"] == 500
        assert balance["fully_paid"] is True

    def test_partial_refund_amount(self, steak_return, cashier):
        assert return_service.approve_refund(cashier, steak_return.id, 1500).refund_amount_cents == 1500

    @pytest.mark.parametrize("amount", [0, 2001])
    def test_amount_bounds(self, steak_return, cashier, amount):
        with pytest.raises(ValidationError):
            return_service.approve_refund(cashier, steak_return.id, amount)

    def test_approve_twice_conflicts(self, steak_return, cashier):
        return_service.approve_refund(cashier, steak_return.id)
        with pytest.raises(StateConflictError, match="already approved"):
            return_service.approve_refund(cashier, steak_return.id, 1000)
        assert return_service.get_return(cashier.tenant_id, steak_return.id).refund_amount_cents == 2000


class TestOverrideRefund:

    def test_override_reissues_refund_row(self, served_order, waiter, cashier, manager, steak):
        payment_service.record_payment(cashier, served_order.id, "cash", 2500)
        order_return = return_service.report_return(waiter, item_for(served_order, steak).id, "cold")
        return_service.approve_refund(cashier, order_return.id)

        updated = return_service.override_refund(manager, order_return.id, 1000, "guest kept the fries")

        assert updated.refund_amount_cents == 1000
        refunds = db.session.query(Payment).filter_by(split_type="refund").order_by(Payment.id).all()
        assert [(p.amount_cents, p.status) for p in refunds] == [(-2000, "VOIDED"), (-1000, "COMPLETED")]
        assert payment_service.get_balance(cashier.tenant_id, served_order.id)["paid"] == 1500

    def test_override_before_approval(self, steak_return, manager):
        with pytest.raises(StateConflictError, match="not been approved"):
            return_service.override_refund(manager, steak_return.id, 1000, "typo")

    def test_override_needs_reason(self, steak_return, cashier, manager):
        return_service.approve_refund(cashier, steak_return.id)
        with pytest.raises(ValidationError):
            return_service.override_refund(manager, steak_return.id, 1000, "")

    def test_refund_row_cannot_be_voided_directly(self, served_order, waiter, cashier, steak):
        payment_service.record_payment(cashier, served_order.id, "cash", 2500)
        order_return = return_service.report_return(waiter, item_for(served_order, steak).id, "cold")
        return_service.approve_refund(cashier, order_return.id)
        refund = db.session.query(Payment).filter_by(split_type="refund").one()
        with pytest.raises(StateConflictError):
            payment_service.void_payment(cashier, refund.id, "oops")


class TestConfirmReturn:

    def test_confirm_once(self, steak_return, meal_staff):
        confirmed = return_service.confirm_return(meal_staff, steak_return.id)
        assert confirmed.confirmed_by == meal_staff.user_id
        assert confirmed.confirmed_at is not None

    def test_confirm_twice_conflicts(self, steak_return, meal_staff):
        return_service.confirm_return(meal_staff, steak_return.id)
        with pytest.raises(StateConflictError, match="already confirmed"):
            return_service.confirm_return(meal_staff, steak_return.id)

    def test_cashier_may_confirm(self, steak_return, cashier):
        assert return_service.confirm_return(cashier, steak_return.id).confirmed_by == cashier.user_id

    def test_other_station_cannot_confirm(self, steak_return, drink_staff):
        with pytest.raises(ScopeError, match="meal_dispenser station"):
            return_service.confirm_return(drink_staff, steak_return.id)
        assert db.session.get(OrderReturn, steak_return.id).confirmed_at is None

    def test_mixologist_without_zone_cannot_confirm(self, steak_return, tenant_a):
        mixologist = Caller(user_id=88, tenant_id=tenant_a.id, role=Role.MIXOLOGIST)
        with pytest.raises(ScopeError):
            return_service.confirm_return(mixologist, steak_return.id)

    def test_same_station_outside_zone_cannot_confirm(self, steak_return, tenant_a, zone_south):
        south_kitchen = Caller(user_id=22, tenant_id=tenant_a.id, role=Role.MEAL_DISPENSER)
        scope_service.assign_zone_role(tenant_a.id, zone_south.id, south_kitchen.user_id, south_kitchen.role)
        with pytest.raises(ScopeError, match="outside your zones"):
            return_service.confirm_return(south_kitchen, steak_return.id)


class TestListReturns:

    def test_pending_only(self, steak_return, cashier, meal_staff):
        assert [r.id for r in return_service.list_returns(cashier.tenant_id, pending_only=True)] == [steak_return.id]
        return_service.approve_refund(cashier, steak_return.id)
        return_service.confirm_return(meal_staff, steak_return.id)
        assert return_service.list_returns(cashier.tenant_id, pending_only=True) == []
        assert len(return_service.list_returns(cashier.tenant_id)) == 1
