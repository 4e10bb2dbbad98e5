"""
Return/Refund Sub-ledger Service

WHY: A served item can come back (wrong dish, spilled drink). The item
leaves the bill immediately; the station acknowledges the physical return;
a cashier decides how much money, if any, goes back to the guest.

DESIGN PRINCIPLES:
- One return per order item; the item moves served -> returned atomically
  with the OrderReturn insert.
- A refund never exceeds the item's line total.
- Approval is a one-shot compare-and-swap on refund_amount_cents IS NULL;
  changing an approved amount is an explicit override.
- Money moves only when the guest has already paid for the returned item
  (net payments above the new total): a negative "refund" payment row for
  min(refund, overpaid) is written in the approval transaction.

LIFECYCLE:
1. report_return (item served -> returned, order total drops)
2. approve_refund / override_refund (cashier)
3. confirm_return (owning station or cashier acknowledges receipt; item untouched)
"""

from __future__ import annotations

from sqlalchemy import or_

from ..errors import ScopeError, StateConflictError, ValidationError
from ..extensions import db
from ..models import Order, OrderItem, OrderReturn, Payment
from ..permissions import station_for_role
from ..time_utils import utcnow
from ..validation import MAX_AMOUNT_CENTS, coerce_int
from .concurrency import conditional_update, lock_for_update, run_with_retry
from .event_service import record_event
from .identity_service import Caller
from .lifecycle_service import PAID, RETURNED, SERVED
from .order_service import refresh_order_projection
from .payment_service import METHOD_CASH, SPLIT_REFUND, STATUS_COMPLETED, STATUS_VOIDED, _require_method, paid_cents
from .scope_service import resolve_scope
from .tenant_service import require_in_tenant


def _return_event(event_type: str, caller: Caller, order_return: OrderReturn, payload: dict) -> None:
    record_event(
        event_type=event_type,
        topic="order_returns",
        tenant_id=caller.tenant_id,
        entity_type="order_return",
        entity_id=order_return.id,
        actor_user_id=caller.user_id,
        payload=payload,
    )


def _validate_refund_amount(amount, line_total: int) -> int:
    amount = coerce_int(amount, "refund_amount_cents")
    if amount <= 0:
        raise ValidationError("refund_amount_cents must be > 0")
    if amount > MAX_AMOUNT_CENTS:
        raise ValidationError(f"refund_amount_cents cannot exceed {MAX_AMOUNT_CENTS}")
    if amount > line_total:
        raise ValidationError(f"Refund of {amount} exceeds the item's line total {line_total}")
    return amount


def get_return(tenant_id: int, return_id: int) -> OrderReturn:
    return require_in_tenant(OrderReturn, return_id, tenant_id, label="Return")


def list_returns(tenant_id: int, *, pending_only: bool = False, event_id: int | None = None) -> list[OrderReturn]:
    """Returns of a tenant; pending_only keeps those awaiting a refund decision or confirmation."""
    query = db.session.query(OrderReturn).filter(OrderReturn.tenant_id == tenant_id)
    if event_id is not None:
        query = (
            query.join(OrderItem, OrderItem.id == OrderReturn.order_item_id)
            .join(Order, Order.id == OrderItem.order_id)
            .filter(Order.event_id == event_id)
        )
    if pending_only:
        query = query.filter(or_(OrderReturn.refund_amount_cents.is_(None), OrderReturn.confirmed_at.is_(None)))
    return query.order_by(OrderReturn.created_at.desc(), OrderReturn.id.desc()).all()


# =============================================================================
# REPORT
# =============================================================================

def report_return(caller: Caller, order_item_id: int, reason: str) -> OrderReturn:
    """
    Report a served item as returned.

    Raises:
        ValidationError: no reason
        StateConflictError: item not served, or its order already paid
    """
    if not reason or not str(reason).strip():
        raise ValidationError("A return reason is required")
    reason = str(reason).strip()[:255]
    item = require_in_tenant(OrderItem, order_item_id, caller.tenant_id, label="Order item")
    order_id = item.order_id

    def _op():
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if order.status == PAID:
            raise StateConflictError(f"Order {order.order_number} is already paid; its items cannot be returned")

        matched = conditional_update(
            OrderItem,
            [OrderItem.id == order_item_id, OrderItem.tenant_id == caller.tenant_id, OrderItem.status == SERVED],
            {"status": RETURNED, "updated_at": utcnow()},
        )
        if not matched:
            current = db.session.get(OrderItem, order_item_id)
            raise StateConflictError(
                f"Item {order_item_id} is {current.status}; only served items can be returned"
            )

        order_return = OrderReturn(
            tenant_id=caller.tenant_id,
            order_item_id=order_item_id,
            reported_by=caller.user_id,
            reason=reason,
        )
        db.session.add(order_return)
        db.session.flush()

        _return_event("return.reported", caller, order_return, {
            "order_item_id": order_item_id,
            "order_id": order_id,
            "reason": reason,
        })
        refresh_order_projection(order_id, actor_user_id=caller.user_id)
        db.session.commit()
        return order_return

    return run_with_retry(_op)


# =============================================================================
# REFUND APPROVAL
# =============================================================================

def _record_refund_row(caller: Caller, order_return: OrderReturn, order: Order, amount: int,
                       method: str) -> Payment | None:
    """Negative payment for the part of the refund the guest actually paid. Does not commit."""
    overpaid = paid_cents(order.id) - order.compute_total_cents()
    refund = min(amount, overpaid)
    if refund <= 0:
        return None
    payment = Payment(
        tenant_id=caller.tenant_id,
        order_id=order.id,
        amount_cents=-refund,
        payment_method=method,
        split_type=SPLIT_REFUND,
        order_return_id=order_return.id,
        status=STATUS_COMPLETED,
        confirmed_by=caller.user_id,
        notes=f"Refund for return {order_return.id}",
    )
    db.session.add(payment)
    db.session.flush()
    return payment


def approve_refund(caller: Caller, return_id: int, amount=None, *, method: str = METHOD_CASH) -> OrderReturn:
    """
    Approve the refund amount of a return (default: the full line total).

    Raises:
        ValidationError: amount <= 0 or above the line total
        StateConflictError: a refund was already approved
    """
    _require_method(method)
    order_return = get_return(caller.tenant_id, return_id)
    item = order_return.order_item
    line_total = item.line_total_cents
    approved = line_total if amount is None else _validate_refund_amount(amount, line_total)
    order_id = item.order_id

    def _op():
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        now = utcnow()
        matched = conditional_update(
            OrderReturn,
            [OrderReturn.id == return_id, OrderReturn.refund_amount_cents.is_(None)],
            {"refund_amount_cents": approved, "refund_approved_by": caller.user_id, "refund_approved_at": now},
        )
        if not matched:
            current = db.session.get(OrderReturn, return_id)
            raise StateConflictError(
                f"Refund for return {return_id} was already approved ({current.refund_amount_cents}); "
                "use override to change it"
            )
        current = db.session.get(OrderReturn, return_id)
        refund_row = _record_refund_row(caller, current, order, approved, method)

        _return_event("return.refund_approved", caller, current, {
            "refund_amount_cents": approved,
            "refund_payment_id": refund_row.id if refund_row else None,
            "refunded_cents": -refund_row.amount_cents if refund_row else 0,
        })
        db.session.commit()
        return db.session.get(OrderReturn, return_id)

    return run_with_retry(_op)


def override_refund(caller: Caller, return_id: int, amount, reason: str, *, method: str = METHOD_CASH) -> OrderReturn:
    """
    Replace an approved refund amount.

    The previous refund row, if any, is voided and re-issued against the
    new amount; this is only possible while the order is unpaid.
    """
    _require_method(method)
    if not reason or not str(reason).strip():
        raise ValidationError("An override reason is required")
    order_return = get_return(caller.tenant_id, return_id)
    if order_return.refund_amount_cents is None:
        raise StateConflictError(f"Refund for return {return_id} has not been approved yet")
    item = order_return.order_item
    new_amount = _validate_refund_amount(amount, item.line_total_cents)
    previous_amount = order_return.refund_amount_cents
    order_id = item.order_id

    def _op():
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if order.status == PAID:
            raise StateConflictError(f"Order {order.order_number} is already paid; the refund is final")
        now = utcnow()
        matched = conditional_update(
            OrderReturn,
            [OrderReturn.id == return_id, OrderReturn.refund_amount_cents == previous_amount],
            {"refund_amount_cents": new_amount, "refund_approved_by": caller.user_id, "refund_approved_at": now},
        )
        if not matched:
            raise StateConflictError(f"Refund for return {return_id} changed concurrently; refresh and retry")

        conditional_update(
            Payment,
            [
                Payment.order_return_id == return_id,
                Payment.split_type == SPLIT_REFUND,
                Payment.status == STATUS_COMPLETED,
            ],
            {"status": STATUS_VOIDED, "voided_at": now, "voided_by": caller.user_id, "void_reason": reason},
        )
        current = db.session.get(OrderReturn, return_id)
        refund_row = _record_refund_row(caller, current, db.session.get(Order, order_id), new_amount, method)

        _return_event("return.refund_overridden", caller, current, {
            "previous_amount_cents": previous_amount,
            "refund_amount_cents": new_amount,
            "reason": reason,
            "refund_payment_id": refund_row.id if refund_row else None,
        })
        db.session.commit()
        return db.session.get(OrderReturn, return_id)

    return run_with_retry(_op)


# =============================================================================
# CONFIRMATION
# =============================================================================

def _require_owning_station(caller: Caller, order_return: OrderReturn) -> None:
    """Station callers may only confirm returns of their own station and zones."""
    station_type = station_for_role(caller.role)
    if station_type is None:
        return
    item = order_return.order_item
    if item.station_type != station_type:
        raise ScopeError(
            f"Return {order_return.id} is for the {item.station_type} station, not {station_type}"
        )
    order = item.order
    if order.table is None:
        return
    scope = resolve_scope(caller, order.event_id)
    if order.table.zone_id not in scope.zone_ids:
        raise ScopeError(f"Return {order_return.id} is for a table outside your zones")


def confirm_return(caller: Caller, return_id: int) -> OrderReturn:
    """
    Acknowledge that the returned item physically came back.

    Cashiers and managers may confirm any return of the tenant; station
    staff only returns of items their station prepared at their tables.

    Raises:
        ScopeError: station caller does not own the item
        StateConflictError: already confirmed
    """
    _require_owning_station(caller, get_return(caller.tenant_id, return_id))

    def _op():
        matched = conditional_update(
            OrderReturn,
            [OrderReturn.id == return_id, OrderReturn.confirmed_at.is_(None)],
            {"confirmed_at": utcnow(), "confirmed_by": caller.user_id},
        )
        if not matched:
            raise StateConflictError(f"Return {return_id} is already confirmed")
        current = db.session.get(OrderReturn, return_id)
        _return_event("return.confirmed", caller, current, {"order_item_id": current.order_item_id})
        db.session.commit()
        return current

    return run_with_retry(_op)
