# Overview: Payment ledger: balance quotes, single/split/per-item payments, settlement and confirmation.

"""
Payment Ledger Service

WHY: A cashier must be able to take money for an order in whatever shape
the table wants (one card, cash plus card, per guest, per item) and then
close the order only when the ledger agrees with the order total.

DESIGN PRINCIPLES:
- Money is integer cents; reconciliation tolerance is PAYMENT_TOLERANCE_CENTS.
- The ledger is append-only: rows are VOIDED, never deleted or edited.
- Refunds are negative COMPLETED rows, so "paid" is a plain sum.
- A split is one logical payment: its rows share a split_session_id, are
  written in one transaction, and are voided together.
- Confirming paid is a compare-and-swap on status != paid; a second
  confirmation is a conflict and never writes a payment.

LIFECYCLE:
    quote_balance -> record_* (any number) -> confirm_order_paid
    settle_order = record_payment + confirm_order_paid in one transaction
"""

from __future__ import annotations

import uuid
from collections import defaultdict

from flask import current_app
from sqlalchemy import func, select

from ..errors import NotFoundError, StateConflictError, ValidationError
from ..extensions import db
from ..models import Order, OrderItem, Payment, SplitPaymentItem, SplitSession
from ..time_utils import utcnow
from ..validation import MAX_AMOUNT_CENTS, coerce_int, require_amount_cents
from .concurrency import conditional_update, lock_for_update, run_with_retry
from .event_service import record_event
from .identity_service import Caller
from .lifecycle_service import DISPATCHED, INACTIVE_ITEM_STATUSES, PAID, PENDING, READY, SERVED
from .tenant_service import require_in_tenant


# =============================================================================
# PAYMENT METHODS (CONSTANTS)
# =============================================================================

METHOD_CASH = "cash"
METHOD_POS = "pos"
METHOD_TRANSFER = "transfer"

VALID_METHODS = [METHOD_CASH, METHOD_POS, METHOD_TRANSFER]


# =============================================================================
# SPLIT TYPES / STATUS (CONSTANTS)
# =============================================================================

SPLIT_FULL = "full"
SPLIT_BY_AMOUNT = "by_amount"
SPLIT_BY_GUEST = "by_guest"
SPLIT_BY_ITEM = "by_item"
SPLIT_CUSTOM = "custom"
SPLIT_REFUND = "refund"

# split types a plain record_payment call may carry
DIRECT_SPLIT_TYPES = [SPLIT_FULL, SPLIT_BY_AMOUNT, SPLIT_BY_GUEST, SPLIT_CUSTOM]

STATUS_COMPLETED = "COMPLETED"
STATUS_VOIDED = "VOIDED"

MAX_GUESTS = 100

# Items that still block the paid transition
UNSERVED_ITEM_STATUSES = (PENDING, DISPATCHED, READY)


def _tolerance() -> int:
    return int(current_app.config.get("PAYMENT_TOLERANCE_CENTS", 1))


def _require_method(method) -> str:
    if method not in VALID_METHODS:
        raise ValidationError(f"Invalid payment method: {method}. Must be one of {VALID_METHODS}")
    return method


def _lock_order(tenant_id: int, order_id: int) -> Order:
    order = lock_for_update(
        db.session.query(Order).filter_by(id=order_id, tenant_id=tenant_id)
    ).first()
    if order is None:
        raise NotFoundError(f"Order {order_id} not found")
    return order


# =============================================================================
# BALANCE
# =============================================================================

def paid_cents(order_id: int) -> int:
    total = (
        db.session.query(func.coalesce(func.sum(Payment.amount_cents), 0))
        .filter(Payment.order_id == order_id, Payment.status == STATUS_COMPLETED)
        .scalar()
    )
    return int(total or 0)


def quote_balance(order: Order) -> dict:
    """
    Ledger position of an order.

    total is recomputed from active items unless the order is paid (frozen).
    paid nets refund rows. fully_paid iff |paid - total| <= tolerance.
    """
    total = order.compute_total_cents()
    paid = paid_cents(order.id)
    payment_count = (
        db.session.query(func.count(Payment.id))
        .filter(Payment.order_id == order.id, Payment.status == STATUS_COMPLETED)
        .scalar()
    ) or 0
    return {
        "order_id": order.id,
        "order_number": order.order_number,
        "status": order.status,
        "total": total,
        "paid": paid,
        "remaining": max(total - paid, 0),
        "overpaid": max(paid - total, 0),
        "fully_paid": abs(paid - total) <= _tolerance(),
        "payment_count": int(payment_count),
    }


def get_balance(tenant_id: int, order_id: int) -> dict:
    return quote_balance(require_in_tenant(Order, order_id, tenant_id, label="Order"))


def list_payments(tenant_id: int, order_id: int, *, include_voided: bool = True) -> list[Payment]:
    require_in_tenant(Order, order_id, tenant_id, label="Order")
    query = db.session.query(Payment).filter_by(tenant_id=tenant_id, order_id=order_id)
    if not include_voided:
        query = query.filter_by(status=STATUS_COMPLETED)
    return query.order_by(Payment.id.asc()).all()


def _require_payable(order: Order) -> None:
    if order.status == PAID:
        raise StateConflictError(f"Order {order.order_number} is already paid")


def _require_within_remaining(order: Order, amount_cents: int) -> dict:
    balance = quote_balance(order)
    if amount_cents > balance["remaining"] + _tolerance():
        raise ValidationError(
            f"Payment of {amount_cents} exceeds the remaining balance {balance['remaining']} "
            f"of order {order.order_number}"
        )
    return balance


def _payment_event(event_type: str, caller: Caller, order: Order, payload: dict) -> None:
    record_event(
        event_type=event_type,
        topic="payments",
        tenant_id=order.tenant_id,
        entity_type="order",
        entity_id=order.id,
        actor_user_id=caller.user_id if caller else None,
        payload=payload,
    )


# =============================================================================
# RECORDING
# =============================================================================

def record_payment(
    caller: Caller,
    order_id: int,
    method: str,
    amount_cents,
    *,
    notes: str | None = None,
    guest_identifier: str | None = None,
    split_type: str = SPLIT_FULL,
) -> Payment:
    """
    Record one payment row. Does not change the order status.

    Raises:
        ValidationError: amount <= 0, unknown method/split type, amount above
            the remaining balance, by_guest without a guest identifier
        StateConflictError: order already paid
    """
    _require_method(method)
    amount = require_amount_cents(amount_cents)
    if split_type not in DIRECT_SPLIT_TYPES:
        raise ValidationError(f"Invalid split type: {split_type}. Must be one of {DIRECT_SPLIT_TYPES}")
    if split_type == SPLIT_BY_GUEST and not guest_identifier:
        raise ValidationError("guest_identifier is required for a by_guest payment")

    def _op():
        order = _lock_order(caller.tenant_id, order_id)
        _require_payable(order)
        _require_within_remaining(order, amount)

        payment = Payment(
            tenant_id=caller.tenant_id,
            order_id=order_id,
            amount_cents=amount,
            payment_method=method,
            split_type=split_type,
            guest_identifier=guest_identifier,
            status=STATUS_COMPLETED,
            confirmed_by=caller.user_id,
            notes=notes,
        )
        db.session.add(payment)
        db.session.flush()

        _payment_event("payment.recorded", caller, order, {
            "payment_id": payment.id,
            "amount_cents": amount,
            "payment_method": method,
            "split_type": split_type,
            "guest_identifier": guest_identifier,
        })
        db.session.commit()
        return payment

    return run_with_retry(_op)


def _parse_components(components) -> dict:
    if not isinstance(components, dict):
        raise ValidationError("components must be an object of method -> amount_cents")
    parsed = {}
    for method, raw in components.items():
        _require_method(method)
        if raw is None:
            continue
        amount = coerce_int(raw, f"components.{method}")
        if amount < 0:
            raise ValidationError(f"components.{method} must be >= 0")
        if amount > MAX_AMOUNT_CENTS:
            raise ValidationError(f"components.{method} cannot exceed {MAX_AMOUNT_CENTS}")
        if amount > 0:
            parsed[method] = amount
    if not parsed:
        raise ValidationError("At least one split component must be greater than zero")
    return parsed


def record_split_payment(caller: Caller, order_id: int, components, *, notes: str | None = None) -> list[Payment]:
    """
    Pay the remaining balance with several methods at once.

    The components must add up to the remaining balance (the full total
    when nothing was paid yet). One SplitSession plus one Payment per
    non-zero component, all in one transaction.
    """
    parsed = _parse_components(components)
    split_total = sum(parsed.values())

    def _op():
        order = _lock_order(caller.tenant_id, order_id)
        _require_payable(order)
        balance = quote_balance(order)
        if abs(split_total - balance["remaining"]) > _tolerance():
            raise ValidationError(
                "split total does not match order total",
                details={"split_total": split_total, "remaining": balance["remaining"]},
            )

        session = SplitSession(
            id=str(uuid.uuid4()),
            tenant_id=caller.tenant_id,
            order_id=order_id,
            split_type=SPLIT_BY_AMOUNT,
            expected_total_cents=split_total,
            component_count=len(parsed),
            created_by=caller.user_id,
        )
        db.session.add(session)
        payments = [
            Payment(
                tenant_id=caller.tenant_id,
                order_id=order_id,
                amount_cents=amount,
                payment_method=method,
                split_type=SPLIT_BY_AMOUNT,
                split_session_id=session.id,
                status=STATUS_COMPLETED,
                confirmed_by=caller.user_id,
                notes=notes,
            )
            for method, amount in parsed.items()
        ]
        db.session.add_all(payments)
        db.session.flush()

        _payment_event("payment.split_recorded", caller, order, {
            "split_session_id": session.id,
            "payment_ids": [p.id for p in payments],
            "components": parsed,
            "total_cents": split_total,
        })
        db.session.commit()
        return payments

    return run_with_retry(_op)


def _allocated_per_item(order_id: int) -> dict:
    """{order_item_id: (quantity, amount_cents)} already paid through by-item splits."""
    rows = (
        db.session.query(
            SplitPaymentItem.order_item_id,
            func.sum(SplitPaymentItem.quantity),
            func.sum(SplitPaymentItem.amount_cents),
        )
        .join(Payment, Payment.id == SplitPaymentItem.payment_id)
        .filter(Payment.order_id == order_id, Payment.status == STATUS_COMPLETED)
        .group_by(SplitPaymentItem.order_item_id)
        .all()
    )
    return {item_id: (int(qty or 0), int(amount or 0)) for item_id, qty, amount in rows}


def _parse_item_allocations(lines) -> dict:
    if not isinstance(lines, list) or not lines:
        raise ValidationError("items must be a non-empty list")
    requested = defaultdict(int)
    for index, raw in enumerate(lines):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{index}] must be an object")
        item_id = coerce_int(raw.get("order_item_id"), f"items[{index}].order_item_id")
        quantity = coerce_int(raw.get("quantity", 1), f"items[{index}].quantity")
        if quantity <= 0:
            raise ValidationError(f"items[{index}].quantity must be > 0")
        requested[item_id] += quantity
    return dict(requested)


def record_item_split_payment(
    caller: Caller,
    order_id: int,
    method: str,
    lines,
    *,
    guest_identifier: str | None = None,
    notes: str | None = None,
) -> Payment:
    """
    Pay for specific items (bill split by what each guest had).

    Limits, checked against earlier by-item payments on the same order:
    - per item: allocated quantity <= item quantity, amount <= line total
    - per order: all by-item allocations <= order total
    """
    _require_method(method)
    requested = _parse_item_allocations(lines)

    def _op():
        order = _lock_order(caller.tenant_id, order_id)
        _require_payable(order)
        items = {item.id: item for item in order.items}
        previous = _allocated_per_item(order_id)

        allocations = []
        for item_id, quantity in sorted(requested.items()):
            item = items.get(item_id)
            if item is None:
                raise ValidationError(f"Item {item_id} does not belong to order {order.order_number}")
            if item.status in INACTIVE_ITEM_STATUSES:
                raise ValidationError(f"Item {item_id} is {item.status} and cannot be paid")
            prev_qty, prev_amount = previous.get(item_id, (0, 0))
            amount = item.price_cents * quantity
            if prev_qty + quantity > item.quantity:
                raise ValidationError(
                    f"Item {item_id}: paying {quantity} more would exceed its quantity {item.quantity} "
                    f"({prev_qty} already paid)"
                )
            if prev_amount + amount > item.line_total_cents:
                raise ValidationError(f"Item {item_id}: allocation would exceed its line total")
            allocations.append((item, quantity, amount))

        amount_total = sum(amount for _, _, amount in allocations)
        already = sum(amount for _, amount in previous.values())
        order_total = order.compute_total_cents()
        if already + amount_total > order_total:
            raise ValidationError(
                f"By-item payments would total {already + amount_total}, above the order total {order_total}"
            )
        _require_within_remaining(order, amount_total)

        session = SplitSession(
            id=str(uuid.uuid4()),
            tenant_id=caller.tenant_id,
            order_id=order_id,
            split_type=SPLIT_BY_ITEM,
            expected_total_cents=amount_total,
            component_count=1,
            created_by=caller.user_id,
        )
        db.session.add(session)
        payment = Payment(
            tenant_id=caller.tenant_id,
            order_id=order_id,
            amount_cents=amount_total,
            payment_method=method,
            split_type=SPLIT_BY_ITEM,
            split_session_id=session.id,
            guest_identifier=guest_identifier,
            status=STATUS_COMPLETED,
            confirmed_by=caller.user_id,
            notes=notes,
        )
        db.session.add(payment)
        db.session.flush()
        for item, quantity, amount in allocations:
            db.session.add(SplitPaymentItem(
                tenant_id=caller.tenant_id,
                payment_id=payment.id,
                order_item_id=item.id,
                quantity=quantity,
                amount_cents=amount,
            ))
        db.session.flush()

        _payment_event("payment.item_split_recorded", caller, order, {
            "payment_id": payment.id,
            "amount_cents": amount_total,
            "items": {str(item.id): quantity for item, quantity, _ in allocations},
            "guest_identifier": guest_identifier,
        })
        db.session.commit()
        return payment

    return run_with_retry(_op)


def quote_guest_split(tenant_id: int, order_id: int, guest_count) -> dict:
    """
    Divide the remaining balance into guest_count shares that sum exactly to it.

    Leftover cents go to the first guests.
    """
    guests = coerce_int(guest_count, "guests")
    if guests < 1 or guests > MAX_GUESTS:
        raise ValidationError(f"guests must be between 1 and {MAX_GUESTS}")
    balance = get_balance(tenant_id, order_id)
    remaining = balance["remaining"]
    base, leftover = divmod(remaining, guests)
    shares = [
        {"guest_identifier": f"Guest {n + 1}", "amount_cents": base + (1 if n < leftover else 0)}
        for n in range(guests)
    ]
    return {
        "order_id": order_id,
        "remaining": remaining,
        "guest_count": guests,
        "shares": shares,
    }


# =============================================================================
# CONFIRMATION / SETTLEMENT
# =============================================================================

def _confirm_paid_locked(caller: Caller, order: Order) -> Order:
    """
    Mark a locked, fully paid and fully served order paid and cascade its
    served items. Does not commit.
    """
    balance = quote_balance(order)
    if not any(item.status not in INACTIVE_ITEM_STATUSES for item in order.items):
        raise StateConflictError(f"Order {order.order_number} has no active items to pay for")
    unserved = [item.id for item in order.items if item.status in UNSERVED_ITEM_STATUSES]
    if unserved:
        raise StateConflictError(
            f"Order {order.order_number} has items not served yet: {', '.join(str(i) for i in unserved)}",
            details={"order_item_ids": unserved},
        )
    if not balance["fully_paid"]:
        raise ValidationError(
            f"Order {order.order_number} is not fully paid: {balance['remaining']} remaining, "
            f"{balance['overpaid']} overpaid",
            details=balance,
        )

    now = utcnow()
    order_id = order.id
    order_number = order.order_number
    has_unserved = (
        select(OrderItem.id)
        .where(OrderItem.order_id == order_id, OrderItem.status.in_(UNSERVED_ITEM_STATUSES))
        .exists()
    )
    matched = conditional_update(
        Order,
        [Order.id == order_id, Order.status != PAID, ~has_unserved],
        {
            "status": PAID,
            "paid_at": now,
            "paid_by": caller.user_id,
            "total_amount_cents": balance["total"],
            "updated_at": now,
        },
    )
    if not matched:
        raise StateConflictError(f"Order {order_number} changed while being confirmed; refresh and retry")

    conditional_update(
        OrderItem,
        [OrderItem.order_id == order_id, OrderItem.status == SERVED],
        {"status": PAID, "updated_at": now},
    )
    record_event(
        event_type="order.paid",
        topic="orders",
        tenant_id=caller.tenant_id,
        entity_type="order",
        entity_id=order_id,
        actor_user_id=caller.user_id,
        payload={"order_number": order_number, "total_amount_cents": balance["total"], "paid_cents": balance["paid"]},
    )
    return db.session.get(Order, order_id)


def confirm_order_paid(caller: Caller, order_id: int) -> Order:
    """
    Close an order whose ledger matches its total.

    Raises:
        StateConflictError: already paid (no payment is ever written here), or
            an active item is not served yet
        ValidationError: not fully paid
    """
    def _op():
        order = _lock_order(caller.tenant_id, order_id)
        _require_payable(order)
        confirmed = _confirm_paid_locked(caller, order)
        db.session.commit()
        return confirmed

    return run_with_retry(_op)


def settle_order(caller: Caller, order_id: int, method: str, amount_cents, *, notes: str | None = None) -> Order:
    """Single-method full settlement: record the payment and confirm paid in one transaction."""
    _require_method(method)
    amount = require_amount_cents(amount_cents)

    def _op():
        order = _lock_order(caller.tenant_id, order_id)
        _require_payable(order)
        balance = quote_balance(order)
        if abs(amount - balance["remaining"]) > _tolerance():
            raise ValidationError(
                f"Settlement of {amount} does not match the remaining balance {balance['remaining']}"
            )
        payment = Payment(
            tenant_id=caller.tenant_id,
            order_id=order_id,
            amount_cents=amount,
            payment_method=method,
            split_type=SPLIT_FULL,
            status=STATUS_COMPLETED,
            confirmed_by=caller.user_id,
            notes=notes,
        )
        db.session.add(payment)
        db.session.flush()
        _payment_event("payment.recorded", caller, order, {
            "payment_id": payment.id,
            "amount_cents": amount,
            "payment_method": method,
            "split_type": SPLIT_FULL,
        })
        confirmed = _confirm_paid_locked(caller, order)
        db.session.commit()
        return confirmed

    return run_with_retry(_op)


# =============================================================================
# VOIDS & RECONCILIATION
# =============================================================================

def void_payment(caller: Caller, payment_id: int, reason: str) -> list[Payment]:
    """
    Void a mistaken payment on an unpaid order.

    A split component voids its whole split session. Refund rows belong to
    the return sub-ledger and cannot be voided here.
    """
    if not reason or not str(reason).strip():
        raise ValidationError("A void reason is required")
    payment = require_in_tenant(Payment, payment_id, caller.tenant_id, label="Payment")
    if payment.split_type == SPLIT_REFUND:
        raise StateConflictError("Refund rows are managed through the return; override the refund instead")
    order_id = payment.order_id
    session_id = payment.split_session_id

    def _op():
        order = _lock_order(caller.tenant_id, order_id)
        _require_payable(order)
        now = utcnow()
        target = [Payment.split_session_id == session_id] if session_id else [Payment.id == payment_id]
        matched = conditional_update(
            Payment,
            [*target, Payment.status == STATUS_COMPLETED],
            {"status": STATUS_VOIDED, "voided_at": now, "voided_by": caller.user_id, "void_reason": reason},
        )
        if not matched:
            raise StateConflictError(f"Payment {payment_id} is already voided")
        voided = db.session.query(Payment).filter(*target).order_by(Payment.id.asc()).all()
        _payment_event("payment.voided", caller, order, {
            "payment_ids": [p.id for p in voided],
            "split_session_id": session_id,
            "reason": reason,
        })
        db.session.commit()
        return voided

    return run_with_retry(_op)


def reconcile_split_sessions(tenant_id: int | None = None) -> list[dict]:
    """
    Find split sessions whose rows do not match their header and void the partial rows.

    A session is consistent when either every component row exists and is
    COMPLETED with the expected sum, or every row is VOIDED. Partial sessions
    on a paid order are reported for manual review and left untouched.
    """
    def _op():
        sessions = db.session.query(SplitSession)
        if tenant_id is not None:
            sessions = sessions.filter_by(tenant_id=tenant_id)

        report = []
        for session in sessions.order_by(SplitSession.created_at.asc()).all():
            rows = db.session.query(Payment).filter_by(split_session_id=session.id).all()
            completed = [p for p in rows if p.status == STATUS_COMPLETED]
            completed_total = sum(p.amount_cents for p in completed)
            if not completed:
                continue
            if len(completed) == session.component_count and completed_total == session.expected_total_cents:
                continue

            order = db.session.get(Order, session.order_id)
            entry = {
                "split_session_id": session.id,
                "order_id": session.order_id,
                "expected_total_cents": session.expected_total_cents,
                "component_count": session.component_count,
                "completed_rows": len(completed),
                "completed_total_cents": completed_total,
                "voided_payment_ids": [],
                "action": "voided",
            }
            if order.status == PAID:
                entry["action"] = "manual_review"
                current_app.logger.error(
                    "Split session %s on paid order %s is partial (%d/%d rows, %s/%s cents); needs review",
                    session.id, order.id, len(completed), session.component_count,
                    completed_total, session.expected_total_cents,
                )
                report.append(entry)
                continue

            now = utcnow()
            conditional_update(
                Payment,
                [Payment.split_session_id == session.id, Payment.status == STATUS_COMPLETED],
                {"status": STATUS_VOIDED, "voided_at": now, "void_reason": "split_compensated"},
            )
            entry["voided_payment_ids"] = [p.id for p in completed]
            current_app.logger.error(
                "Split session %s on order %s was partial (%d/%d rows); voided payments %s",
                session.id, session.order_id, len(completed), session.component_count,
                entry["voided_payment_ids"],
            )
            record_event(
                event_type="payment.split_compensated",
                topic="payments",
                tenant_id=session.tenant_id,
                entity_type="order",
                entity_id=session.order_id,
                payload={k: v for k, v in entry.items() if k != "action"},
            )
            report.append(entry)

        db.session.commit()
        return report

    return run_with_retry(_op)
