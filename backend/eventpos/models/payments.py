from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Payment(db.Model):
    """
    Ledger row for money received against an order.

    Refund rows carry a negative amount (split_type "refund") so that the
    net paid figure is a plain sum of COMPLETED rows. Rows are never
    deleted; mistakes are VOIDED.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.CheckConstraint("amount_cents <> 0", name="ck_payments_amount_nonzero"),
        db.Index("ix_payments_order_status", "order_id", "status"),
        db.Index("ix_payments_split_session", "split_session_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False)

    amount_cents = db.Column(db.Integer, nullable=False)
    payment_method = db.Column(db.String(16), nullable=False)  # cash, pos, transfer
    split_type = db.Column(db.String(16), nullable=False, default="full")
    split_session_id = db.Column(db.String(36), db.ForeignKey("split_sessions.id"), nullable=True)
    guest_identifier = db.Column(db.String(64), nullable=True)
    order_return_id = db.Column(db.Integer, db.ForeignKey("order_returns.id"), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="COMPLETED")  # COMPLETED, VOIDED
    confirmed_by = db.Column(db.Integer, nullable=True)
    notes = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    voided_by = db.Column(db.Integer, nullable=True)
    void_reason = db.Column(db.String(255), nullable=True)

    order = db.relationship("Order", backref=db.backref("payments", lazy=True, order_by="Payment.id"))
    split_items = db.relationship("SplitPaymentItem", back_populates="payment", lazy=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "order_id": self.order_id,
            "amount_cents": self.amount_cents,
            "payment_method": self.payment_method,
            "split_type": self.split_type,
            "split_session_id": self.split_session_id,
            "guest_identifier": self.guest_identifier,
            "order_return_id": self.order_return_id,
            "status": self.status,
            "confirmed_by": self.confirmed_by,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "voided_at": to_utc_z(self.voided_at),
            "voided_by": self.voided_by,
            "void_reason": self.void_reason,
            "split_items": [row.to_dict() for row in self.split_items],
        }


class SplitSession(db.Model):
    """
    Header for one multi-row payment (split by method or by item).

    Written in the same transaction as its payment rows. On stores without
    multi-row atomicity the reconciler compares COMPLETED rows against
    component_count / expected_total_cents and voids partial sessions.
    """
    __tablename__ = "split_sessions"

    id = db.Column(db.String(36), primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    split_type = db.Column(db.String(16), nullable=False)
    expected_total_cents = db.Column(db.Integer, nullable=False)
    component_count = db.Column(db.Integer, nullable=False)
    created_by = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    payments = db.relationship("Payment", backref="split_session", lazy=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "order_id": self.order_id,
            "split_type": self.split_type,
            "expected_total_cents": self.expected_total_cents,
            "component_count": self.component_count,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }


class SplitPaymentItem(db.Model):
    """Allocation of part of a by-item payment to one order item."""
    __tablename__ = "split_payment_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_split_payment_items_quantity_positive"),
        db.Index("ix_split_payment_items_order_item", "order_item_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False)
    payment_id = db.Column(db.Integer, db.ForeignKey("payments.id"), nullable=False, index=True)
    order_item_id = db.Column(db.Integer, db.ForeignKey("order_items.id"), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    payment = db.relationship("Payment", back_populates="split_items")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "payment_id": self.payment_id,
            "order_item_id": self.order_item_id,
            "quantity": self.quantity,
            "amount_cents": self.amount_cents,
        }
