from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class OrderReturn(db.Model):
    """
    Return of one served order item, and its refund approval trail.

    LIFECYCLE:
        reported (refund_amount_cents NULL)
        -> refund approved (amount set, approver recorded)
        -> confirmed (confirmed_at set)

    Approval and confirmation are independent; confirming never touches the
    order item, which was already moved to `returned` when reported.
    """
    __tablename__ = "order_returns"
    __table_args__ = (
        db.UniqueConstraint("order_item_id", name="uq_order_returns_item"),
        db.CheckConstraint(
            "refund_amount_cents IS NULL OR refund_amount_cents > 0",
            name="ck_order_returns_refund_positive",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    order_item_id = db.Column(db.Integer, db.ForeignKey("order_items.id"), nullable=False)

    reported_by = db.Column(db.Integer, nullable=True)
    reason = db.Column(db.String(255), nullable=False)

    refund_amount_cents = db.Column(db.Integer, nullable=True)
    refund_approved_by = db.Column(db.Integer, nullable=True)
    refund_approved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    confirmed_by = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    order_item = db.relationship("OrderItem", backref=db.backref("order_return", uselist=False))

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        item = self.order_item
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "order_item_id": self.order_item_id,
            "order_id": item.order_id if item else None,
            "menu_item_name": item.menu_item.name if item and item.menu_item else None,
            "line_total_cents": item.line_total_cents if item else None,
            "reported_by": self.reported_by,
            "reason": self.reason,
            "refund_amount_cents": self.refund_amount_cents,
            "refund_approved_by": self.refund_approved_by,
            "refund_approved_at": to_utc_z(self.refund_approved_at),
            "confirmed_at": to_utc_z(self.confirmed_at),
            "confirmed_by": self.confirmed_by,
            "created_at": to_utc_z(self.created_at),
        }
