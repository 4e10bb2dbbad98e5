from __future__ import annotations

from ..extensions import db
from ..services.lifecycle_service import INACTIVE_ITEM_STATUSES
from ..time_utils import to_utc_z


class Order(db.Model):
    """
    Order header for one table (or walk-up) at one event.

    TOTALS:
    - total_amount_cents: sum of active item line totals while unpaid;
      frozen at the value confirmed when the order is paid.
    - original_total_cents: creation-time snapshot, never rewritten.

    status is a cached projection of the item statuses (see
    lifecycle_service.derive_order_status); writers refresh it with
    conditional updates that never touch a paid order.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("event_id", "order_number", name="uq_orders_event_number"),
        db.Index("ix_orders_tenant_status_created", "tenant_id", "status", "created_at"),
        db.Index("ix_orders_table", "table_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    event_id = db.Column(db.Integer, db.ForeignKey("events.id"), nullable=False, index=True)

    # Human-readable number, sequential per event (e.g., "ORD-0001")
    order_number = db.Column(db.String(32), nullable=False)
    waiter_id = db.Column(db.Integer, nullable=True)

    # NULL table_id with table_number NULL or "BAR" is a walk-up order
    table_id = db.Column(db.Integer, db.ForeignKey("venue_tables.id"), nullable=True)
    table_number = db.Column(db.String(32), nullable=True)
    guest_name = db.Column(db.String(128), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    dispatched_at = db.Column(db.DateTime(timezone=True), nullable=True)
    ready_at = db.Column(db.DateTime(timezone=True), nullable=True)
    served_at = db.Column(db.DateTime(timezone=True), nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    paid_by = db.Column(db.Integer, nullable=True)

    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    original_total_cents = db.Column(db.Integer, nullable=False, default=0)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    table = db.relationship("VenueTable")
    items = db.relationship("OrderItem", back_populates="order", lazy=True, order_by="OrderItem.id")

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_walkup(self) -> bool:
        return self.table_id is None and self.table_number in (None, "BAR")

    def active_items(self) -> list["OrderItem"]:
        return [item for item in self.items if item.status not in INACTIVE_ITEM_STATUSES]

    def compute_total_cents(self) -> int:
        """Canonical total: sum of active line totals, or the frozen total once paid."""
        if self.status == "paid":
            return self.total_amount_cents
        return sum(item.line_total_cents for item in self.active_items())

    def to_dict(self, *, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "event_id": self.event_id,
            "order_number": self.order_number,
            "waiter_id": self.waiter_id,
            "table_id": self.table_id,
            "table_number": self.table_number,
            "guest_name": self.guest_name,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "dispatched_at": to_utc_z(self.dispatched_at),
            "ready_at": to_utc_z(self.ready_at),
            "served_at": to_utc_z(self.served_at),
            "paid_at": to_utc_z(self.paid_at),
            "paid_by": self.paid_by,
            "total_amount_cents": self.total_amount_cents,
            "original_total_cents": self.original_total_cents,
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    """
    One menu line of an order, routed to exactly one station.

    price_cents is captured at creation; later menu price edits do not
    change existing orders. Rows are never deleted: rejected and returned
    items stay for audit and simply stop counting toward the total.
    """
    __tablename__ = "order_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
        # Station queue: station + status filter, joined to orders
        db.Index("ix_order_items_station_status", "tenant_id", "station_type", "status"),
        db.Index("ix_order_items_menu_status", "menu_item_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    menu_item_id = db.Column(db.Integer, db.ForeignKey("menu_items.id"), nullable=False)
    station_type = db.Column(db.String(32), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    price_cents = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(16), nullable=False, default="pending")
    notes = db.Column(db.String(255), nullable=True)
    assigned_to = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    dispatched_at = db.Column(db.DateTime(timezone=True), nullable=True)
    ready_at = db.Column(db.DateTime(timezone=True), nullable=True)
    served_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    order = db.relationship("Order", back_populates="items")
    menu_item = db.relationship("MenuItem")

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def line_total_cents(self) -> int:
        return self.price_cents * self.quantity

    @property
    def is_active(self) -> bool:
        return self.status not in INACTIVE_ITEM_STATUSES

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "order_id": self.order_id,
            "menu_item_id": self.menu_item_id,
            "menu_item_name": self.menu_item.name if self.menu_item else None,
            "station_type": self.station_type,
            "quantity": self.quantity,
            "price_cents": self.price_cents,
            "line_total_cents": self.line_total_cents,
            "status": self.status,
            "notes": self.notes,
            "assigned_to": self.assigned_to,
            "created_at": to_utc_z(self.created_at),
            "dispatched_at": to_utc_z(self.dispatched_at),
            "ready_at": to_utc_z(self.ready_at),
            "served_at": to_utc_z(self.served_at),
            "version_id": self.version_id,
        }
