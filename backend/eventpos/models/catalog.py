from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class MenuItem(db.Model):
    """
    Sellable menu entry for one event.

    Menu authoring happens elsewhere; this engine reads price and station
    routing, and writes only availability and current_inventory.
    current_inventory NULL means the item is not stock-tracked.
    """
    __tablename__ = "menu_items"
    __table_args__ = (
        db.CheckConstraint("price_cents >= 0", name="ck_menu_items_price_nonneg"),
        db.Index("ix_menu_items_event_station", "event_id", "station_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    event_id = db.Column(db.Integer, db.ForeignKey("events.id"), nullable=False, index=True)
    name = db.Column(db.String(128), nullable=False)
    category = db.Column(db.String(64), nullable=True)
    price_cents = db.Column(db.Integer, nullable=False)
    station_type = db.Column(db.String(32), nullable=False)

    starting_inventory = db.Column(db.Integer, nullable=True)
    current_inventory = db.Column(db.Integer, nullable=True)
    is_available = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_tracked(self) -> bool:
        return self.current_inventory is not None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "event_id": self.event_id,
            "name": self.name,
            "category": self.category,
            "price_cents": self.price_cents,
            "station_type": self.station_type,
            "starting_inventory": self.starting_inventory,
            "current_inventory": self.current_inventory,
            "is_available": self.is_available,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
