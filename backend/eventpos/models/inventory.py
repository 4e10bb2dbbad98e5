from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class InventoryZoneAllocation(db.Model):
    """
    Portion of a menu item's stock earmarked for one zone.

    INVARIANT: sum(allocated_quantity) over a menu item <= its current_inventory.
    """
    __tablename__ = "inventory_zone_allocations"
    __table_args__ = (
        db.UniqueConstraint("menu_item_id", "zone_id", name="uq_inventory_zone_allocations_item_zone"),
        db.CheckConstraint("allocated_quantity >= 0", name="ck_inventory_zone_allocations_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    menu_item_id = db.Column(db.Integer, db.ForeignKey("menu_items.id"), nullable=False, index=True)
    zone_id = db.Column(db.Integer, db.ForeignKey("zones.id"), nullable=False)
    allocated_quantity = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    zone = db.relationship("Zone")

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "menu_item_id": self.menu_item_id,
            "zone_id": self.zone_id,
            "zone_name": self.zone.name if self.zone else None,
            "allocated_quantity": self.allocated_quantity,
            "updated_at": to_utc_z(self.updated_at),
        }


class InventoryZoneTransfer(db.Model):
    """Immutable log of stock moved between zone allocations."""
    __tablename__ = "inventory_zone_transfers"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_inventory_zone_transfers_quantity_positive"),
        db.CheckConstraint("from_zone_id <> to_zone_id", name="ck_inventory_zone_transfers_distinct"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    menu_item_id = db.Column(db.Integer, db.ForeignKey("menu_items.id"), nullable=False, index=True)
    from_zone_id = db.Column(db.Integer, db.ForeignKey("zones.id"), nullable=False)
    to_zone_id = db.Column(db.Integer, db.ForeignKey("zones.id"), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    transferred_by = db.Column(db.Integer, nullable=True)
    reason = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "menu_item_id": self.menu_item_id,
            "from_zone_id": self.from_zone_id,
            "to_zone_id": self.to_zone_id,
            "quantity": self.quantity,
            "transferred_by": self.transferred_by,
            "reason": self.reason,
            "created_at": to_utc_z(self.created_at),
        }
