from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Tenant(db.Model):
    """
    Tenant (the organisation running events).

    MULTI-TENANT: Every other row carries tenant_id; services filter on it
    so that ids from another tenant behave as missing.
    """
    __tablename__ = "tenants"
    __table_args__ = ({"sqlite_autoincrement": True},)

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False, unique=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Event(db.Model):
    __tablename__ = "events"
    __table_args__ = (
        db.Index("ix_events_tenant_active", "tenant_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    name = db.Column(db.String(128), nullable=False)
    event_date = db.Column(db.Date, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    tenant = db.relationship("Tenant", backref=db.backref("events", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "event_date": self.event_date.isoformat() if self.event_date else None,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Zone(db.Model):
    """A named area of an event floor; tables and staff are bound to zones."""
    __tablename__ = "zones"
    __table_args__ = (
        db.UniqueConstraint("event_id", "name", name="uq_zones_event_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    event_id = db.Column(db.Integer, db.ForeignKey("events.id"), nullable=False, index=True)
    name = db.Column(db.String(64), nullable=False)
    description = db.Column(db.String(255), nullable=True)
    color = db.Column(db.String(16), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    event = db.relationship("Event", backref=db.backref("zones", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "event_id": self.event_id,
            "name": self.name,
            "description": self.description,
            "color": self.color,
            "created_at": to_utc_z(self.created_at),
        }


class VenueTable(db.Model):
    __tablename__ = "venue_tables"
    __table_args__ = (
        db.UniqueConstraint("event_id", "table_number", name="uq_venue_tables_event_number"),
        # Zone -> tables lookup drives every station queue
        db.Index("ix_venue_tables_zone", "zone_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    event_id = db.Column(db.Integer, db.ForeignKey("events.id"), nullable=False, index=True)
    zone_id = db.Column(db.Integer, db.ForeignKey("zones.id"), nullable=True)
    table_number = db.Column(db.String(32), nullable=False)
    capacity = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    zone = db.relationship("Zone", backref=db.backref("tables", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "event_id": self.event_id,
            "zone_id": self.zone_id,
            "table_number": self.table_number,
            "capacity": self.capacity,
        }


class ZoneRoleAssignment(db.Model):
    """
    Binds one user to one zone in one role.

    INVARIANTS (enforced by the database, not by read-then-insert):
    - at most one user per (zone, role)
    - at most one role per (user, zone)
    """
    __tablename__ = "zone_role_assignments"
    __table_args__ = (
        db.UniqueConstraint("zone_id", "role", name="uq_zone_role_assignments_zone_role"),
        db.UniqueConstraint("user_id", "zone_id", name="uq_zone_role_assignments_user_zone"),
        db.Index("ix_zone_role_assignments_user", "tenant_id", "user_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False)
    zone_id = db.Column(db.Integer, db.ForeignKey("zones.id"), nullable=False, index=True)
    # Identity lives upstream; user ids are opaque here
    user_id = db.Column(db.Integer, nullable=False)
    role = db.Column(db.String(32), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    zone = db.relationship("Zone", backref=db.backref("role_assignments", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "zone_id": self.zone_id,
            "user_id": self.user_id,
            "role": self.role,
            "created_at": to_utc_z(self.created_at),
        }
