from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class DomainEventRecord(db.Model):
    """
    Append-only outbox of domain events.

    Written in the same transaction as the state change it describes, so
    the log never claims a change that was rolled back (and vice versa).
    Subscribers are notified only after commit.
    """
    __tablename__ = "domain_events"
    __table_args__ = (
        db.Index("ix_domain_events_tenant_topic", "tenant_id", "topic", "occurred_at"),
        db.Index("ix_domain_events_entity", "entity_type", "entity_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False)
    event_type = db.Column(db.String(64), nullable=False, index=True)
    topic = db.Column(db.String(64), nullable=False)
    entity_type = db.Column(db.String(64), nullable=False)
    entity_id = db.Column(db.String(64), nullable=False)
    actor_user_id = db.Column(db.Integer, nullable=True)
    payload = db.Column(db.JSON, nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "event_type": self.event_type,
            "topic": self.topic,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "actor_user_id": self.actor_user_id,
            "payload": self.payload,
            "occurred_at": to_utc_z(self.occurred_at),
        }
