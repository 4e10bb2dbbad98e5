# Overview: Domain event outbox and after-commit publish/subscribe hub.

"""
EventPOS Domain Events

WHY THIS EXISTS:
- Station screens, waiter views and cashier views need to know when an item
  turns ready or an order is paid, without re-fetching whole collections.
- Every state change is also an audit fact worth keeping.

DESIGN PRINCIPLES:
- record_event() writes a DomainEventRecord in the caller's transaction.
  If that transaction rolls back, the event never existed.
- Subscribers receive an immutable DomainEvent only after commit, keyed by
  (topic, tenant_id). topic is the table the change landed in.
- A failing subscriber is logged and skipped; it never fails the write
  that produced the event, nor the other subscribers.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from flask import current_app
from sqlalchemy import event as sa_event
from sqlalchemy.orm import Session

from ..extensions import db
from ..models import DomainEventRecord
from ..time_utils import utcnow, to_utc_z


_PENDING_KEY = "eventpos_pending_events"

# Topics (table names) that carry change notifications
TOPICS = frozenset({
    "orders",
    "order_items",
    "payments",
    "order_returns",
    "inventory_zone_allocations",
    "zone_role_assignments",
    "menu_items",
})


@dataclass(frozen=True)
class DomainEvent:
    event_type: str
    topic: str
    tenant_id: int
    entity_type: str
    entity_id: str
    actor_user_id: int | None
    payload: dict = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "event_type": self.event_type,
            "topic": self.topic,
            "tenant_id": self.tenant_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "actor_user_id": self.actor_user_id,
            "payload": self.payload,
            "occurred_at": to_utc_z(self.occurred_at),
        }


Handler = Callable[[DomainEvent], Any]

_subscribers: dict[tuple[str, int | None], list[Handler]] = defaultdict(list)


def subscribe(topic: str, tenant_id: int | None, handler: Handler) -> Callable[[], None]:
    """
    Register a handler for one topic of one tenant (tenant_id None = every tenant).

    Returns a callable that removes the subscription.
    """
    if topic not in TOPICS:
        raise ValueError(f"Unknown topic '{topic}'. Must be one of: {', '.join(sorted(TOPICS))}")
    key = (topic, tenant_id)
    _subscribers[key].append(handler)

    def _unsubscribe():
        handlers = _subscribers.get(key, [])
        if handler in handlers:
            handlers.remove(handler)

    return _unsubscribe


def clear_subscribers() -> None:
    _subscribers.clear()


def record_event(
    *,
    event_type: str,
    topic: str,
    tenant_id: int,
    entity_type: str,
    entity_id,
    actor_user_id: int | None = None,
    payload: dict | None = None,
) -> DomainEvent:
    """Append an event to the outbox inside the current transaction."""
    domain_event = DomainEvent(
        event_type=event_type,
        topic=topic,
        tenant_id=tenant_id,
        entity_type=entity_type,
        entity_id=str(entity_id),
        actor_user_id=actor_user_id,
        payload=payload or {},
    )
    db.session.add(DomainEventRecord(
        tenant_id=tenant_id,
        event_type=event_type,
        topic=topic,
        entity_type=entity_type,
        entity_id=str(entity_id),
        actor_user_id=actor_user_id,
        payload=domain_event.payload,
        occurred_at=domain_event.occurred_at,
    ))
    db.session.info.setdefault(_PENDING_KEY, []).append(domain_event)
    return domain_event


def list_events(tenant_id: int, *, topic: str | None = None, event_type: str | None = None,
                entity_type: str | None = None, entity_id=None) -> list[DomainEventRecord]:
    query = db.session.query(DomainEventRecord).filter_by(tenant_id=tenant_id)
    if topic:
        query = query.filter_by(topic=topic)
    if event_type:
        query = query.filter_by(event_type=event_type)
    if entity_type:
        query = query.filter_by(entity_type=entity_type)
    if entity_id is not None:
        query = query.filter_by(entity_id=str(entity_id))
    return query.order_by(DomainEventRecord.id.asc()).all()


def _dispatch(domain_event: DomainEvent) -> None:
    handlers = list(_subscribers.get((domain_event.topic, domain_event.tenant_id), []))
    handlers += _subscribers.get((domain_event.topic, None), [])
    for handler in handlers:
        try:
            handler(domain_event)
        except Exception:
            current_app.logger.exception(
                "Subscriber failed for %s on %s", domain_event.event_type, domain_event.topic
            )


@sa_event.listens_for(Session, "after_commit")
def _publish_after_commit(session):
    pending = session.info.pop(_PENDING_KEY, None)
    if not pending:
        return
    for domain_event in pending:
        _dispatch(domain_event)


@sa_event.listens_for(Session, "after_rollback")
def _discard_after_rollback(session):
    session.info.pop(_PENDING_KEY, None)
