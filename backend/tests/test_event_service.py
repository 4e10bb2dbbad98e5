"""
Domain Event Tests

Events are stored with the write that produced them and delivered to
subscribers only after that write commits.
"""

import pytest

from eventpos.errors import ValidationError
from eventpos.services import event_service, payment_service


def _record(tenant_id, event_type="order.created", topic="orders"):
    return event_service.record_event(
        event_type=event_type,
        topic=topic,
        tenant_id=tenant_id,
        entity_type="order",
        entity_id=1,
        payload={"order_number": "ORD-0001"},
    )


class TestDelivery:

    def test_delivered_after_commit_only(self, db_session, tenant_a):
        received = []
        event_service.subscribe("orders", tenant_a.id, received.append)

        _record(tenant_a.id)
        assert received == []
        db_session.commit()

        assert [e.event_type for e in received] == ["order.created"]
        assert received[0].payload == {"order_number": "ORD-0001"}

    def test_rollback_discards(self, db_session, tenant_a):
        received = []
        event_service.subscribe("orders", tenant_a.id, received.append)

        _record(tenant_a.id)
        db_session.rollback()
        db_session.commit()

        assert received == []
        assert event_service.list_events(tenant_a.id) == []

    def test_other_tenants_are_not_notified(self, db_session, tenant_a, tenant_b):
        received_b = []
        event_service.subscribe("orders", tenant_b.id, received_b.append)
        _record(tenant_a.id)
        db_session.commit()
        assert received_b == []

    def test_all_tenant_subscription(self, db_session, tenant_a, tenant_b):
        received = []
        event_service.subscribe("orders", None, received.append)
        _record(tenant_a.id)
        _record(tenant_b.id)
        db_session.commit()
        assert sorted(e.tenant_id for e in received) == sorted([tenant_a.id, tenant_b.id])

    def test_failing_handler_does_not_block_others(self, db_session, tenant_a):
        received = []

        def _broken(domain_event):
            raise RuntimeError("screen disconnected")

        event_service.subscribe("orders", tenant_a.id, _broken)
        event_service.subscribe("orders", tenant_a.id, received.append)
        _record(tenant_a.id)
        db_session.commit()
        assert len(received) == 1
        assert len(event_service.list_events(tenant_a.id)) == 1

    def test_unsubscribe(self, db_session, tenant_a):
        received = []
        unsubscribe = event_service.subscribe("orders", tenant_a.id, received.append)
        unsubscribe()
        _record(tenant_a.id)
        db_session.commit()
        assert received == []

    def test_unknown_topic(self):
        with pytest.raises(ValueError):
            event_service.subscribe("kitchen_printers", None, print)


class TestOutbox:

    def test_failed_operation_leaves_no_event(self, served_order, cashier):
        before = len(event_service.list_events(cashier.tenant_id, topic="payments"))
        with pytest.raises(ValidationError):
            payment_service.record_split_payment(cashier, served_order.id, {"cash": 100})
        assert len(event_service.list_events(cashier.tenant_id, topic="payments")) == before

    def test_filters(self, served_order, cashier):
        payment_service.settle_order(cashier, served_order.id, "cash", 2500)
        paid = event_service.list_events(cashier.tenant_id, event_type="order.paid")
        assert len(paid) == 1
        assert paid[0].entity_id == str(served_order.id)
        assert paid[0].to_dict()["payload"]["total_amount_cents"] == 2500
        assert event_service.list_events(cashier.tenant_id, entity_type="order", entity_id=served_order.id)
