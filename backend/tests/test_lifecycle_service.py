"""
Item State Machine Tests

Pure tests (no database) for the item transition table and the order
status derivation.
"""

import pytest

from eventpos.services.lifecycle_service import (
    DISPATCHED, PAID, PENDING, READY, REJECTED, RETURNED, SERVED,
    LifecycleError, allowed_sources, can_mark_served, can_transition, derive_order_status,
)


class TestTransitions:

    @pytest.mark.parametrize("from_status,to_status", [
        (PENDING, DISPATCHED),
        (PENDING, READY),
        (PENDING, REJECTED),
        (DISPATCHED, READY),
        (DISPATCHED, REJECTED),
        (READY, SERVED),
        (SERVED, PAID),
        (SERVED, RETURNED),
    ])
    def test_allowed(self, from_status, to_status):
        assert can_transition(from_status, to_status)

    @pytest.mark.parametrize("from_status,to_status", [
        (READY, READY),
        (READY, REJECTED),
        (SERVED, READY),
        (PENDING, SERVED),
        (PAID, RETURNED),
        (REJECTED, PENDING),
        (RETURNED, SERVED),
    ])
    def test_forbidden(self, from_status, to_status):
        assert not can_transition(from_status, to_status)

    def test_unknown_status_raises(self):
        with pytest.raises(LifecycleError):
            can_transition(PENDING, "cooking")

    def test_allowed_sources_for_ready(self):
        assert set(allowed_sources(READY)) == {PENDING, DISPATCHED}

    def test_terminal_statuses_have_no_targets(self):
        for status in (PAID, REJECTED, RETURNED):
            assert not any(can_transition(status, target) for target in (PENDING, SERVED, PAID))


class TestDeriveOrderStatus:

    def test_all_pending(self):
        assert derive_order_status([PENDING, PENDING]) == PENDING

    def test_any_progress_is_dispatched(self):
        assert derive_order_status([PENDING, READY]) == DISPATCHED

    def test_all_ready(self):
        assert derive_order_status([READY, READY]) == READY

    def test_rejected_items_are_ignored(self):
        assert derive_order_status([READY, REJECTED]) == READY

    def test_served_with_returned_item(self):
        assert derive_order_status([SERVED, RETURNED]) == SERVED

    def test_everything_rejected(self):
        assert derive_order_status([REJECTED, REJECTED]) == REJECTED

    def test_paid_order_stays_paid(self):
        """A paid order is frozen whatever its items say."""
        assert derive_order_status([PENDING], PAID) == PAID


class TestCanMarkServed:

    def test_ready_items(self):
        assert can_mark_served([READY, REJECTED])

    def test_item_still_dispatched(self):
        assert not can_mark_served([READY, DISPATCHED])

    def test_no_active_items(self):
        assert not can_mark_served([REJECTED, RETURNED])
