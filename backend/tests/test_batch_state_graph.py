"""
Shipment batch state graph tests.
"""

import pytest

from reqflow.services.batch_state_graph import (
    BATCH_TRANSITIONS,
    BatchAction,
    BatchStatus as B,
    accepts_new_batches,
    action_allowed_for,
    can_schedule_pickup,
    is_delivered,
    is_mutable,
    next_batch_status,
)
from reqflow.services.state_graph import RequisitionStatus, Role


class TestBatchTransitions:

    def test_received_is_a_sink(self):
        assert all(t.from_status != B.RECEIVED for t in BATCH_TRANSITIONS)

    def test_nothing_returns_to_pending(self):
        assert all(t.to_status != B.PENDING for t in BATCH_TRANSITIONS)

    @pytest.mark.parametrize("status", [B.PENDING, B.PREPARING])
    def test_dispatch_from_mutable_statuses(self, status):
        assert next_batch_status(status, BatchAction.DISPATCH, Role.LOGISTICS) == B.DISPATCHED

    def test_receiver_cannot_dispatch(self):
        assert next_batch_status(B.PENDING, BatchAction.DISPATCH, Role.RECEIVER) is None

    def test_transit_only_after_dispatch(self):
        assert next_batch_status(B.DISPATCHED, BatchAction.TRANSIT, Role.ADMIN) == B.IN_TRANSIT
        assert next_batch_status(B.PENDING, BatchAction.TRANSIT, Role.ADMIN) is None

    @pytest.mark.parametrize("status", [B.DISPATCHED, B.IN_TRANSIT, B.PENDING_RECEIPT])
    def test_receive_sources(self, status):
        assert next_batch_status(status, BatchAction.RECEIVE, Role.RECEIVER) == B.RECEIVED

    def test_logistics_cannot_receive(self):
        assert next_batch_status(B.IN_TRANSIT, BatchAction.RECEIVE, Role.LOGISTICS) is None

    def test_unknown_status(self):
        assert next_batch_status("LOST", BatchAction.RECEIVE, Role.ADMIN) is None


class TestBatchRules:

    def test_mutable_statuses(self):
        assert is_mutable("PENDING")
        assert is_mutable(B.PREPARING)
        assert not is_mutable(B.DISPATCHED)
        assert not is_mutable("LOST")

    def test_delivered(self):
        assert is_delivered(B.RECEIVED)
        assert not is_delivered(B.PENDING_RECEIPT)

    def test_schedule_pickup(self):
        assert can_schedule_pickup(B.DISPATCHED, Role.RECEIVER)
        assert can_schedule_pickup(B.IN_TRANSIT, Role.ADMIN)
        assert not can_schedule_pickup(B.PENDING, Role.RECEIVER)
        assert not can_schedule_pickup(B.DISPATCHED, Role.LOGISTICS)

    def test_action_roles(self):
        assert action_allowed_for(BatchAction.DISPATCH, "LOGISTICS")
        assert not action_allowed_for(BatchAction.DISPATCH, "RECEIVER")
        assert action_allowed_for(BatchAction.RECEIVE, "RECEIVER")

    def test_accepts_new_batches(self):
        for status in ("READY_TO_DISPATCH", "PURCHASING", "SHIPPED", "PARTIALLY_DELIVERED"):
            assert accepts_new_batches(status)
        assert not accepts_new_batches(RequisitionStatus.LOGISTICS_REVIEW)
        assert not accepts_new_batches(RequisitionStatus.FULLY_DELIVERED)
        assert not accepts_new_batches("BOGUS")
