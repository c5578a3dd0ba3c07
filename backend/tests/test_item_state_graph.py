"""
Requisition item state graph tests.

Verifies:
- Classification and purchase steps are gated by role
- Only ready or partly shipped items are dispatchable
- Coarse requisition moves settle items in bulk
"""

import pytest

from reqflow.services.item_state_graph import (
    CLASSIFICATION_PATHS,
    ITEM_TRANSITIONS,
    ItemAction as A,
    ItemStatus as I,
    dispatch_action,
    is_dispatchable,
    item_status_label,
    next_item_status,
    parse_item_status,
    settled_item_status,
    walk,
)
from reqflow.services.state_graph import Role


class TestItemTransitionTable:

    def test_every_key_is_unique(self):
        keys = [(t.from_status, t.action) for t in ITEM_TRANSITIONS]
        assert len(keys) == len(set(keys))

    def test_dispatched_is_final(self):
        assert all(t.from_status != I.DISPATCHED for t in ITEM_TRANSITIONS)
        assert all(t.from_status != I.PURCHASE_REJECTED for t in ITEM_TRANSITIONS)

    def test_nothing_returns_to_pending(self):
        assert all(t.to_status != I.PENDING_CLASSIFICATION for t in ITEM_TRANSITIONS)

    @pytest.mark.parametrize("role", [Role.LOGISTICS, Role.ADMIN])
    def test_classifiers(self, role):
        assert next_item_status(I.PENDING_CLASSIFICATION, A.MARK_IN_STOCK, role) == I.IN_STOCK
        assert next_item_status("PENDING_CLASSIFICATION", A.REQUIRE_PURCHASE, role.value) == I.PURCHASE_REQUIRED

    @pytest.mark.parametrize("role", [Role.ADMINISTRATION, Role.REQUESTER, Role.RECEIVER, None, "JANITOR"])
    def test_others_cannot_classify(self, role):
        assert next_item_status(I.PENDING_CLASSIFICATION, A.MARK_IN_STOCK, role) is None

    def test_purchase_decisions_belong_to_administration(self):
        assert next_item_status(I.PENDING_PURCHASE_VALIDATION, A.APPROVE_PURCHASE, Role.ADMINISTRATION) == I.PURCHASE_APPROVED
        assert next_item_status(I.PENDING_PURCHASE_VALIDATION, A.REJECT_PURCHASE, Role.ADMIN) == I.PURCHASE_REJECTED
        assert next_item_status(I.PENDING_PURCHASE_VALIDATION, A.APPROVE_PURCHASE, Role.LOGISTICS) is None

    def test_unknown_status(self):
        assert parse_item_status("LOST") is None
        assert next_item_status("LOST", A.RELEASE, Role.ADMIN) is None
        assert item_status_label("LOST") == "LOST"
        assert item_status_label(I.IN_STOCK) == "In stock"


class TestWalk:

    def test_classification_paths(self):
        assert walk(I.PENDING_CLASSIFICATION, CLASSIFICATION_PATHS["IN_STOCK"], Role.LOGISTICS) == I.READY_TO_DISPATCH
        assert (
            walk(I.PENDING_CLASSIFICATION, CLASSIFICATION_PATHS["PURCHASE_REQUIRED"], Role.LOGISTICS)
            == I.PENDING_PURCHASE_VALIDATION
        )

    def test_stops_at_first_missing_edge(self):
        assert walk(I.READY_TO_DISPATCH, CLASSIFICATION_PATHS["IN_STOCK"], Role.LOGISTICS) is None
        assert walk(I.PENDING_CLASSIFICATION, CLASSIFICATION_PATHS["IN_STOCK"], Role.RECEIVER) is None

    def test_purchase_receipt(self):
        steps = (A.RECEIVE_PURCHASE, A.RELEASE)
        assert walk(I.PURCHASE_APPROVED, steps, Role.LOGISTICS) == I.READY_TO_DISPATCH
        assert walk(I.PENDING_PURCHASE_VALIDATION, steps, Role.LOGISTICS) is None


class TestDispatchRules:

    @pytest.mark.parametrize("status", [I.READY_TO_DISPATCH, "PARTIALLY_DISPATCHED"])
    def test_dispatchable(self, status):
        assert is_dispatchable(status)

    @pytest.mark.parametrize(
        "status",
        [I.PENDING_CLASSIFICATION, I.IN_STOCK, I.PENDING_PURCHASE_VALIDATION, I.PURCHASE_APPROVED,
         I.PURCHASE_REJECTED, I.DISPATCHED, "LOST", None],
    )
    def test_not_dispatchable(self, status):
        assert not is_dispatchable(status)

    def test_dispatch_action(self):
        assert dispatch_action(3, 10) == A.DISPATCH_PART
        assert dispatch_action(10, 10) == A.DISPATCH_ALL
        assert next_item_status(I.PARTIALLY_DISPATCHED, dispatch_action(10, 10), Role.LOGISTICS) == I.DISPATCHED


class TestSettlement:

    def test_purchasing_sends_open_items_to_validation(self):
        assert settled_item_status("PURCHASING", I.PENDING_CLASSIFICATION) == I.PENDING_PURCHASE_VALIDATION
        assert settled_item_status("PURCHASING", I.READY_TO_DISPATCH) is None

    @pytest.mark.parametrize(
        "status",
        [I.PENDING_CLASSIFICATION, I.IN_STOCK, I.PURCHASE_REQUIRED, I.PENDING_PURCHASE_VALIDATION, I.PURCHASE_APPROVED],
    )
    def test_ready_releases_everything_unshipped(self, status):
        assert settled_item_status("READY_TO_DISPATCH", status) == I.READY_TO_DISPATCH

    @pytest.mark.parametrize("status", [I.PURCHASE_REJECTED, I.PARTIALLY_DISPATCHED, I.DISPATCHED])
    def test_ready_keeps_decided_items(self, status):
        assert settled_item_status("READY_TO_DISPATCH", status) is None

    def test_other_targets_leave_items_alone(self):
        assert settled_item_status("SHIPPED", I.PENDING_CLASSIFICATION) is None
        assert settled_item_status("BOGUS", I.PENDING_CLASSIFICATION) is None
