"""
Requisition state graph tests.

Verifies:
- The transition table matches the documented edges and role sets
- Terminal statuses have no outgoing edges for any role
- approve and process stay distinct (no widening of dispatch rights)
- Unknown statuses / roles fail closed
"""

import pytest

from reqflow.services.state_graph import (
    ALLOWED_TRANSITIONS,
    PROCESS_TRANSITIONS,
    RequisitionStatus as S,
    Role,
    TERMINAL_STATUSES,
    WorkflowAction as A,
    available_transitions,
    can_transition,
    find_transition,
    get_permission_matrix,
    has_action,
    is_pending_approval,
    is_terminal,
    next_approver_role,
    next_status,
    rejection_target,
    status_label,
)


# =============================================================================
# TABLE SHAPE
# =============================================================================


class TestTransitionTable:

    def test_every_edge_is_unique(self):
        edges = [(t.from_status, t.to_status) for t in ALLOWED_TRANSITIONS]
        assert len(edges) == len(set(edges))

    def test_no_edge_returns_to_draft(self):
        assert all(t.to_status != S.DRAFT for t in ALLOWED_TRANSITIONS)

    def test_only_rejections_require_comment(self):
        for t in ALLOWED_TRANSITIONS:
            assert t.requires_comment == (t.action == A.REJECT)

    @pytest.mark.parametrize("status", sorted(TERMINAL_STATUSES))
    def test_terminal_statuses_have_no_outgoing_edges(self, status):
        assert not any(has_action(status, action) for action in A)
        assert status not in PROCESS_TRANSITIONS
        for role in Role:
            assert available_transitions(status, role) == []

    def test_terminal_set(self):
        assert TERMINAL_STATUSES == {
            S.REJECTED_BY_SECURITY,
            S.REJECTED_BY_MANAGEMENT,
            S.REJECTED_BY_ADMINISTRATION,
            S.FULLY_DELIVERED,
        }
        assert is_terminal("FULLY_DELIVERED")
        assert not is_terminal(S.SHIPPED)

    def test_pending_approval(self):
        assert is_pending_approval(S.SECURITY_REVIEW)
        assert is_pending_approval(S.MANAGEMENT_REVIEW)
        assert is_pending_approval(S.PURCHASING)
        assert not is_pending_approval(S.LOGISTICS_REVIEW)
        assert not is_pending_approval(S.DRAFT)


# =============================================================================
# LOOKUPS
# =============================================================================


class TestLookups:

    def test_security_approves_security_review(self):
        assert next_status(S.SECURITY_REVIEW, A.APPROVE, Role.SECURITY) == S.MANAGEMENT_REVIEW

    def test_management_cannot_approve_security_review(self):
        assert next_status(S.SECURITY_REVIEW, A.APPROVE, Role.MANAGEMENT) is None

    def test_admin_may_take_every_review_edge(self):
        for status in (S.SECURITY_REVIEW, S.MANAGEMENT_REVIEW, S.PURCHASING):
            assert find_transition(status, A.APPROVE, Role.ADMIN) is not None
            assert find_transition(status, A.REJECT, Role.ADMIN) is not None

    def test_can_transition_returns_edge(self):
        t = can_transition("PURCHASING", "READY_TO_DISPATCH", "ADMINISTRATION")
        assert t is not None
        assert t.action == A.APPROVE

    def test_can_transition_none_for_wrong_role(self):
        assert can_transition(S.READY_TO_DISPATCH, S.SHIPPED, Role.RECEIVER) is None

    def test_can_transition_none_for_missing_edge(self):
        assert can_transition(S.DRAFT, S.SHIPPED, Role.ADMIN) is None

    def test_submit_roles(self):
        for role in (Role.REQUESTER, Role.ADMIN, Role.ADMINISTRATION):
            assert next_status(S.DRAFT, A.SUBMIT, role) == S.SECURITY_REVIEW
        assert next_status(S.DRAFT, A.SUBMIT, Role.SECURITY) is None

    def test_delivery_edges(self):
        assert can_transition(S.SHIPPED, S.PARTIALLY_DELIVERED, Role.RECEIVER)
        assert can_transition(S.SHIPPED, S.FULLY_DELIVERED, Role.LOGISTICS)
        assert can_transition(S.PARTIALLY_DELIVERED, S.FULLY_DELIVERED, Role.ADMIN)
        assert can_transition(S.FULLY_DELIVERED, S.PARTIALLY_DELIVERED, Role.ADMIN) is None

    def test_has_action_is_role_independent(self):
        assert has_action(S.SECURITY_REVIEW, A.APPROVE)
        assert not has_action(S.LOGISTICS_REVIEW, A.APPROVE)
        assert not has_action(S.REJECTED_BY_SECURITY, "approve")

    def test_rejection_targets(self):
        assert rejection_target(S.SECURITY_REVIEW) == S.REJECTED_BY_SECURITY
        assert rejection_target(S.MANAGEMENT_REVIEW) == S.REJECTED_BY_MANAGEMENT
        assert rejection_target(S.PURCHASING) == S.REJECTED_BY_ADMINISTRATION
        assert rejection_target(S.LOGISTICS_REVIEW) is None

    def test_next_approver_role(self):
        assert next_approver_role(S.SECURITY_REVIEW) == Role.SECURITY
        assert next_approver_role(S.LOGISTICS_REVIEW) == Role.LOGISTICS
        assert next_approver_role(S.READY_TO_DISPATCH) is None

    def test_unknown_values_fail_closed(self):
        assert available_transitions("ARCHIVED", Role.ADMIN) == []
        assert available_transitions(S.DRAFT, "JANITOR") == []
        assert can_transition("DRAFT", "NOPE", "ADMIN") is None
        assert next_status(S.DRAFT, "teleport", Role.ADMIN) is None
        assert not is_terminal("ARCHIVED")

    def test_status_label(self):
        assert status_label(S.READY_TO_DISPATCH) == "Ready to dispatch"
        assert status_label("UNKNOWN") == "UNKNOWN"


# =============================================================================
# APPROVE VS PROCESS
# =============================================================================


class TestApproveAndProcessStayDistinct:
    """The coarse process map never widens the general table's role sets."""

    def test_administration_has_no_process_edge_in_general_table(self):
        assert find_transition(S.LOGISTICS_REVIEW, A.PROCESS, Role.ADMINISTRATION) is None

    def test_logistics_cannot_approve_purchasing(self):
        assert find_transition(S.PURCHASING, A.APPROVE, Role.LOGISTICS) is None

    def test_process_map(self):
        assert PROCESS_TRANSITIONS[S.LOGISTICS_REVIEW] == {S.PURCHASING, S.READY_TO_DISPATCH}
        assert PROCESS_TRANSITIONS[S.PURCHASING] == {S.READY_TO_DISPATCH}
        assert PROCESS_TRANSITIONS[S.READY_TO_DISPATCH] == {S.SHIPPED}
        assert PROCESS_TRANSITIONS[S.SHIPPED] == {S.PARTIALLY_DELIVERED, S.FULLY_DELIVERED}
        assert PROCESS_TRANSITIONS[S.PARTIALLY_DELIVERED] == {S.FULLY_DELIVERED}

    def test_permission_matrix(self):
        matrix = get_permission_matrix()
        assert matrix["SECURITY"]["approve"] == ["SECURITY_REVIEW"]
        assert "approve" not in matrix["REQUESTER"]
        assert set(matrix["ADMIN"]["reject"]) == {"SECURITY_REVIEW", "MANAGEMENT_REVIEW", "PURCHASING"}

    def test_permissions_command_prints_matrix(self, app):
        result = app.test_cli_runner().invoke(args=["requisitions", "permissions", "--role", "security"])
        assert result.exit_code == 0
        lines = [line.split() for line in result.output.splitlines() if line.startswith("SECURITY")]
        assert ["SECURITY", "approve", "SECURITY_REVIEW"] in lines
        assert ["SECURITY", "reject", "SECURITY_REVIEW"] in lines
        assert not any(line.startswith("ADMIN") for line in result.output.splitlines())
