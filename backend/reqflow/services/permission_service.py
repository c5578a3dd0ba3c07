# Overview: Service-layer capability resolution; single source of truth for "who may do X in state Y".

"""
Permission Resolution for Requisitions

WHY: Role checks used to be scattered per endpoint. Every route, the engine
and the UI now ask this module, so the answer is the same everywhere and is
testable without a transport.

DESIGN PRINCIPLES:
- Fail closed: unknown statuses or roles resolve to no capabilities
- Approval/rejection come from the state graph only (role membership)
- Ownership matters for exactly two things: editing a draft and submitting it
- Pure functions: no database access, callers pass the facts in
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from types import MappingProxyType
from typing import Mapping, Optional

from .batch_state_graph import BATCH_ELIGIBLE_REQUISITION_STATUSES
from .item_state_graph import CLASSIFIER_ROLES, PURCHASE_VALIDATOR_ROLES
from .state_graph import (
    RequisitionStatus,
    Role,
    WorkflowAction,
    available_transitions,
    parse_role,
    parse_status,
    process_targets,
)


S = RequisitionStatus

ITEM_EDITOR_ROLES = frozenset({Role.LOGISTICS, Role.ADMIN})
PROCESS_ROLES = frozenset({Role.LOGISTICS, Role.ADMIN})
DISPATCH_ROLES = frozenset({Role.LOGISTICS, Role.ADMIN})
RECEIVE_ROLES = frozenset({Role.RECEIVER, Role.ADMIN})
RECEIVABLE_STATUSES = frozenset({S.SHIPPED, S.PARTIALLY_DELIVERED})

# Roles that see every requisition
GLOBAL_VIEW_ROLES = frozenset({Role.ADMIN, Role.ADMINISTRATION})

_REVIEW_AND_AFTER = (
    S.SECURITY_REVIEW, S.REJECTED_BY_SECURITY,
    S.MANAGEMENT_REVIEW, S.REJECTED_BY_MANAGEMENT,
    S.LOGISTICS_REVIEW, S.PURCHASING, S.REJECTED_BY_ADMINISTRATION,
    S.READY_TO_DISPATCH, S.SHIPPED, S.PARTIALLY_DELIVERED, S.FULLY_DELIVERED,
)

# Staff roles see a requisition from their own gate onward
VISIBILITY: Mapping[Role, frozenset] = MappingProxyType({
    Role.REQUESTER: frozenset(),
    Role.SECURITY: frozenset(_REVIEW_AND_AFTER),
    Role.OPERATIONS: frozenset(_REVIEW_AND_AFTER),
    Role.MANAGEMENT: frozenset(_REVIEW_AND_AFTER[2:]),
    Role.LOGISTICS: frozenset({
        S.LOGISTICS_REVIEW, S.PURCHASING, S.REJECTED_BY_ADMINISTRATION,
        S.READY_TO_DISPATCH, S.SHIPPED, S.PARTIALLY_DELIVERED, S.FULLY_DELIVERED,
    }),
    Role.RECEIVER: frozenset({S.SHIPPED, S.PARTIALLY_DELIVERED, S.FULLY_DELIVERED}),
})

# Reviewers who may adjust approved quantities while their gate is open
QUANTITY_REVIEWERS: Mapping[RequisitionStatus, frozenset] = MappingProxyType({
    S.SECURITY_REVIEW: frozenset({Role.SECURITY, Role.OPERATIONS, Role.ADMIN}),
    S.MANAGEMENT_REVIEW: frozenset({Role.MANAGEMENT, Role.ADMIN}),
    S.LOGISTICS_REVIEW: frozenset({Role.LOGISTICS, Role.ADMIN}),
})

PENDING_STATUSES_BY_ROLE: Mapping[Role, tuple] = MappingProxyType({
    Role.SECURITY: (S.SECURITY_REVIEW,),
    Role.OPERATIONS: (S.SECURITY_REVIEW,),
    Role.MANAGEMENT: (S.MANAGEMENT_REVIEW,),
    Role.ADMINISTRATION: (S.PURCHASING,),
    Role.ADMIN: (S.SECURITY_REVIEW, S.MANAGEMENT_REVIEW, S.PURCHASING),
    Role.LOGISTICS: (S.LOGISTICS_REVIEW,),
    Role.RECEIVER: (S.SHIPPED,),
})


@dataclass(frozen=True)
class Capabilities:
    """What one actor may do to one requisition right now."""
    can_view: bool = False
    can_edit_items: bool = False
    can_adjust_quantities: bool = False
    can_submit: bool = False
    can_approve: bool = False
    can_reject: bool = False
    can_process: bool = False
    can_dispatch: bool = False
    can_receive: bool = False
    can_classify_items: bool = False
    can_validate_purchases: bool = False
    can_receive_purchases: bool = False
    can_comment: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


NO_CAPABILITIES = Capabilities()


def can_view(status: RequisitionStatus | str, role: Role | str | None, is_owner: bool) -> bool:
    """
    Visibility rule.

    Admins and administration see everything, owners always see their own,
    other staff see requisitions from their gate onward.
    """
    status = parse_status(status)
    role = parse_role(role)
    if status is None or role is None:
        return False
    if role in GLOBAL_VIEW_ROLES or is_owner:
        return True
    return status in VISIBILITY.get(role, frozenset())


def can_edit_items(status: RequisitionStatus | str, role: Role | str | None, is_owner: bool) -> bool:
    """Items are mutable only in draft, by the owner or by logistics/admin."""
    if parse_status(status) != S.DRAFT:
        return False
    return is_owner or parse_role(role) in ITEM_EDITOR_ROLES


def can_submit(
    status: RequisitionStatus | str,
    role: Role | str | None,
    is_owner: bool,
    active_item_count: Optional[int] = None,
) -> bool:
    """
    Owner (or admin) may submit a draft holding at least one live item.

    When the item count is unknown (None) it is not held against the actor;
    the engine re-checks it as a guard condition before applying.
    """
    if parse_status(status) != S.DRAFT:
        return False
    if not (is_owner or parse_role(role) == Role.ADMIN):
        return False
    return active_item_count is None or active_item_count > 0


def has_transition_action(status: RequisitionStatus | str, role: Role | str | None, action: WorkflowAction) -> bool:
    return any(t.action == action for t in available_transitions(status, role))


def can_process(status: RequisitionStatus | str, role: Role | str | None) -> bool:
    targets = process_targets(status)
    if not targets:
        return False
    role = parse_role(role)
    if role in PROCESS_ROLES:
        return True
    return role == Role.ADMINISTRATION and S.READY_TO_DISPATCH in targets


def can_process_to(
    status: RequisitionStatus | str,
    target: RequisitionStatus | str,
    role: Role | str | None,
) -> bool:
    """Process gate for one destination; administration only ever releases to dispatch."""
    target = parse_status(target)
    if target is None or target not in process_targets(status):
        return False
    role = parse_role(role)
    if role in PROCESS_ROLES:
        return True
    return role == Role.ADMINISTRATION and target == S.READY_TO_DISPATCH


def can_dispatch(status: RequisitionStatus | str, role: Role | str | None) -> bool:
    """Batch creation and dispatch."""
    return parse_role(role) in DISPATCH_ROLES and parse_status(status) in BATCH_ELIGIBLE_REQUISITION_STATUSES


def can_receive(status: RequisitionStatus | str, role: Role | str | None) -> bool:
    # Logistics dispatches but never confirms physical receipt
    return parse_role(role) in RECEIVE_ROLES and parse_status(status) in RECEIVABLE_STATUSES


def can_classify_items(status: RequisitionStatus | str, role: Role | str | None) -> bool:
    """Per-item stock / purchase classification happens during logistics review."""
    return parse_role(role) in CLASSIFIER_ROLES and parse_status(status) == S.LOGISTICS_REVIEW


def can_validate_purchases(status: RequisitionStatus | str, role: Role | str | None) -> bool:
    return parse_role(role) in PURCHASE_VALIDATOR_ROLES and parse_status(status) == S.PURCHASING


def can_receive_purchases(status: RequisitionStatus | str, role: Role | str | None) -> bool:
    # Bought goods may arrive while earlier waves are already on the road
    return parse_role(role) in CLASSIFIER_ROLES and parse_status(status) in BATCH_ELIGIBLE_REQUISITION_STATUSES


def can_adjust_quantities(status: RequisitionStatus | str, role: Role | str | None, is_owner: bool) -> bool:
    if can_edit_items(status, role, is_owner):
        return True
    status = parse_status(status)
    if status is None:
        return False
    return parse_role(role) in QUANTITY_REVIEWERS.get(status, frozenset())


def resolve_capabilities(
    status: RequisitionStatus | str,
    role: Role | str | None,
    is_owner: bool,
    active_item_count: Optional[int] = None,
) -> Capabilities:
    """
    Derive the full capability set for (status, role, ownership).

    Args:
        status: Current requisition status
        role: Actor's role code
        is_owner: Whether the actor is the requisition's requester
        active_item_count: Number of non-removed items, if known

    Returns:
        Capabilities: frozen capability flags (all False for unknown input)
    """
    if parse_status(status) is None or parse_role(role) is None:
        return NO_CAPABILITIES

    viewable = can_view(status, role, is_owner)
    return Capabilities(
        can_view=viewable,
        can_edit_items=can_edit_items(status, role, is_owner),
        can_adjust_quantities=can_adjust_quantities(status, role, is_owner),
        can_submit=can_submit(status, role, is_owner, active_item_count),
        can_approve=has_transition_action(status, role, WorkflowAction.APPROVE),
        can_reject=has_transition_action(status, role, WorkflowAction.REJECT),
        can_process=can_process(status, role),
        can_dispatch=can_dispatch(status, role),
        can_receive=can_receive(status, role),
        can_classify_items=can_classify_items(status, role),
        can_validate_purchases=can_validate_purchases(status, role),
        can_receive_purchases=can_receive_purchases(status, role),
        can_comment=viewable,
    )


def pending_statuses_for(role: Role | str | None) -> tuple:
    """Statuses in which ``role`` is expected to act (approval inboxes)."""
    role = parse_role(role)
    if role is None:
        return ()
    return PENDING_STATUSES_BY_ROLE.get(role, ())
